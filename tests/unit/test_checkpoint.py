"""Unit tests for the import checkpoint."""

import json

import pytest

from hevy_sync.models.errors import AlreadyActiveError, ApiError, ImportTimeoutError
from hevy_sync.storage.kv_store import MemoryKVStore
from hevy_sync.storage.locks import LockUnavailableError, MemoryLock
from hevy_sync.sync.cancellation import CancelToken
from hevy_sync.sync.checkpoint import (
    IMPORT_ACTIVE_STATE,
    IMPORT_PROGRESS_STATE,
    ImportCheckpoint,
)
from tests.fixtures.fakes import FakeClock


class BrokenLock:
    """Lock whose primitive is unavailable."""

    held = False

    async def acquire(self, timeout):
        raise LockUnavailableError("no lock service")

    def release(self):
        pass


class BusyLock:
    """Lock that is always held by someone else."""

    held = False

    async def acquire(self, timeout):
        return False

    def release(self):
        pass


@pytest.fixture
def clock():
    return FakeClock(initial_time=1_750_000_000.0)


@pytest.fixture
def store():
    return MemoryKVStore()


def checkpoint_for(store, clock, lock=None):
    return ImportCheckpoint(store, lock=lock, clock=clock, lock_timeout=0.1, stale_after=600.0)


def live_flag(store, heartbeat):
    store.set(IMPORT_ACTIVE_STATE, json.dumps({"active": True, "heartbeat": heartbeat}))


class TestRunStep:

    @pytest.mark.asyncio
    async def test_runs_and_records_step(self, store, clock):
        checkpoint = checkpoint_for(store, clock)
        calls = []

        async def step():
            calls.append("exercises")

        assert await checkpoint.run_step("exercises", step) is True
        assert calls == ["exercises"]
        assert checkpoint.completed_steps() == {"exercises"}

        record = json.loads(store.get(IMPORT_PROGRESS_STATE))
        assert record["completedSteps"] == ["exercises"]
        assert record["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_completed_step_is_skipped(self, store, clock):
        store.set(IMPORT_PROGRESS_STATE, json.dumps({"completedSteps": ["exercises"], "timestamp": None}))
        checkpoint = checkpoint_for(store, clock)
        calls = []

        async def step():
            calls.append(1)

        assert await checkpoint.run_step("exercises", step) is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_step_skipped_when_already_cancelled(self, store, clock):
        checkpoint = checkpoint_for(store, clock)
        token = CancelToken()
        token.cancel()
        calls = []

        async def step():
            calls.append(1)

        assert await checkpoint.run_step("routines", step, token) is False
        assert calls == []
        assert not checkpoint.has_progress()

    @pytest.mark.asyncio
    async def test_merges_with_progress_written_concurrently(self, store, clock):
        checkpoint = checkpoint_for(store, clock)

        async def step():
            # Another step finished while this one ran
            other = checkpoint_for(store, clock)
            progress = json.dumps({"completedSteps": ["routineFolders"], "timestamp": None})
            other.store.set(IMPORT_PROGRESS_STATE, progress)

        await checkpoint.run_step("routines", step)

        assert checkpoint.completed_steps() == {"routineFolders", "routines"}

    @pytest.mark.asyncio
    async def test_timeout_propagates_and_leaves_step_pending(self, store, clock):
        checkpoint = checkpoint_for(store, clock)

        async def step():
            raise ImportTimeoutError("budget", items_processed=10)

        with pytest.raises(ImportTimeoutError):
            await checkpoint.run_step("workouts", step)

        assert not checkpoint.is_step_complete("workouts")

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_progress(self, store, clock):
        checkpoint = checkpoint_for(store, clock)

        async def ok():
            return None

        async def broken():
            raise ApiError("boom", 500)

        await checkpoint.run_step("exercises", ok)
        with pytest.raises(ApiError):
            await checkpoint.run_step("routines", broken)

        assert checkpoint.completed_steps() == {"exercises"}

    @pytest.mark.asyncio
    async def test_pending_steps_preserve_order(self, store, clock):
        checkpoint = checkpoint_for(store, clock)

        async def ok():
            return None

        await checkpoint.run_step("routineFolders", ok)

        assert checkpoint.pending_steps(["exercises", "routineFolders", "routines", "workouts"]) == [
            "exercises", "routines", "workouts",
        ]


class TestBeginEnd:

    @pytest.mark.asyncio
    async def test_begin_sets_active_flag_and_holds_lock(self, store, clock):
        lock = MemoryLock()
        checkpoint = checkpoint_for(store, clock, lock)

        await checkpoint.begin()

        assert checkpoint.is_active()
        assert lock.held

    @pytest.mark.asyncio
    async def test_second_import_is_rejected_while_first_is_live(self, store, clock):
        first = checkpoint_for(store, clock)
        second = checkpoint_for(store, clock)

        await first.begin()
        with pytest.raises(AlreadyActiveError):
            await second.begin()

    @pytest.mark.asyncio
    async def test_live_flag_rejects_even_when_lock_is_free(self, store, clock):
        live_flag(store, clock.now() - 10)
        lock = MemoryLock()
        checkpoint = checkpoint_for(store, clock, lock)

        with pytest.raises(AlreadyActiveError):
            await checkpoint.begin()

        assert not lock.held

    @pytest.mark.asyncio
    async def test_stale_flag_is_reclaimed(self, store, clock):
        live_flag(store, clock.now() - 601)
        checkpoint = checkpoint_for(store, clock, MemoryLock())

        await checkpoint.begin()

        assert checkpoint.is_active()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lock", [BrokenLock(), BusyLock()])
    async def test_falls_back_to_flag_without_lock(self, store, clock, lock):
        checkpoint = checkpoint_for(store, clock, lock)

        await checkpoint.begin()
        assert checkpoint.is_active()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lock", [BrokenLock(), BusyLock()])
    async def test_fallback_still_honours_fresh_flag(self, store, clock, lock):
        live_flag(store, clock.now())
        checkpoint = checkpoint_for(store, clock, lock)

        with pytest.raises(AlreadyActiveError):
            await checkpoint.begin()

    @pytest.mark.asyncio
    async def test_heartbeat_keeps_import_live(self, store, clock):
        checkpoint = checkpoint_for(store, clock)
        await checkpoint.begin()

        clock.advance(500)
        checkpoint.heartbeat()
        clock.advance(500)

        with pytest.raises(AlreadyActiveError):
            await checkpoint_for(store, clock).begin()

    @pytest.mark.asyncio
    async def test_successful_end_clears_progress_and_flag(self, store, clock):
        lock = MemoryLock()
        checkpoint = checkpoint_for(store, clock, lock)

        async def ok():
            return None

        await checkpoint.begin()
        await checkpoint.run_step("exercises", ok)
        checkpoint.end(success=True)

        assert not checkpoint.has_progress()
        assert not checkpoint.is_active()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_unsuccessful_end_keeps_progress(self, store, clock):
        lock = MemoryLock()
        checkpoint = checkpoint_for(store, clock, lock)

        async def ok():
            return None

        await checkpoint.begin()
        await checkpoint.run_step("exercises", ok)
        checkpoint.end(success=False)

        assert checkpoint.completed_steps() == {"exercises"}
        assert not checkpoint.is_active()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_next_import_can_begin_after_end(self, store, clock):
        lock = MemoryLock()
        first = checkpoint_for(store, clock, lock)
        await first.begin()
        first.end(success=False)

        second = checkpoint_for(store, clock, lock)
        await second.begin()
        assert second.is_active()

    def test_reset_forgets_steps(self, store, clock):
        store.set(IMPORT_PROGRESS_STATE, json.dumps({"completedSteps": ["exercises"], "timestamp": None}))
        checkpoint = checkpoint_for(store, clock)

        checkpoint.reset()

        assert checkpoint.completed_steps() == set()
