"""Durable, resumable step tracking for multi-step imports.

An import may be cut short by the host's execution budget and resumed by a
later, independent run. Completed step names are persisted after every step
so the next run skips them, and an active flag with a heartbeat keeps two
runs from importing at the same time.
"""

from typing import Any, Awaitable, Callable, List, Optional, Set

from hevy_sync.models.clock import Clock, WallClock, utc_iso
from hevy_sync.models.data_models import ActiveImportState, ImportProgress
from hevy_sync.models.errors import AlreadyActiveError, ImportTimeoutError
from hevy_sync.storage.kv_store import KVStore
from hevy_sync.storage.locks import AdvisoryLock, LockUnavailableError


IMPORT_PROGRESS_STATE = "IMPORT_PROGRESS_STATE"
IMPORT_ACTIVE_STATE = "IMPORT_ACTIVE_STATE"


class ImportCheckpoint:
    """
    Step state machine persisted in a KVStore.

    Steps go pending -> running -> complete; the import as a whole goes
    idle -> active -> (completed | suspended).
    """

    def __init__(
        self,
        store: KVStore,
        lock: Optional[AdvisoryLock] = None,
        clock: Optional[Clock] = None,
        lock_timeout: float = 30.0,
        stale_after: float = 600.0,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize checkpoint.

        Args:
            store: Durable store holding progress and the active flag
            lock: Advisory lock guarding begin(); the active flag alone is used when None
            clock: Wall clock for heartbeats and timestamps
            lock_timeout: Seconds to wait for the lock
            stale_after: Seconds without heartbeat after which an active flag is abandoned
            logger: Optional structured logger
        """
        self.store = store
        self.lock = lock
        self.clock = clock or WallClock()
        self.lock_timeout = lock_timeout
        self.stale_after = stale_after
        self.logger = logger

    def _log(self, action: str, **kwargs: Any) -> None:
        if self.logger:
            self.logger.checkpoint(action, **kwargs)

    def _progress(self) -> ImportProgress:
        return ImportProgress.from_json(self.store.get(IMPORT_PROGRESS_STATE))

    def _save_progress(self, progress: ImportProgress) -> None:
        progress.timestamp = utc_iso(self.clock.now())
        self.store.set(IMPORT_PROGRESS_STATE, progress.to_json())

    def _active_state(self) -> ActiveImportState:
        return ActiveImportState.from_json(self.store.get(IMPORT_ACTIVE_STATE))

    def _is_live(self, state: ActiveImportState) -> bool:
        if not state.active:
            return False
        if state.heartbeat_at is None:
            return False
        return self.clock.now() - state.heartbeat_at < self.stale_after

    async def begin(self) -> None:
        """
        Mark an import as active.

        Raises:
            AlreadyActiveError: Another import is running and its heartbeat is fresh
        """
        acquired = False
        if self.lock is not None:
            try:
                acquired = await self.lock.acquire(self.lock_timeout)
            except LockUnavailableError as e:
                self._log("lock_unavailable", error=str(e))
            else:
                if not acquired:
                    self._log("lock_timeout", timeout=self.lock_timeout)

        state = self._active_state()
        if self._is_live(state):
            if acquired:
                self.lock.release()
            raise AlreadyActiveError(
                "An import is already in progress. Please wait for it to complete.",
                context={"heartbeat": state.heartbeat_at},
            )

        if state.active:
            self._log("reclaim_stale", heartbeat=state.heartbeat_at)

        self.store.set(
            IMPORT_ACTIVE_STATE,
            ActiveImportState(active=True, heartbeat_at=self.clock.now()).to_json(),
        )
        self._log("begin", locked=acquired)

    def heartbeat(self) -> None:
        """Refresh the heartbeat so other runs keep treating this import as live."""
        self.store.set(
            IMPORT_ACTIVE_STATE,
            ActiveImportState(active=True, heartbeat_at=self.clock.now()).to_json(),
        )

    async def run_step(
        self,
        name: str,
        fn: Callable[[], Awaitable[Any]],
        cancel_token: Optional['CancelToken'] = None
    ) -> bool:
        """
        Run fn unless the step already completed or cancellation already fired.

        Returns:
            True if fn ran to completion, False if the step was skipped

        Raises:
            ImportTimeoutError: Propagated unchanged; the step stays pending
        """
        if self.is_step_complete(name):
            self._log("step_skipped", step=name, reason="complete")
            return False

        if cancel_token is not None and cancel_token.cancelled:
            self._log("step_skipped", step=name, reason="cancelled")
            return False

        try:
            await fn()
        except ImportTimeoutError:
            raise
        except Exception:
            self._save_progress(self._progress())
            raise

        # Another step may have completed concurrently; merge into the latest record
        progress = self._progress()
        progress.completed_steps.add(name)
        self._save_progress(progress)
        self._log("step_complete", step=name)
        return True

    def end(self, success: bool) -> None:
        """Finish this run. Completed steps are cleared only on success."""
        try:
            if success:
                self.store.delete(IMPORT_PROGRESS_STATE)
            self.store.set(IMPORT_ACTIVE_STATE, ActiveImportState().to_json())
            self._log("end", success=success)
        finally:
            if self.lock is not None and self.lock.held:
                self.lock.release()

    def completed_steps(self) -> Set[str]:
        return set(self._progress().completed_steps)

    def is_step_complete(self, name: str) -> bool:
        return name in self._progress().completed_steps

    def has_progress(self) -> bool:
        return bool(self._progress().completed_steps)

    def progress_timestamp(self) -> Optional[str]:
        return self._progress().timestamp

    def is_active(self) -> bool:
        return self._is_live(self._active_state())

    def reset(self) -> None:
        """Forget all completed steps."""
        self.store.delete(IMPORT_PROGRESS_STATE)
        self._log("reset")

    def pending_steps(self, steps: List[str]) -> List[str]:
        """Steps from the given sequence that are still pending."""
        done = self.completed_steps()
        return [step for step in steps if step not in done]
