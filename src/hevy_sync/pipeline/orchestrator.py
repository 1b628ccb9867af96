"""Import orchestrator coordinating full imports, delta syncs and checkpoints."""

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from hevy_sync.fetcher.batch_fetcher import BatchFetcher
from hevy_sync.fetcher.circuit_breaker import CircuitBreaker
from hevy_sync.fetcher.http_client import AsyncHTTPClient
from hevy_sync.fetcher.pagination import PaginationOrchestrator
from hevy_sync.fetcher.rate_limiter import RateLimitTracker
from hevy_sync.fetcher.request_executor import RequestExecutor
from hevy_sync.fetcher.retry_handler import RetryPolicy
from hevy_sync.models.clock import Clock, WallClock, utc_iso
from hevy_sync.models.config import SyncConfig
from hevy_sync.models.data_models import (
    ImportResult,
    ImportStatus,
    ResumeDecision,
    StepResult,
)
from hevy_sync.models.errors import ImportTimeoutError, InvalidCredentialError
from hevy_sync.models.sink import TableSink, call_sink
from hevy_sync.monitoring.logger import StructuredLogger
from hevy_sync.pipeline.output import sink_for
from hevy_sync.storage.kv_store import FileKVStore, KVStore, TTLCache
from hevy_sync.storage.locks import AdvisoryLock, lock_for_state_file
from hevy_sync.sync.cancellation import CancelToken
from hevy_sync.sync.checkpoint import ImportCheckpoint
from hevy_sync.sync.delta import LAST_WORKOUT_UPDATE, DeltaEventProcessor


# Independent of each other, imported concurrently
PARALLEL_STEPS = ("exercises", "routineFolders", "routines")
WORKOUTS_STEP = "workouts"
IMPORT_STEPS = PARALLEL_STEPS + (WORKOUTS_STEP,)
EVENTS_ENDPOINT = "workoutEvents"


@dataclass
class ApiSession:
    """Request components bound to one open HTTP client."""
    executor: RequestExecutor
    paginator: PaginationOrchestrator
    retry_policy: RetryPolicy


class ImportOrchestrator:
    """
    Runs imports against the Hevy API.

    The circuit breaker and rate-limit tracker are created once per
    orchestrator and shared by every request it makes, so all steps of an
    import see the same API health and request budget.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: Optional[KVStore] = None,
        lock: Optional[AdvisoryLock] = None,
        sink_factory: Optional[Callable[[str], TableSink]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[StructuredLogger] = None
    ):
        """
        Initialize orchestrator with sync configuration.

        Args:
            config: Sync configuration object
            store: Durable key-value store (defaults to the configured state file)
            lock: Advisory lock for imports (defaults to a lockfile beside the state file)
            sink_factory: Builds the sink for a step name (defaults to JSON tables)
            transport: Optional httpx transport (mock transports in tests)
            clock: Wall clock for cursors, heartbeats and rate-limit budgets
            sleeper: Async sleep used for backoff and inter-page delays
            logger: Structured logger (created from config.log_level when None)
        """
        self.config = config
        self.clock = clock or WallClock()
        self.store = store if store is not None else FileKVStore(config.state_file)
        self.lock = lock if lock is not None else lock_for_state_file(config.state_file)
        self.sink_factory = sink_factory or (lambda name: sink_for(config.output_path, name))
        self.transport = transport
        self._sleep = sleeper
        self.logger = logger or StructuredLogger(level=config.log_level)

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=config.circuit_breaker_failure_threshold,
            reset_timeout=config.circuit_breaker_reset_timeout,
            logger=self.logger
        )
        self.rate_limit_tracker = RateLimitTracker(
            cache=TTLCache(self.store, clock=self.clock),
            ttl_seconds=config.rate_limit_cache_ttl,
            default_delay=config.api_delay,
            throttle_delay=config.throttle_delay,
            clock=self.clock,
            logger=self.logger
        )
        self.checkpoint = ImportCheckpoint(
            self.store,
            lock=self.lock,
            clock=self.clock,
            lock_timeout=config.lock_timeout,
            stale_after=config.stale_after,
            logger=self.logger
        )
        self._sinks: Dict[str, TableSink] = {}

    def sink(self, name: str) -> TableSink:
        if name not in self._sinks:
            self._sinks[name] = self.sink_factory(name)
        return self._sinks[name]

    def new_cancel_token(self) -> CancelToken:
        """Token that fires when the configured execution budget runs out."""
        return CancelToken(budget_seconds=self.config.execution_budget)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ApiSession]:
        """Open an HTTP client and wire the request components around it."""
        if not self.config.api_key:
            raise InvalidCredentialError(
                "No API key configured. Set HEVY_API_KEY or pass --api-key."
            )

        async with AsyncHTTPClient(
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            transport=self.transport
        ) as http_client:
            retry_policy = RetryPolicy(
                max_retries=self.config.max_retries,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay,
                sleeper=self._sleep
            )
            executor = RequestExecutor(
                http_client,
                self.circuit_breaker,
                retry_policy,
                self.rate_limit_tracker,
                base_url=self.config.base_url,
                api_key=self.config.api_key,
                logger=self.logger
            )
            paginator = PaginationOrchestrator(
                executor,
                self.rate_limit_tracker,
                concurrency=self.config.page_concurrency,
                max_pages=self.config.max_pages,
                rate_limit_pause=self.config.rate_limit_pause,
                sleeper=self._sleep,
                logger=self.logger
            )
            yield ApiSession(executor=executor, paginator=paginator, retry_policy=retry_policy)

    def delta_processor(self, session: ApiSession) -> DeltaEventProcessor:
        workouts = self.config.endpoints[WORKOUTS_STEP]
        events = self.config.endpoints[EVENTS_ENDPOINT]
        batch_fetcher = BatchFetcher(
            session.executor,
            endpoint=workouts.path,
            retry_policy=session.retry_policy,
            batch_size=self.config.batch_size,
            retry_attempts=self.config.batch_retry_attempts,
            failure_threshold=self.config.batch_failure_threshold,
            min_success_count=self.config.batch_min_success_count,
            logger=self.logger
        )
        return DeltaEventProcessor(
            session.paginator,
            batch_fetcher,
            self.sink(WORKOUTS_STEP),
            self.store,
            events_path=events.path,
            page_size=events.page_size,
            data_key=events.data_key,
            clock=self.clock,
            logger=self.logger
        )

    async def run_full_import(
        self,
        decision: ResumeDecision = ResumeDecision.RESUME,
        cancel_token: Optional[CancelToken] = None
    ) -> ImportResult:
        """
        Import every collection, skipping steps a previous run completed.

        Exercises, routine folders and routines are imported concurrently;
        workouts follow once they are done.

        Args:
            decision: What to do with progress left by an earlier run
            cancel_token: Cancellation signal (execution budget by default)

        Returns:
            ImportResult; SUSPENDED when the budget ran out before all steps finished

        Raises:
            AlreadyActiveError: Another import is running
            SyncError: A step failed; completed steps stay recorded for the next run
        """
        if decision is ResumeDecision.CANCEL:
            return ImportResult(
                status=ImportStatus.CANCELLED,
                completed_steps=sorted(self.checkpoint.completed_steps()),
                message="Import cancelled",
            )

        cancel_token = cancel_token or self.new_cancel_token()

        await self.checkpoint.begin()
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        success = False
        steps: List[StepResult] = []

        try:
            # Only the run holding the import may discard its progress
            if decision is ResumeDecision.RESTART:
                self.checkpoint.reset()
                self.reset_workout_cursor()

            async with self.session() as session:
                results = await asyncio.gather(
                    *(self._run_step(session, name, cancel_token) for name in PARALLEL_STEPS),
                    return_exceptions=True,
                )
                self._raise_first_error(results)
                steps.extend(results)
                steps.append(await self._run_step(session, WORKOUTS_STEP, cancel_token))

            completed = self.checkpoint.completed_steps()
            pending = [step for step in IMPORT_STEPS if step not in completed]
            if pending:
                return ImportResult(
                    status=ImportStatus.SUSPENDED,
                    steps=steps,
                    completed_steps=sorted(completed),
                    message=f"Execution budget reached before {', '.join(pending)}",
                )

            success = True
            result = ImportResult(
                status=ImportStatus.COMPLETED,
                steps=steps,
                completed_steps=list(IMPORT_STEPS),
            )
            self.logger.summary({
                "status": result.status.value,
                "items": result.total_items,
                "steps": {step.name: step.items for step in steps},
            })
            return result

        except ImportTimeoutError as e:
            return ImportResult(
                status=ImportStatus.SUSPENDED,
                steps=steps,
                completed_steps=sorted(self.checkpoint.completed_steps()),
                message=str(e),
            )
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            self.checkpoint.end(success)

    def reset_workout_cursor(self) -> None:
        """Forget the incremental sync cursor so the next import walks all workouts."""
        self.store.delete(LAST_WORKOUT_UPDATE)

    @staticmethod
    def _raise_first_error(results: List[Any]) -> None:
        """Re-raise a real failure in preference to a budget timeout."""
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            if not isinstance(error, ImportTimeoutError):
                raise error
        if errors:
            raise errors[0]

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            self.checkpoint.heartbeat()

    async def _run_step(self, session: ApiSession, name: str, cancel_token: CancelToken) -> StepResult:
        result = StepResult(name=name, skipped=True)
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def work() -> None:
            self.logger.step_start(name)
            if name == WORKOUTS_STEP:
                result.items = await self._import_workouts(session, cancel_token)
            else:
                result.items = await self._import_collection(session, name, cancel_token)

        ran = await self.checkpoint.run_step(name, work, cancel_token)
        result.skipped = not ran
        result.duration = loop.time() - started
        if ran:
            self.logger.step_complete(name, result.duration * 1000)
        else:
            self.logger.step_skipped(name, "cancelled" if cancel_token.cancelled else "complete")
        return result

    async def _import_collection(self, session: ApiSession, name: str, cancel_token: CancelToken) -> int:
        endpoint = self.config.endpoints[name]
        sink = self.sink(name)
        await call_sink(sink.clear)
        return await session.paginator.walk(
            endpoint.path,
            endpoint.page_size,
            sink.upsert,
            endpoint.data_key,
            cancel_token=cancel_token,
        )

    async def _import_workouts(self, session: ApiSession, cancel_token: CancelToken) -> int:
        """Incremental when a cursor and data exist, a full walk otherwise."""
        delta = self.delta_processor(session)
        sink = self.sink(WORKOUTS_STEP)
        cursor = delta.last_cursor()

        if cursor and sink.count() > 0:
            return await delta.sync_since(cursor, cancel_token)

        started_at = utc_iso(self.clock.now())
        total = await self._import_collection(session, WORKOUTS_STEP, cancel_token)
        delta.store_cursor(started_at)
        return total

    async def run_delta_sync(self, cancel_token: Optional[CancelToken] = None) -> Optional[int]:
        """
        Apply workout changes since the last import or sync.

        Returns:
            Number of changed workouts, or None when no import has stored a cursor yet
        """
        cancel_token = cancel_token or self.new_cancel_token()
        await self.checkpoint.begin()
        try:
            async with self.session() as session:
                return await self.delta_processor(session).sync(cancel_token)
        finally:
            # Never clears the progress of a suspended import
            self.checkpoint.end(False)

    async def validate_api_key(self) -> bool:
        """
        Check the configured key with a single request.

        Raises:
            InvalidCredentialError: The key was rejected
            TransportError: The API could not be reached
        """
        async with self.session() as session:
            return await session.executor.validate_api_key(self.config.validation_timeout)

    def status(self) -> Dict[str, Any]:
        """Snapshot of durable import state."""
        budget = self.rate_limit_tracker.current_budget()
        return {
            "active": self.checkpoint.is_active(),
            "completed_steps": sorted(self.checkpoint.completed_steps()),
            "pending_steps": self.checkpoint.pending_steps(list(IMPORT_STEPS)),
            "progress_timestamp": self.checkpoint.progress_timestamp(),
            "last_workout_update": self.store.get(LAST_WORKOUT_UPDATE),
            "rate_limit": budget.to_dict() if budget else None,
            "tables": {name: self.sink(name).count() for name in IMPORT_STEPS},
        }
