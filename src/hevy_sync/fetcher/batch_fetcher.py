"""Fetches entities by id in bounded concurrent rounds."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from hevy_sync.fetcher.request_executor import RequestExecutor
from hevy_sync.fetcher.retry_handler import RetryPolicy
from hevy_sync.models.data_models import BatchFetchResult
from hevy_sync.models.errors import (
    CircuitOpenError,
    ImportTimeoutError,
    InvalidCredentialError,
    SyncError,
    ValidationError,
)


# Errors that make every remaining item pointless to try
FATAL_ERRORS = (InvalidCredentialError, CircuitOpenError, ImportTimeoutError)


def is_fatal(error: BaseException) -> bool:
    return isinstance(error, FATAL_ERRORS) or not isinstance(error, SyncError)


class BatchFetcher:
    """
    Retrieves full entity bodies for a known list of ids.

    Each round fetches up to batch_size ids together. Items that fail are
    retried in further passes with exponential backoff. After all rounds the
    aggregate failure rate decides whether the result is usable.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        endpoint: str = "/workouts",
        entity_key: Optional[str] = "workout",
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 100,
        retry_attempts: int = 2,
        failure_threshold: float = 0.5,
        min_success_count: int = 1,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize batch fetcher.

        Args:
            executor: Performs the guarded per-item requests
            endpoint: Collection path; items are fetched from {endpoint}/{id}
            entity_key: Response key wrapping the entity, if the API wraps it
            retry_policy: Backoff between retry passes
            batch_size: Ids fetched concurrently per round
            retry_attempts: Extra passes for failed items
            failure_threshold: Failure ratio above which the whole fetch is rejected
            min_success_count: Fewer successes than this rejects the whole fetch
            logger: Optional structured logger
        """
        self.executor = executor
        self.endpoint = endpoint.rstrip("/")
        self.entity_key = entity_key
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.failure_threshold = failure_threshold
        self.min_success_count = min_success_count
        self.logger = logger

    async def fetch_all(
        self,
        ids: Sequence[Any],
        cancel_token: Optional['CancelToken'] = None
    ) -> BatchFetchResult:
        """
        Fetch every id, keeping results in input order.

        Raises:
            ValidationError: Too few successes or too many failures
            InvalidCredentialError, CircuitOpenError: Abort on first occurrence
            ImportTimeoutError: cancel_token fired between rounds or passes
        """
        ids = list(ids)
        if not ids:
            return BatchFetchResult()

        succeeded: List[Dict[str, Any]] = []
        failed_ids: List[Any] = []

        for round_index, start in enumerate(range(0, len(ids), self.batch_size)):
            chunk = ids[start:start + self.batch_size]
            self._check_cancel(cancel_token, len(succeeded), round_index)

            entities, failed = await self._fetch_round(chunk, cancel_token, len(succeeded), round_index)
            succeeded.extend(entities)
            failed_ids.extend(failed)

            if self.logger:
                self.logger.batch_round(round_index, len(chunk), len(failed))

        result = BatchFetchResult(succeeded=succeeded, failed_ids=failed_ids)
        self._validate(result)
        return result

    async def _fetch_round(
        self,
        chunk: List[Any],
        cancel_token: Optional['CancelToken'],
        done: int,
        round_index: int
    ) -> Tuple[List[Dict[str, Any]], List[Any]]:
        found: Dict[int, Dict[str, Any]] = {}
        pending = list(range(len(chunk)))

        for attempt in range(self.retry_attempts + 1):
            if attempt > 0:
                self._check_cancel(cancel_token, done + len(found), round_index)
                await self.retry_policy.backoff(attempt - 1)

            results = await asyncio.gather(
                *(self._fetch_one(chunk[i], cancel_token) for i in pending),
                return_exceptions=True,
            )

            still_failing = []
            for position, outcome in zip(pending, results):
                if isinstance(outcome, BaseException):
                    if is_fatal(outcome):
                        raise outcome
                    still_failing.append(position)
                else:
                    found[position] = outcome
            pending = still_failing
            if not pending:
                break

        entities = [found[i] for i in range(len(chunk)) if i in found]
        return entities, [chunk[i] for i in pending]

    async def _fetch_one(self, entity_id: Any, cancel_token: Optional['CancelToken']) -> Dict[str, Any]:
        payload = await self.executor.get(
            f"{self.endpoint}/{entity_id}",
            cancel_token=cancel_token,
            max_retries=0,
        )
        if self.entity_key and isinstance(payload, dict) and isinstance(payload.get(self.entity_key), dict):
            return payload[self.entity_key]
        return payload

    def _check_cancel(self, cancel_token: Optional['CancelToken'], done: int, round_index: int) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(
                f"Timeout approaching while fetching {self.endpoint} by id (round {round_index})",
                items_processed=done,
                endpoint=self.endpoint,
                round=round_index,
            )

    def _validate(self, result: BatchFetchResult) -> None:
        total = result.total
        failed = len(result.failed_ids)

        if len(result.succeeded) < self.min_success_count:
            raise ValidationError(
                f"Only {len(result.succeeded)} of {total} items fetched successfully "
                f"(minimum {self.min_success_count})",
                failed_ids=result.failed_ids,
                total=total,
                context={"endpoint": self.endpoint},
            )

        if failed > 1 and failed / total > self.failure_threshold:
            raise ValidationError(
                f"Too many failures: {failed} of {total} items could not be fetched",
                failed_ids=result.failed_ids,
                total=total,
                context={"endpoint": self.endpoint},
            )

        if failed and self.logger:
            self.logger.batch_partial_failure(result.failed_ids, total)
