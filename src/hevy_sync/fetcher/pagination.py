"""Walks paged collection endpoints and feeds each page to a sink."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from hevy_sync.fetcher.rate_limiter import RateLimitTracker
from hevy_sync.fetcher.request_executor import RequestExecutor
from hevy_sync.models.data_models import PageCursor
from hevy_sync.models.errors import (
    ApiError,
    ImportTimeoutError,
    PaginationLimitError,
    SyncError,
)
from hevy_sync.models.sink import PageSink, call_sink


TOO_MANY_REQUESTS = 429
NOT_FOUND = 404

# Marks a page the server reported as missing (end of collection)
_EXHAUSTED = object()


class PaginationOrchestrator:
    """
    Fetches pages 1..N of an endpoint until the collection is exhausted.

    Pagination terminates when:
    - A page returns fewer items than page_size
    - The page_count metadata says the current page is the last
    - The server returns 404 for a page
    - max_pages is exceeded (raised as PaginationLimitError)
    """

    def __init__(
        self,
        executor: RequestExecutor,
        rate_limit_tracker: RateLimitTracker,
        concurrency: int = 4,
        max_pages: int = 10000,
        rate_limit_pause: float = 1.0,
        max_page_retries: int = 3,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize orchestrator.

        Args:
            executor: Performs the guarded page requests
            rate_limit_tracker: Consulted for the delay before each further batch
            concurrency: Pages requested together per batch (1 = sequential)
            max_pages: Hard ceiling on pages per walk
            rate_limit_pause: Pause before retrying a page rejected with 429 in a batch
            max_page_retries: How many times one page is retried after a 429
            sleeper: Async sleep function (default: asyncio.sleep)
            logger: Optional structured logger
        """
        self.executor = executor
        self.rate_limit_tracker = rate_limit_tracker
        self.concurrency = concurrency
        self.max_pages = max_pages
        self.rate_limit_pause = rate_limit_pause
        self.max_page_retries = max_page_retries
        self._sleep = sleeper
        self.logger = logger

    async def walk(
        self,
        endpoint: str,
        page_size: int,
        sink: PageSink,
        data_key: str,
        extra_params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional['CancelToken'] = None,
        concurrency: Optional[int] = None
    ) -> int:
        """
        Fetch every page of endpoint, passing each page's items to sink in page order.

        Args:
            endpoint: Collection path, e.g. /workouts
            page_size: Items requested per page
            sink: Called with the item list of every non-empty page
            data_key: Response key holding the page items
            extra_params: Additional query parameters sent with every page
            cancel_token: Polled before every batch of pages
            concurrency: Override the default number of pages per batch

        Returns:
            Total number of items handed to the sink

        Raises:
            ImportTimeoutError: cancel_token fired; carries items and pages processed
            PaginationLimitError: max_pages exceeded
            SyncError: Any other request failure, with endpoint and page context
        """
        batch_width = max(1, concurrency or self.concurrency)
        cursor = PageCursor(endpoint, 1, page_size, dict(extra_params or {}))
        total = 0
        pages = 0

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(
                    f"Timeout approaching while fetching {endpoint} (page {cursor.page})",
                    items_processed=total,
                    pages_processed=pages,
                    endpoint=endpoint,
                    page=cursor.page,
                )

            if cursor.page > self.max_pages:
                raise PaginationLimitError(
                    f"Maximum page limit ({self.max_pages}) reached while fetching {endpoint}. "
                    f"This may indicate an infinite loop or API inconsistency. "
                    f"Total items processed: {total}",
                    items_processed=total,
                    context={"endpoint": endpoint, "page": cursor.page},
                )

            if pages > 0:
                await self._sleep(self.rate_limit_tracker.delay_before_next_request())

            width = min(batch_width, self.max_pages - cursor.page + 1)
            batch = [cursor.next(offset) for offset in range(width)]
            in_batch = width > 1
            results = await asyncio.gather(
                *(self._fetch_page(page_cursor, cancel_token, in_batch) for page_cursor in batch),
                return_exceptions=True,
            )

            # Results line up with batch positions, not arrival order
            for page_cursor, payload in zip(batch, results):
                if isinstance(payload, ImportTimeoutError):
                    raise ImportTimeoutError(
                        f"Timeout approaching while fetching {endpoint} (page {page_cursor.page})",
                        items_processed=total,
                        pages_processed=pages,
                        context={"endpoint": endpoint, "page": page_cursor.page},
                    ) from payload
                if isinstance(payload, BaseException):
                    raise payload

                if payload is _EXHAUSTED:
                    self._finish(endpoint, pages, total, "not_found")
                    return total

                items = self._items(payload, data_key)
                if items:
                    await call_sink(sink, items)
                    total += len(items)
                pages += 1

                if self.logger:
                    self.logger.page_applied(endpoint, page_cursor.page, len(items), total)

                reason = self._end_reason(payload, items, page_cursor)
                if reason:
                    self._finish(endpoint, pages, total, reason)
                    return total

            cursor = batch[-1].next()

    async def _fetch_page(
        self,
        cursor: PageCursor,
        cancel_token: Optional['CancelToken'],
        in_batch: bool
    ) -> Union[Dict[str, Any], object]:
        retries = 0
        while True:
            try:
                return await self.executor.get(cursor.endpoint, cursor.params(), cancel_token)
            except ApiError as e:
                if e.status_code == NOT_FOUND:
                    return _EXHAUSTED
                if in_batch and e.status_code == TOO_MANY_REQUESTS and retries < self.max_page_retries:
                    if self.logger:
                        self.logger.warning(
                            "page_rate_limited",
                            source=cursor.endpoint,
                            page=cursor.page,
                            retry=retries + 1,
                        )
                    await self._sleep(self.rate_limit_pause)
                    retries += 1
                    continue
                raise e.with_context(endpoint=cursor.endpoint, page=cursor.page)
            except ImportTimeoutError:
                raise
            except SyncError as e:
                raise e.with_context(endpoint=cursor.endpoint, page=cursor.page)

    @staticmethod
    def _items(payload: Any, data_key: str) -> List[Dict[str, Any]]:
        if not isinstance(payload, dict):
            return []
        items = payload.get(data_key)
        return list(items) if items else []

    @staticmethod
    def _end_reason(payload: Any, items: List[Dict[str, Any]], cursor: PageCursor) -> Optional[str]:
        if len(items) < cursor.page_size:
            return "short_page"
        page_count = payload.get("page_count") if isinstance(payload, dict) else None
        if page_count and cursor.page >= int(page_count):
            return "page_count"
        return None

    def _finish(self, endpoint: str, pages: int, total: int, reason: str) -> None:
        if self.logger:
            self.logger.pagination_complete(endpoint, pages, total, reason)
