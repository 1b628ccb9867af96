"""Incremental workout sync driven by the API's event log."""

from typing import Any, Dict, List, Optional, Set, Tuple

from hevy_sync.fetcher.batch_fetcher import BatchFetcher
from hevy_sync.fetcher.pagination import PaginationOrchestrator
from hevy_sync.models.clock import Clock, WallClock, utc_iso
from hevy_sync.models.data_models import Event, EventType
from hevy_sync.models.sink import Sink, call_sink
from hevy_sync.storage.kv_store import KVStore


LAST_WORKOUT_UPDATE = "LAST_WORKOUT_UPDATE"


class DeltaEventProcessor:
    """
    Applies workout changes recorded since a cursor.

    Deletions are applied before upserts, so an id that was deleted and then
    recreated within one window ends up present. The stored cursor moves only
    after the whole change set reached the sink.
    """

    def __init__(
        self,
        paginator: PaginationOrchestrator,
        batch_fetcher: BatchFetcher,
        sink: Sink,
        store: KVStore,
        events_path: str = "/workouts/events",
        page_size: int = 10,
        data_key: str = "events",
        cursor_key: str = LAST_WORKOUT_UPDATE,
        clock: Optional[Clock] = None,
        logger: Optional['StructuredLogger'] = None
    ):
        self.paginator = paginator
        self.batch_fetcher = batch_fetcher
        self.sink = sink
        self.store = store
        self.events_path = events_path
        self.page_size = page_size
        self.data_key = data_key
        self.cursor_key = cursor_key
        self.clock = clock or WallClock()
        self.logger = logger

    @staticmethod
    def partition(events: List[Dict[str, Any]]) -> Tuple[Set[str], List[str]]:
        """
        Split raw event log entries into ids to delete and ids to upsert.

        Later events win: an update followed by a delete only deletes, while a
        delete followed by a create both deletes and upserts. Entries without
        an id or with an unknown type are skipped.
        """
        deletes: Set[str] = set()
        upserts: List[str] = []

        for raw in events:
            event = Event.from_api(raw)
            if event is None:
                continue
            if event.type is EventType.DELETED:
                deletes.add(event.entity_id)
                if event.entity_id in upserts:
                    upserts.remove(event.entity_id)
            elif event.entity_id not in upserts:
                upserts.append(event.entity_id)

        return deletes, upserts

    def last_cursor(self) -> Optional[str]:
        return self.store.get(self.cursor_key)

    def store_cursor(self, cursor: str) -> None:
        self.store.set(self.cursor_key, cursor)

    async def sync_since(self, last_cursor: str, cancel_token: Optional['CancelToken'] = None) -> int:
        """
        Apply every change since last_cursor and advance the stored cursor.

        Returns:
            Number of deleted plus upserted entities

        Raises:
            SyncError: Nothing is advanced; the next sync retries the same window
        """
        started_at = utc_iso(self.clock.now())
        events: List[Dict[str, Any]] = []

        await self.paginator.walk(
            self.events_path,
            self.page_size,
            events.extend,
            self.data_key,
            extra_params={"since": last_cursor},
            cancel_token=cancel_token,
            concurrency=1,
        )

        deletes, upsert_ids = self.partition(events)

        if deletes:
            await call_sink(self.sink.delete_by_ids, deletes)

        upserted = 0
        if upsert_ids:
            result = await self.batch_fetcher.fetch_all(upsert_ids, cancel_token)
            if result.succeeded:
                await call_sink(self.sink.upsert, result.succeeded)
            upserted = len(result.succeeded)

        self.store_cursor(started_at)
        if self.logger:
            self.logger.delta_applied(len(deletes), upserted, started_at)
        return len(deletes) + upserted

    async def sync(self, cancel_token: Optional['CancelToken'] = None) -> Optional[int]:
        """Sync from the stored cursor. Returns None when no cursor is stored yet."""
        cursor = self.last_cursor()
        if not cursor:
            return None
        return await self.sync_since(cursor, cancel_token)
