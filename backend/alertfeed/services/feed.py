# Alert Feed - Feed Coordinator
# mutate -> refresh -> broadcast, serialised under one publication lock so that every
# observer sees snapshots and deltas in store order.

import asyncio
import logging

from starlette.websockets import WebSocket

from alertfeed.errors import StoreUnavailable
from alertfeed.schemas import AlertSubmission
from alertfeed.services.alert_store import AlertStore
from alertfeed.services.broadcast import BroadcastDistributor, Observer
from alertfeed.services.ingestion import build_merge_batch
from alertfeed.services.snapshot_cache import Snapshot, SnapshotCache
from alertfeed.time_windows import TimeWindows

logger = logging.getLogger(__name__)


class AlertFeed:
    def __init__(
        self,
        store: AlertStore,
        windows: TimeWindows,
        cache: SnapshotCache,
        distributor: BroadcastDistributor,
    ):
        self.store = store
        self.windows = windows
        self.cache = cache
        self.distributor = distributor
        self.publication_lock = asyncio.Lock()

    async def _refresh_and_publish_init(self) -> Snapshot:
        snapshot = await self.cache.refresh()
        delivered = self.distributor.publish_init(snapshot, self.windows)
        logger.debug("Init v%d pushed to %d observer(s)", snapshot.version, delivered)
        return snapshot

    async def prime(self) -> Snapshot:
        """Full refresh on startup."""
        async with self.publication_lock:
            return await self._refresh_and_publish_init()

    async def publish_full_refresh(self) -> Snapshot:
        """Full refresh for a caller that already holds the publication lock."""
        return await self._refresh_and_publish_init()

    async def submit(self, submission: AlertSubmission) -> int:
        """
        Ingest one submission. Returns the number of merged items (0 = no-op).
        MalformedTimeString / StoreUnavailable from the merge propagate and nothing is
        broadcast. Once the merge has committed the submission counts as accepted: a
        failed cache refresh is logged and the delta is still pushed.
        """
        items = build_merge_batch(submission, self.windows)
        if not items:
            return 0
        async with self.publication_lock:
            delta = await self.store.merge_upsert(items)
            try:
                await self.cache.refresh()
            except StoreUnavailable as e:
                logger.error("Snapshot refresh after merge failed, keeping v%d: %s", self.cache.current.version, e)
            delivered = self.distributor.publish_delta(delta, self.windows)
        logger.info("Merged %d alert(s); delta of %d row(s) pushed to %d observer(s)", len(items), len(delta), delivered)
        return len(items)

    async def clear_live(self) -> int:
        start_of_today, end_of_today = self.windows.day_bounds()
        async with self.publication_lock:
            removed = await self.store.delete_range(start_of_today, end_of_today)
            await self._refresh_and_publish_init()
        logger.info("Live clear removed %d row(s)", removed)
        return removed

    async def clear_history(self) -> int:
        start_of_today, _ = self.windows.day_bounds()
        async with self.publication_lock:
            removed = await self.store.delete_before(start_of_today)
            await self._refresh_and_publish_init()
        logger.info("History clear removed %d row(s)", removed)
        return removed

    async def connect(self, websocket: WebSocket) -> Observer:
        return await self.distributor.connect(websocket, lambda: self.cache.current, self.windows)
