# Alert Feed - Snapshot Cache
# Immutable (live, history) pair; a refresh builds a new Snapshot and swaps the reference once.

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from alertfeed.services.alert_store import AlertRecord, AlertStore
from alertfeed.time_windows import TimeWindows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    live: tuple[AlertRecord, ...] = ()
    history: tuple[AlertRecord, ...] = ()
    version: int = 0
    refreshed_at: datetime | None = None


def alert_to_payload(record: AlertRecord, windows: TimeWindows) -> dict[str, Any]:
    """Wire form of one row; trigger instant rendered in the reference zone."""
    return {
        "stock": record.symbol,
        "trigger_price": float(record.trigger_price),
        "count": record.occurrence_count,
        "scan_name": record.scan_name,
        "scan_url": record.scan_url,
        "alert_name": record.alert_name,
        "datetime": windows.format_sortable(record.trigger_instant),
        "time": windows.format_local_time(record.trigger_instant),
    }


class SnapshotCache:
    """Process-local materialised view of the live and history partitions."""

    def __init__(self, store: AlertStore, windows: TimeWindows):
        self._store = store
        self._windows = windows
        self._snapshot = Snapshot()

    @property
    def current(self) -> Snapshot:
        return self._snapshot

    async def refresh(self) -> Snapshot:
        """
        Re-run both partition queries and replace the snapshot.
        On StoreUnavailable the previous snapshot stays in place.
        """
        cutoff, start_of_today, end_of_today = self._windows.partition_bounds()
        live, history = await asyncio.gather(
            self._store.range_query(start_of_today, end_of_today, descending=False),
            self._store.range_query(cutoff, start_of_today, descending=True),
        )
        snapshot = Snapshot(
            live=live,
            history=history,
            version=self._snapshot.version + 1,
            refreshed_at=self._windows.now(),
        )
        self._snapshot = snapshot
        logger.debug(
            "Snapshot v%d: %d live, %d history", snapshot.version, len(live), len(history)
        )
        return snapshot
