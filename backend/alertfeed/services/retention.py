# Alert Feed - Retention Sweeper
# Periodic delete of rows older than the retention window; failures wait for the next tick.

import logging

from alertfeed.services.feed import AlertFeed

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(self, feed: AlertFeed):
        self._feed = feed

    async def sweep(self) -> int:
        """
        Delete rows with trigger_instant before the retention cutoff.
        Pushes a full init only when something was removed. Never raises.
        """
        cutoff = self._feed.windows.retention_cutoff()
        try:
            async with self._feed.publication_lock:
                removed = await self._feed.store.delete_before(cutoff)
                if removed:
                    await self._feed.publish_full_refresh()
        except Exception as e:
            logger.exception("Retention sweep failed (cutoff %s): %s", cutoff.isoformat(), e)
            return 0
        if removed:
            logger.info("Retention sweep removed %d row(s) older than %s", removed, cutoff.isoformat())
        else:
            logger.debug("Retention sweep: nothing older than %s", cutoff.isoformat())
        return removed
