"""
Retention: drop raw samples of completed months once they are aggregated.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .aggregation import month_start, month_window
from .errors import ConfigurationError
from .models import PRUNE_SCOPES, PruneResult, utcnow
from .storage import Storage

logger = logging.getLogger(__name__)


class RetentionPruner:
    """
    Prunes raw samples for completed months that have monthly averages.

    scope="month": any aggregate in a completed month releases the raw
    samples of every bucket in that month, including buckets that were
    never aggregated.
    scope="bucket": only buckets with their own aggregate for the month
    lose their raw samples.
    """

    def __init__(self, storage: Storage, scope: str = "month"):
        if scope not in PRUNE_SCOPES:
            raise ConfigurationError(f"Invalid prune scope {scope!r}")
        self.storage = storage
        self.scope = scope

    @staticmethod
    def is_completed(year: int, month: int, now: datetime) -> bool:
        """True if the month started strictly before the month containing now."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        now = now.astimezone(timezone.utc)
        return month_start(year, month) < month_start(now.year, now.month)

    def prune(self, now: Optional[datetime] = None) -> PruneResult:
        """
        Delete raw samples of completed, aggregated months.

        Discovery and every delete share one transaction; on failure nothing
        is deleted and PersistenceError propagates.
        """
        if now is None:
            now = utcnow()

        result = PruneResult()

        with self.storage.transaction():
            completed = [(y, m) for (y, m) in self.storage.aggregated_months()
                         if self.is_completed(y, m, now)]

            for year, month in completed:
                start, end = month_window(year, month)
                if self.scope == "bucket":
                    buckets = self.storage.aggregated_buckets(year, month)
                    deleted = self.storage.delete_samples_in_window(start, end, buckets)
                else:
                    deleted = self.storage.delete_samples_in_window(start, end)

                logger.debug("Pruned %d samples from %d-%02d", deleted, year, month)
                result.deleted += deleted
                result.months.append((year, month))

        if not result.months:
            logger.info("No completed months with monthly averages to prune")
        else:
            logger.info("Pruned %d samples from %d completed months", result.deleted, len(result.months))
        return result
