"""
Collection pipeline: fetch bucket usage, store samples, roll up, prune.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .aggregation import AggregationEngine
from .errors import PersistenceError
from .models import CollectionResult, CollectorConfig, MonthlyAverage, PruneResult, UsageSample, utcnow
from .retention import RetentionPruner
from .rgw_client import RGWAdminClient
from .storage import Storage

logger = logging.getLogger(__name__)


class Collector:
    """
    Bucket usage collector.

    One short-lived invocation per run:
    - collect(): list buckets, fetch stats one by one, store a sample per
      bucket, then recompute the current month's averages
    - list_monthly() / monthly_average() / history(): read back
    - prune(): drop raw samples of completed, aggregated months
    """

    def __init__(self, config: CollectorConfig,
                 rgw_client: RGWAdminClient = None,
                 storage: Storage = None,
                 output_callback: Callable[[str], None] = None):
        self.config = config
        self._rgw_client = rgw_client
        self.storage = storage or Storage(config.db_path)
        self.output = output_callback or print
        self.aggregation = AggregationEngine(self.storage)
        self.pruner = RetentionPruner(self.storage, scope=config.prune_scope)

    @property
    def rgw_client(self) -> RGWAdminClient:
        # Read-only commands never need credentials
        if self._rgw_client is None:
            self.config.validate()
            self._rgw_client = RGWAdminClient(self.config)
        return self._rgw_client

    def collect(self, now: Optional[datetime] = None, verbose: bool = True) -> CollectionResult:
        """
        Run a single collection cycle.

        Per-bucket fetch and store failures are reported in result.errors and
        never abort the run. Listing buckets and aggregation failures raise.
        """
        start_time = time.time()
        result = CollectionResult()

        if verbose:
            self.output("Collecting bucket usage data...")

        for bucket in self.rgw_client.fetch_all_bucket_results():
            if not bucket.ok:
                result.errors[bucket.bucket_name] = str(bucket.error)
                if verbose:
                    self.output(f"  ERROR getting usage for bucket {bucket.bucket_name}: {bucket.error}")
                continue

            usage = bucket.sample
            try:
                self.storage.store_sample(usage)
            except PersistenceError as e:
                result.errors[usage.bucket_name] = str(e)
                logger.error("Error storing usage data for bucket %s: %s", usage.bucket_name, e)
                if verbose:
                    self.output(f"  ERROR storing usage data for bucket {usage.bucket_name}: {e}")
                continue

            result.stored += 1
            if verbose:
                self.output(f"  Stored usage data for bucket {usage.bucket_name}: "
                            f"{usage.size_bytes} bytes, {usage.object_count} objects")

        # Always recalculate the current month after collecting
        # The current month is judged in UTC, as the pruner does
        if now is None:
            now = utcnow()
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        now = now.astimezone(timezone.utc)
        if verbose:
            self.output("Calculating monthly averages...")
        result.averages = self.aggregation.calculate_monthly_averages(now.year, now.month)

        result.duration = time.time() - start_time
        if verbose:
            self.output(f"Collection completed: {result.stored} stored, "
                        f"{result.failed} failed in {result.duration:.1f}s")

        return result

    def list_monthly(self, year: int, month: int) -> List[MonthlyAverage]:
        return self.storage.query_monthly_averages(year, month)

    def monthly_average(self, bucket_name: str, year: int, month: int) -> MonthlyAverage:
        return self.storage.get_monthly_average(bucket_name, year, month)

    def history(self, bucket_name: str, start: datetime, end: datetime) -> List[UsageSample]:
        return self.storage.query_range(bucket_name, start, end)

    def prune(self, now: Optional[datetime] = None) -> PruneResult:
        return self.pruner.prune(now)

    def close(self):
        """Clean up resources."""
        if self._rgw_client:
            self._rgw_client.close()
        if self.storage:
            self.storage.close()
