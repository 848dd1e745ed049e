"""
Monthly aggregation of raw usage samples.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from .models import MonthlyAverage
from .storage import Storage

logger = logging.getLogger(__name__)

# Storage precision; the month window closes on the last representable instant
RESOLUTION = timedelta(microseconds=1)


def month_start(year: int, month: int) -> datetime:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    return datetime(year, month, 1, tzinfo=timezone.utc)


def next_month(year: int, month: int) -> Tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def previous_month(year: int, month: int) -> Tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """Closed UTC window [first instant, last instant] of a calendar month."""
    start = month_start(year, month)
    end = month_start(*next_month(year, month)) - RESOLUTION
    return start, end


class AggregationEngine:
    """Computes per-bucket monthly averages from raw samples."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def calculate_monthly_averages(self, year: int, month: int) -> List[MonthlyAverage]:
        """
        Recompute every bucket's average for a month and upsert the results.

        Buckets without samples in the month get no row. The whole month is
        recomputed in one transaction.
        """
        start, end = month_window(year, month)
        averages = []

        with self.storage.transaction():
            for bucket_name in self.storage.buckets_in_window(start, end):
                avg_size, avg_objects, count = self.storage.window_stats(bucket_name, start, end)
                if not count:
                    continue

                avg = MonthlyAverage(
                    bucket_name=bucket_name,
                    year=year,
                    month=month,
                    avg_size_bytes=float(avg_size),
                    avg_object_count=float(avg_objects),
                    sample_count=count,
                )
                self.storage.upsert_monthly_average(avg)
                averages.append(avg)

        logger.info("Calculated %d monthly averages for %d-%02d", len(averages), year, month)
        return averages
