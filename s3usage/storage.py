"""
DuckDB storage for usage samples and monthly averages.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import duckdb

from .errors import NoDataError, PersistenceError
from .models import MonthlyAverage, UsageSample

logger = logging.getLogger(__name__)


def to_db_time(value: datetime) -> datetime:
    """Aware (or naive-UTC) datetime -> naive UTC, as stored in TIMESTAMP columns."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


class Storage:
    """DuckDB storage: raw samples plus per-month aggregates."""

    def __init__(self, db_path: str, read_only: bool = False):
        self.db_path = db_path
        self.read_only = read_only
        self._in_transaction = False
        try:
            self.conn = duckdb.connect(db_path, read_only=read_only)
        except duckdb.Error as e:
            # Another process holding the file lock ends up here too
            raise PersistenceError(f"Failed to open database {db_path}: {e}") from e
        if not read_only:
            self._init_schema()

    def _execute(self, sql: str, params: Optional[Sequence[Any]] = None):
        try:
            return self.conn.execute(sql, params or [])
        except duckdb.Error as e:
            raise PersistenceError(str(e)) from e

    def _init_schema(self):
        """Initialize database schema."""
        # Auto-increment for both tables
        self._execute("CREATE SEQUENCE IF NOT EXISTS bucket_usage_seq START 1")
        self._execute("CREATE SEQUENCE IF NOT EXISTS monthly_averages_seq START 1")

        # Raw samples, one row per bucket per collection
        self._execute("""
            CREATE TABLE IF NOT EXISTS bucket_usage (
                id BIGINT PRIMARY KEY DEFAULT nextval('bucket_usage_seq'),
                bucket_name VARCHAR NOT NULL,
                size_bytes BIGINT NOT NULL,
                object_count BIGINT NOT NULL,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        # Monthly averages, recomputed in place
        self._execute("""
            CREATE TABLE IF NOT EXISTS monthly_averages (
                id BIGINT PRIMARY KEY DEFAULT nextval('monthly_averages_seq'),
                bucket_name VARCHAR NOT NULL,
                year INTEGER NOT NULL,
                month INTEGER NOT NULL,
                avg_size_bytes DOUBLE NOT NULL,
                avg_object_count DOUBLE NOT NULL,
                sample_count INTEGER NOT NULL,
                UNIQUE (bucket_name, year, month)
            )
        """)

        # Indexes
        self._execute("""
            CREATE INDEX IF NOT EXISTS idx_bucket_usage_name_time
            ON bucket_usage(bucket_name, timestamp)
        """)

    @contextmanager
    def transaction(self) -> Iterator['Storage']:
        """
        Run the enclosed operations in one transaction.

        Commits on success, rolls back on any error. Storage errors surface
        as PersistenceError.
        """
        if self._in_transaction:
            raise PersistenceError("Nested transactions are not supported")

        try:
            self.conn.begin()
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to begin transaction: {e}") from e
        self._in_transaction = True

        try:
            yield self
        except BaseException as e:
            self._in_transaction = False
            try:
                self.conn.rollback()
            except duckdb.Error as rollback_error:
                logger.error("Rollback failed: %s", rollback_error)
            if isinstance(e, duckdb.Error):
                raise PersistenceError(str(e)) from e
            raise

        self._in_transaction = False
        try:
            self.conn.commit()
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to commit transaction: {e}") from e

    # =========================================================================
    # SAMPLES
    # =========================================================================

    def store_sample(self, sample: UsageSample) -> UsageSample:
        """Append a sample. Returns it with the store-assigned id."""
        row = self._execute("""
            INSERT INTO bucket_usage (bucket_name, size_bytes, object_count, timestamp)
            VALUES (?, ?, ?, ?)
            RETURNING id
        """, [sample.bucket_name, sample.size_bytes, sample.object_count,
              to_db_time(sample.timestamp)]).fetchone()
        return sample.with_id(row[0])

    def query_range(self, bucket_name: str, start: datetime, end: datetime) -> List[UsageSample]:
        """Samples for a bucket with start <= timestamp <= end, oldest first."""
        rows = self._execute("""
            SELECT id, bucket_name, size_bytes, object_count, timestamp
            FROM bucket_usage
            WHERE bucket_name = ? AND timestamp BETWEEN ? AND ?
            ORDER BY timestamp, id
        """, [bucket_name, to_db_time(start), to_db_time(end)]).fetchall()

        return [UsageSample(id=r[0], bucket_name=r[1], size_bytes=r[2], object_count=r[3],
                            timestamp=from_db_time(r[4])) for r in rows]

    def buckets_in_window(self, start: datetime, end: datetime) -> List[str]:
        """Distinct buckets with at least one sample in [start, end]."""
        rows = self._execute("""
            SELECT DISTINCT bucket_name
            FROM bucket_usage
            WHERE timestamp BETWEEN ? AND ?
            ORDER BY bucket_name
        """, [to_db_time(start), to_db_time(end)]).fetchall()
        return [r[0] for r in rows]

    def window_stats(self, bucket_name: str, start: datetime,
                     end: datetime) -> Tuple[Optional[float], Optional[float], int]:
        """AVG(size), AVG(objects), COUNT(*) for one bucket in [start, end]."""
        row = self._execute("""
            SELECT AVG(size_bytes), AVG(object_count), COUNT(*)
            FROM bucket_usage
            WHERE bucket_name = ? AND timestamp BETWEEN ? AND ?
        """, [bucket_name, to_db_time(start), to_db_time(end)]).fetchone()
        return row[0], row[1], row[2]

    def delete_samples_in_window(self, start: datetime, end: datetime,
                                 bucket_names: Optional[Sequence[str]] = None) -> int:
        """
        Delete samples in [start, end]. Returns the number of rows deleted.

        Without bucket_names every bucket's samples in the window go.
        """
        if bucket_names is None:
            row = self._execute("""
                DELETE FROM bucket_usage
                WHERE timestamp >= ? AND timestamp <= ?
            """, [to_db_time(start), to_db_time(end)]).fetchone()
            return row[0] if row else 0

        deleted = 0
        for name in bucket_names:
            row = self._execute("""
                DELETE FROM bucket_usage
                WHERE bucket_name = ? AND timestamp >= ? AND timestamp <= ?
            """, [name, to_db_time(start), to_db_time(end)]).fetchone()
            deleted += row[0] if row else 0
        return deleted

    def count_samples(self, bucket_name: Optional[str] = None) -> int:
        if bucket_name is None:
            return self._execute("SELECT COUNT(*) FROM bucket_usage").fetchone()[0]
        return self._execute(
            "SELECT COUNT(*) FROM bucket_usage WHERE bucket_name = ?", [bucket_name]
        ).fetchone()[0]

    # =========================================================================
    # MONTHLY AVERAGES
    # =========================================================================

    def upsert_monthly_average(self, avg: MonthlyAverage):
        """
        Insert or overwrite the stats for (bucket_name, year, month).

        Not idempotent across prunes: recomputing after samples were deleted
        replaces the earlier stats with whatever samples remain.
        """
        self._execute("""
            INSERT INTO monthly_averages
                (bucket_name, year, month, avg_size_bytes, avg_object_count, sample_count)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (bucket_name, year, month) DO UPDATE SET
                avg_size_bytes = EXCLUDED.avg_size_bytes,
                avg_object_count = EXCLUDED.avg_object_count,
                sample_count = EXCLUDED.sample_count
        """, [avg.bucket_name, avg.year, avg.month, avg.avg_size_bytes,
              avg.avg_object_count, avg.sample_count])

    def query_monthly_averages(self, year: int, month: int) -> List[MonthlyAverage]:
        """All per-bucket averages for a month, ordered by bucket name."""
        rows = self._execute("""
            SELECT bucket_name, year, month, avg_size_bytes, avg_object_count, sample_count
            FROM monthly_averages
            WHERE year = ? AND month = ?
            ORDER BY bucket_name
        """, [year, month]).fetchall()
        return [MonthlyAverage(*r) for r in rows]

    def get_monthly_average(self, bucket_name: str, year: int, month: int) -> MonthlyAverage:
        """Average for one bucket and month. Raises NoDataError if none was computed."""
        row = self._execute("""
            SELECT bucket_name, year, month, avg_size_bytes, avg_object_count, sample_count
            FROM monthly_averages
            WHERE bucket_name = ? AND year = ? AND month = ?
        """, [bucket_name, year, month]).fetchone()
        if not row:
            raise NoDataError(f"No data available for bucket {bucket_name} in {year}-{month:02d}")
        return MonthlyAverage(*row)

    def aggregated_months(self) -> List[Tuple[int, int]]:
        """Distinct (year, month) pairs that have at least one average."""
        rows = self._execute("""
            SELECT DISTINCT year, month
            FROM monthly_averages
            ORDER BY year, month
        """).fetchall()
        return [(r[0], r[1]) for r in rows]

    def aggregated_buckets(self, year: int, month: int) -> List[str]:
        rows = self._execute("""
            SELECT bucket_name FROM monthly_averages
            WHERE year = ? AND month = ?
            ORDER BY bucket_name
        """, [year, month]).fetchall()
        return [r[0] for r in rows]

    def close(self):
        """Close connection."""
        self.conn.close()
