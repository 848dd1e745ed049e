"""
Data models for bucket usage samples and monthly averages.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import urlparse

from .errors import ConfigurationError

PRUNE_SCOPES = ('month', 'bucket')


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageSample:
    """One timestamped usage measurement for a bucket."""
    bucket_name: str
    size_bytes: int
    object_count: int
    # Retrieval time, not the bucket's creation time reported by RGW
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def __post_init__(self):
        if not self.bucket_name:
            raise ValueError("bucket_name must not be empty")
        if self.size_bytes < 0 or self.object_count < 0:
            raise ValueError(
                f"negative usage for bucket {self.bucket_name}: "
                f"size_bytes={self.size_bytes}, object_count={self.object_count}"
            )

    def with_id(self, sample_id: int) -> 'UsageSample':
        return replace(self, id=sample_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'bucket_name': self.bucket_name,
            'size_bytes': self.size_bytes,
            'object_count': self.object_count,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MonthlyAverage:
    """Average usage of one bucket over one calendar month."""
    bucket_name: str
    year: int
    month: int
    avg_size_bytes: float
    avg_object_count: float
    sample_count: int

    @property
    def key(self) -> Tuple[str, int, int]:
        return (self.bucket_name, self.year, self.month)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bucket_name': self.bucket_name,
            'year': self.year,
            'month': self.month,
            'avg_size_bytes': self.avg_size_bytes,
            'avg_object_count': self.avg_object_count,
            'sample_count': self.sample_count,
        }


@dataclass
class BucketStatsPayload:
    """Container for the admin API bucket stats response - mirrors GET /admin/bucket?stats=true."""
    bucket_name: str
    owner_id: str = ""
    owner: str = ""
    zonegroup: str = ""
    placement_rule: str = ""
    creation_time: str = ""

    # rgw.main usage, in KiB as reported by RGW
    size_kb: int = 0
    size_kb_actual: int = 0
    num_objects: int = 0

    # Full usage data per category ("rgw.main", "rgw.multimeta", ...)
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return self.size_kb * 1024

    @classmethod
    def from_json(cls, raw: Dict[str, Any], bucket_name: str = "") -> 'BucketStatsPayload':
        usage = raw.get('usage') or {}
        main = usage.get('rgw.main') or {}
        return cls(
            bucket_name=raw.get('bucket') or bucket_name,
            owner_id=raw.get('id', ''),
            owner=raw.get('owner', ''),
            zonegroup=raw.get('zonegroup', ''),
            placement_rule=raw.get('placement_rule', ''),
            creation_time=raw.get('creation_time', ''),
            size_kb=int(main.get('size_kb', 0) or 0),
            size_kb_actual=int(main.get('size_kb_actual', 0) or 0),
            num_objects=int(main.get('num_objects', 0) or 0),
            usage=usage,
        )


@dataclass
class BucketResult:
    """Outcome of fetching one bucket's stats: either a sample or an error."""
    bucket_name: str
    sample: Optional[UsageSample] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.sample is not None and self.error is None


@dataclass
class CollectionResult:
    """Summary of one collection run."""
    stored: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    averages: List[MonthlyAverage] = field(default_factory=list)
    duration: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.errors)


@dataclass
class PruneResult:
    """Summary of one prune run."""
    deleted: int = 0
    months: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class CollectorConfig:
    """Configuration for the collector."""
    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    region: str = "default"
    db_path: str = field(default_factory=lambda: os.path.join(os.path.expanduser("~"), ".s3usage.duckdb"))

    # Admin API settings
    timeout: int = 30
    # Tried in order; a 403 moves on to the next name
    signing_services: Tuple[str, ...] = ("s3",)

    # Retention
    prune_scope: str = "month"

    def __post_init__(self):
        self.signing_services = tuple(self.signing_services)

    def validate(self, require_credentials: bool = True):
        """Raise ConfigurationError if the configuration cannot be used."""
        if require_credentials:
            missing = [name for name, value in (
                ('endpoint', self.endpoint),
                ('access key', self.access_key),
                ('secret key', self.secret_key),
            ) if not value]
            if missing:
                raise ConfigurationError(
                    f"Missing required S3 credentials: {', '.join(missing)}. "
                    "Provide --endpoint, --access-key and --secret-key."
                )

            parsed = urlparse(self.endpoint)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                raise ConfigurationError(f"Invalid endpoint URL: {self.endpoint!r}")

            if not self.region:
                raise ConfigurationError("Region must not be empty")

        if not self.signing_services:
            raise ConfigurationError("At least one signing service name is required")
        if self.prune_scope not in PRUNE_SCOPES:
            raise ConfigurationError(
                f"Invalid prune scope {self.prune_scope!r}, expected one of {', '.join(PRUNE_SCOPES)}"
            )
        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive")
