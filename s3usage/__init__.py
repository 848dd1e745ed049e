"""
s3usage

Per-bucket usage collector for Ceph RGW with monthly roll-ups and retention.
"""

from .models import UsageSample, MonthlyAverage, CollectorConfig
from .signer import RequestSigner
from .rgw_client import RGWAdminClient
from .storage import Storage
from .aggregation import AggregationEngine
from .retention import RetentionPruner
from .collector import Collector

__version__ = "1.0.0"
__all__ = ['UsageSample', 'MonthlyAverage', 'CollectorConfig', 'RequestSigner', 'RGWAdminClient',
           'Storage', 'AggregationEngine', 'RetentionPruner', 'Collector']
