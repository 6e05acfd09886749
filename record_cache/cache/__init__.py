"""
Read-through caching with per-entry TTL, on-demand and scheduled bulk refresh.
"""
from .core import CacheEntry, SchedulerState, ttl_seconds
from .fetchers import (
    KEYLESS_KEY,
    BulkFetcher,
    KeylessBulkAdapter,
    KeylessFetcher,
    KeylessOnDemandAdapter,
    OnDemandFetcher,
)
from .coalescer import RequestCoalescer
from .scheduler import RecurringScheduler
from .engine import RecordCache
from .keyless import KeylessRecordCache

__all__ = [
    # Core types
    "CacheEntry",
    "SchedulerState",
    "ttl_seconds",
    # Fetch strategies
    "KEYLESS_KEY",
    "OnDemandFetcher",
    "BulkFetcher",
    "KeylessFetcher",
    "KeylessOnDemandAdapter",
    "KeylessBulkAdapter",
    # Building blocks
    "RequestCoalescer",
    "RecurringScheduler",
    # Caches
    "RecordCache",
    "KeylessRecordCache",
]
