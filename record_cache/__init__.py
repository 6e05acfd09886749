"""
record_cache - read-through cache for slow or rate-limited data sources.
"""
from .cache import (
    CacheEntry,
    KeylessRecordCache,
    RecordCache,
    SchedulerState,
)
from .drivers import CacheDriver, MemoryCacheDriver, RedisCacheDriver, SQLCacheDriver
from .errors import (
    FetchFailed,
    NoFetcherConfigured,
    RecordCacheError,
    RecordNotFound,
    StorageUnavailable,
)
from .http_fetcher import HttpJsonFetcher

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "KeylessRecordCache",
    "RecordCache",
    "SchedulerState",
    "CacheDriver",
    "MemoryCacheDriver",
    "RedisCacheDriver",
    "SQLCacheDriver",
    "FetchFailed",
    "NoFetcherConfigured",
    "RecordCacheError",
    "RecordNotFound",
    "StorageUnavailable",
    "HttpJsonFetcher",
]
