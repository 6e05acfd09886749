"""
Storage backends implementing the CacheDriver contract.
"""
from .base import CacheDriver
from .memory import MemoryCacheDriver
from .redis_driver import RedisCacheDriver, connect_redis
from .sql import SQLCacheDriver, create_cache_engine

__all__ = [
    "CacheDriver",
    "MemoryCacheDriver",
    "RedisCacheDriver",
    "connect_redis",
    "SQLCacheDriver",
    "create_cache_engine",
]
