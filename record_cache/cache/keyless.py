"""
Single-value cache built on RecordCache.

Typical use is a rotating credential, e.g. an OAuth token for a third
party API, where there is no key space, just "the current value".
"""
from typing import Any, Dict, Optional

from ..drivers.base import CacheDriver
from .core import TTL
from .engine import RecordCache
from .fetchers import KEYLESS_KEY, KeylessBulkAdapter, KeylessFetcher, KeylessOnDemandAdapter


class KeylessRecordCache:
    """
    Wraps a RecordCache whose only key is ``KEYLESS_KEY``.

    Build one with ``on_demand`` (refresh when the value goes stale on
    read) or ``bulk`` (refresh in the background on a cadence).
    """

    def __init__(self, engine: RecordCache):
        self.engine = engine

    @classmethod
    def on_demand(
        cls,
        driver: CacheDriver,
        fetcher: KeylessFetcher,
        ttl: Optional[TTL] = None,
        **engine_options: Any,
    ) -> "KeylessRecordCache":
        engine = RecordCache(driver, **engine_options)
        return cls(engine.set_on_demand_fetcher(KeylessOnDemandAdapter(fetcher), ttl))

    @classmethod
    def bulk(
        cls,
        driver: CacheDriver,
        fetcher: KeylessFetcher,
        ttl: Optional[TTL] = None,
        **engine_options: Any,
    ) -> "KeylessRecordCache":
        engine = RecordCache(driver, **engine_options)
        return cls(engine.set_bulk_fetcher(KeylessBulkAdapter(fetcher), ttl))

    def get(self) -> Any:
        """Current value; errors from the fetcher propagate unchanged."""
        return self.engine.get(KEYLESS_KEY)

    def close(self, timeout: Optional[float] = None) -> None:
        self.engine.close(timeout)

    def __enter__(self) -> "KeylessRecordCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        return self.engine.get_stats()
