"""
Fetch strategy interfaces consumed by the record cache.

Consumers implement one or more of these and hand them to a
``RecordCache``. Strategies own their own deadlines; the cache never
times out a fetch.
"""
from typing import Any, Dict, Hashable, Mapping, Protocol

# Fixed key under which keyless caches store their single value
KEYLESS_KEY = 0


class OnDemandFetcher(Protocol):
    """Produces one value for a key, invoked on a miss or stale entry."""

    def fetch_by_key(self, key: Hashable) -> Any:
        ...


class BulkFetcher(Protocol):
    """Produces the entire current data set, invoked on a recurring cadence."""

    def fetch_all(self) -> Mapping[Hashable, Any]:
        ...


class KeylessFetcher(Protocol):
    """Produces a single global value (e.g. a rotating credential)."""

    def fetch(self) -> Any:
        ...


class KeylessOnDemandAdapter:
    """Presents a keyless fetcher as an on-demand fetcher; the key is ignored."""

    def __init__(self, fetcher: KeylessFetcher):
        self._fetcher = fetcher

    def fetch_by_key(self, key: Hashable) -> Any:
        return self._fetcher.fetch()


class KeylessBulkAdapter:
    """Presents a keyless fetcher as a bulk fetcher of one entry."""

    def __init__(self, fetcher: KeylessFetcher):
        self._fetcher = fetcher

    def fetch_all(self) -> Dict[Hashable, Any]:
        return {KEYLESS_KEY: self._fetcher.fetch()}
