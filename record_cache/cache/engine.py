"""
Read-through record cache with on-demand and scheduled bulk refresh.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Optional

from config.settings import settings

from ..drivers.base import CacheDriver
from ..errors import NoFetcherConfigured, RecordNotFound
from .coalescer import RequestCoalescer
from .core import TTL, CacheEntry, SchedulerState, ttl_seconds, utcnow
from .fetchers import BulkFetcher, OnDemandFetcher
from .scheduler import RecurringScheduler

module_logger = logging.getLogger("record_cache.engine")


class RecordCache:
    """
    Keyed read-through cache in front of a slow or rate-limited origin.

    Freshness comes from two independent strategies:
    - an on-demand fetcher, called synchronously by ``get`` when a key is
      missing or older than ``on_demand_ttl``
    - a bulk fetcher, called by the background sweep to replace the whole
      store once ``bulk_ttl`` has elapsed since the last bulk refresh

    The first strategy attached runs one sweep immediately and starts the
    recurring scheduler. Later attachments reuse that scheduler.

    Storage is delegated to a ``CacheDriver`` holding ``CacheEntry``
    objects; the driver may be shared with other caches or writers.
    """

    def __init__(
        self,
        driver: CacheDriver,
        *,
        sweep_interval: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "record_cache",
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            driver: Backing store for cache entries
            sweep_interval: Seconds between background sweeps
            clock: Returns the current aware datetime (defaults to UTC now)
            name: Label used in logs, stats and the scheduler thread name
            logger: Receives this cache's log records (default: record_cache.engine)
        """
        self.name = name
        self._driver = driver
        self._clock = clock or utcnow
        self._logger = logger or module_logger
        self._sweep_interval = (
            sweep_interval if sweep_interval is not None
            else settings.sweep_interval_seconds
        )
        self._coalescer = RequestCoalescer()

        # Guards strategies, TTLs and every storage read/write sequence
        self._lock = threading.RLock()
        self._on_demand_fetcher: Optional[OnDemandFetcher] = None
        self._bulk_fetcher: Optional[BulkFetcher] = None
        self._on_demand_ttl = 0.0
        self._bulk_ttl = 0.0
        self._last_bulk_refresh: Optional[datetime] = None

        self._schedule_lock = threading.Lock()
        self._scheduler: Optional[RecurringScheduler] = None
        self._state = SchedulerState.UNINITIALIZED

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "fetch_errors": 0,
            "bulk_refreshes": 0,
            "bulk_failures": 0,
            "stale_removed": 0,
        }

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_on_demand_fetcher(
        self, fetcher: OnDemandFetcher, ttl: Optional[TTL] = None
    ) -> "RecordCache":
        """
        Attach the per-key fetcher and the TTL governing each entry.

        ``ttl`` defaults to settings.on_demand_ttl_seconds.
        """
        if ttl is None:
            ttl = settings.on_demand_ttl_seconds
        with self._lock:
            self._on_demand_fetcher = fetcher
            self._on_demand_ttl = ttl_seconds(ttl)
        self._logger.debug(f"[{self.name}] on-demand refresh set (ttl={self._on_demand_ttl}s)")
        self._ensure_scheduled()
        return self

    def set_bulk_fetcher(
        self, fetcher: BulkFetcher, ttl: Optional[TTL] = None
    ) -> "RecordCache":
        """
        Attach the whole-set fetcher and the cadence of bulk refreshes.

        ``ttl`` defaults to settings.bulk_ttl_seconds.
        """
        if ttl is None:
            ttl = settings.bulk_ttl_seconds
        with self._lock:
            self._bulk_fetcher = fetcher
            self._bulk_ttl = ttl_seconds(ttl)
        self._logger.debug(f"[{self.name}] bulk refresh set (ttl={self._bulk_ttl}s)")
        self._ensure_scheduled()
        return self

    def _ensure_scheduled(self) -> None:
        with self._schedule_lock:
            if self._state is not SchedulerState.UNINITIALIZED:
                self._logger.debug(f"[{self.name}] scheduler already {self._state.value}")
                return
            self._scheduler = RecurringScheduler(
                self.sweep,
                interval=self._sweep_interval,
                name=f"{self.name}-sweep",
            )
            self._state = SchedulerState.SCHEDULED
            self._scheduler.run_now()
            self._scheduler.start()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: Hashable) -> Any:
        """
        Return the value for ``key``, refreshing it first when needed.

        Raises:
            NoFetcherConfigured: Refresh needed but no on-demand fetcher
            RecordNotFound: Key still absent after a successful refresh
            Exception: Any error raised by the on-demand fetcher, unchanged
        """
        refreshed = self.needs_refresh(key)
        if refreshed:
            self._count("misses")
            self.refresh_item(key)
        else:
            self._count("hits")

        with self._lock:
            entry = self._driver.get(key)
        if entry is None and not refreshed:
            # Dropped by a bulk refresh or another writer since the check
            self.refresh_item(key)
            with self._lock:
                entry = self._driver.get(key)
        if entry is None:
            self._logger.error(f"[{self.name}] record {key!r} missing after refresh")
            raise RecordNotFound(key)
        return entry.value

    def needs_refresh(self, key: Hashable) -> bool:
        """
        True when ``key`` is absent or stale.

        Staleness is judged against the on-demand TTL when an on-demand
        fetcher exists, otherwise against the bulk TTL.
        """
        with self._lock:
            entry = self._driver.get(key)
            if entry is None:
                return True
            ttl = (
                self._on_demand_ttl if self._on_demand_fetcher is not None
                else self._bulk_ttl
            )
        return entry.is_stale(ttl, self._clock())

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def refresh_item(self, key: Hashable) -> None:
        """
        Fetch ``key`` from the origin and store it with a fresh timestamp.

        Storage is left untouched when the fetch raises.
        """
        with self._lock:
            fetcher = self._on_demand_fetcher
        if fetcher is None:
            raise NoFetcherConfigured(key)

        self._logger.info(f"[{self.name}] refreshing record {key!r}")
        try:
            value = self._coalescer.get_or_fetch(key, lambda: fetcher.fetch_by_key(key))
        except Exception as e:
            self._count("fetch_errors")
            self._logger.warning(f"[{self.name}] fetch failed for {key!r}: {e}")
            raise

        entry = CacheEntry(value=value, fetched_at=self._clock())
        with self._lock:
            stored = self._driver.set(key, entry)
        if not stored:
            self._logger.warning(f"[{self.name}] could not store record {key!r}")
        self._count("refreshes")
        self._logger.debug(f"[{self.name}] refreshed record {key!r}")

    def sweep(self) -> None:
        """
        One background pass: purge stale entries, then bulk refresh if due.
        """
        with self._lock:
            has_on_demand = self._on_demand_fetcher is not None
            bulk_due = self._bulk_fetcher is not None and self._bulk_refresh_due()

        if has_on_demand:
            self.remove_stale()
        if bulk_due:
            self.refresh_all_records()

    def _bulk_refresh_due(self) -> bool:
        if self._last_bulk_refresh is None:
            return True
        elapsed = (self._clock() - self._last_bulk_refresh).total_seconds()
        return elapsed >= self._bulk_ttl

    def refresh_all_records(self) -> bool:
        """
        Replace the whole store with the bulk fetcher's result.

        On a fetch failure the existing records are kept. When the store
        rejects the clear or any write, whatever was written stays in place.
        Either way ``last_bulk_refresh`` is left alone so the next sweep
        retries, and False is returned; there is no caller to raise to.
        """
        with self._lock:
            fetcher = self._bulk_fetcher
        if fetcher is None:
            return False

        self._logger.info(f"[{self.name}] refreshing all records")
        try:
            latest = dict(fetcher.fetch_all())
        except Exception as e:
            self._count("bulk_failures")
            self._logger.warning(f"[{self.name}] bulk refresh failed, keeping existing records: {e}")
            return False

        now = self._clock()
        with self._lock:
            cleared = self._driver.clear()
            unstored = [
                key for key, value in latest.items()
                if not self._driver.set(key, CacheEntry(value=value, fetched_at=now))
            ]
            if cleared and not unstored:
                self._last_bulk_refresh = self._clock()

        if not cleared or unstored:
            self._count("bulk_failures")
            self._logger.warning(
                f"[{self.name}] bulk refresh incomplete (cleared={cleared}, "
                f"unstored={len(unstored)}/{len(latest)}), retrying next sweep"
            )
            return False
        self._count("bulk_refreshes")
        self._logger.info(f"[{self.name}] cache refreshed with {len(latest)} records")
        return True

    def remove_stale(self) -> int:
        """
        Delete entries older than the on-demand TTL.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._driver.all().items()
                if entry.is_stale(self._on_demand_ttl, now)
            ]
            for key in stale:
                self._driver.delete(key)

        if stale:
            self._logger.info(f"[{self.name}] removed {len(stale)} stale records")
            self._count("stale_removed", len(stale))
        return len(stale)

    # -------------------------------------------------------------------------
    # Lifecycle and introspection
    # -------------------------------------------------------------------------

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop the background scheduler. The driver is left to its owner."""
        with self._schedule_lock:
            scheduler = self._scheduler
            self._state = SchedulerState.STOPPED
        if scheduler is not None:
            scheduler.stop(timeout)
        self._logger.debug(f"[{self.name}] closed")

    def __enter__(self) -> "RecordCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def driver(self) -> CacheDriver:
        return self._driver

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def scheduler(self) -> Optional[RecurringScheduler]:
        return self._scheduler

    @property
    def last_bulk_refresh(self) -> Optional[datetime]:
        return self._last_bulk_refresh

    @property
    def on_demand_ttl(self) -> float:
        return self._on_demand_ttl

    @property
    def bulk_ttl(self) -> float:
        return self._bulk_ttl

    def _count(self, stat: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[stat] += amount

    def get_stats(self) -> Dict[str, Any]:
        """Counters and configuration snapshot for this cache."""
        with self._lock:
            entries = len(self._driver.all())
        with self._stats_lock:
            stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        stats.update({
            "name": self.name,
            "entries": entries,
            "state": self._state.value,
            "on_demand_ttl_seconds": self._on_demand_ttl,
            "bulk_ttl_seconds": self._bulk_ttl,
            "last_bulk_refresh": (
                self._last_bulk_refresh.isoformat() if self._last_bulk_refresh else None
            ),
            "hit_rate_percent": round(stats["hits"] / lookups * 100, 1) if lookups else 0,
            "coalescer": self._coalescer.get_stats(),
        })
        return stats
