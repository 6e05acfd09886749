"""
Unit tests for the RecordCache staleness and refresh engine.

Time is driven by a fake clock; fetchers are in-memory stubs that record
their calls.
"""
import logging
import threading
import time
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from record_cache.cache import CacheEntry, RecordCache, SchedulerState
from record_cache.drivers import MemoryCacheDriver
from config.settings import settings
from record_cache.errors import NoFetcherConfigured, RecordNotFound


# =============================================================================
# Test Fixtures
# =============================================================================

class FakeClock:
    """Controllable replacement for datetime.now(timezone.utc)."""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class StubOnDemand:
    def __init__(self, value=10, error=None):
        self.value = value
        self.error = error
        self.calls = []

    def fetch_by_key(self, key):
        self.calls.append(key)
        if self.error is not None:
            raise self.error
        return self.value


class StubBulk:
    def __init__(self, data=None, error=None):
        self.data = data or {}
        self.error = error
        self.calls = 0

    def fetch_all(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.data)


class OriginDown(Exception):
    pass


class NonStoringDriver(MemoryCacheDriver):
    """Accepts writes but never keeps them."""

    def set(self, key, value):
        return True


class RejectingDriver(MemoryCacheDriver):
    """Refuses to clear or write, like a backend that is down."""

    def __init__(self, reject_keys=None):
        super().__init__()
        self.reject_keys = reject_keys
        self.reject_clear = reject_keys is None

    def set(self, key, value):
        if self.reject_keys is None or key in self.reject_keys:
            return False
        return super().set(key, value)

    def clear(self):
        if self.reject_clear:
            return False
        return super().clear()


class EvictOnReadDriver(MemoryCacheDriver):
    """Loses selected keys right after reading them, as a concurrent writer would."""

    def __init__(self):
        super().__init__()
        self.evict = set()

    def get(self, key):
        entry = super().get(key)
        if key in self.evict:
            self.evict.discard(key)
            self.delete(key)
        return entry


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def driver():
    return MemoryCacheDriver()


@pytest.fixture
def make_cache(driver, clock):
    """Build caches with a long sweep interval and close them afterwards."""
    created = []

    def _make(on_demand=None, bulk=None, on_demand_ttl=100, bulk_ttl=100, store=None):
        cache = RecordCache(store if store is not None else driver, clock=clock, sweep_interval=3600)
        created.append(cache)
        if on_demand is not None:
            cache.set_on_demand_fetcher(on_demand, on_demand_ttl)
        if bulk is not None:
            cache.set_bulk_fetcher(bulk, bulk_ttl)
        return cache

    yield _make
    for cache in created:
        cache.close(timeout=1)


def seed(driver, clock, key, value, age_seconds=0):
    driver.set(key, CacheEntry(value=value, fetched_at=clock.now - timedelta(seconds=age_seconds)))


# =============================================================================
# Staleness
# =============================================================================

class TestCacheEntry:
    """Tests for the staleness predicate."""

    def test_fresh_entry_is_not_stale(self, clock):
        entry = CacheEntry(value=1, fetched_at=clock.now)
        assert not entry.is_stale(10, clock.now + timedelta(seconds=9.999))

    def test_exact_ttl_boundary_is_stale(self, clock):
        entry = CacheEntry(value=1, fetched_at=clock.now)
        assert entry.is_stale(10, clock.now + timedelta(seconds=10))

    def test_zero_ttl_is_always_stale(self, clock):
        entry = CacheEntry(value=1, fetched_at=clock.now)
        assert entry.is_stale(0, clock.now)

    def test_timedelta_ttl(self, clock):
        entry = CacheEntry(value=1, fetched_at=clock.now)
        later = clock.now + timedelta(minutes=5)
        assert entry.is_stale(timedelta(minutes=5), later)
        assert not entry.is_stale(timedelta(minutes=6), later)

    def test_entry_is_immutable(self, clock):
        entry = CacheEntry(value=1, fetched_at=clock.now)
        with pytest.raises(FrozenInstanceError):
            entry.value = 2


# =============================================================================
# Reads
# =============================================================================

class TestGet:
    """Tests for read-through get()."""

    def test_fresh_record_served_without_fetch(self, make_cache, driver, clock):
        fetcher = StubOnDemand()
        cache = make_cache(on_demand=fetcher)
        seed(driver, clock, "active1", 1)

        assert cache.get("active1") == 1
        assert fetcher.calls == []

    def test_stale_record_is_refetched(self, make_cache, driver, clock):
        fetcher = StubOnDemand(value=10)
        cache = make_cache(on_demand=fetcher)
        seed(driver, clock, "stale1", 1, age_seconds=3600)
        clock.advance(5)

        assert cache.get("stale1") == 10
        assert fetcher.calls == ["stale1"]
        assert driver.get("stale1").fetched_at == clock.now

    def test_missing_record_is_fetched_and_stored(self, make_cache, driver):
        fetcher = StubOnDemand(value=42)
        cache = make_cache(on_demand=fetcher)

        assert cache.get("new") == 42
        assert driver.get("new").value == 42

    def test_missing_record_without_on_demand_fetcher(self, make_cache):
        cache = make_cache()
        with pytest.raises(NoFetcherConfigured):
            cache.get("stale1")

    def test_bulk_only_cache_cannot_fill_missing_key(self, make_cache):
        cache = make_cache(bulk=StubBulk({"a": 1}))
        with pytest.raises(NoFetcherConfigured):
            cache.get("b")

    def test_fetch_error_propagates_unchanged(self, make_cache, driver, clock):
        error = OriginDown("origin unavailable")
        cache = make_cache(on_demand=StubOnDemand(error=error))
        seed(driver, clock, "stale1", 1, age_seconds=3600)
        before = driver.get("stale1")

        with pytest.raises(OriginDown) as exc_info:
            cache.get("stale1")

        assert exc_info.value is error
        assert driver.get("stale1") is before

    def test_record_missing_after_successful_refresh(self, make_cache, clock):
        fetcher = StubOnDemand(value=1)
        cache = make_cache(on_demand=fetcher, store=NonStoringDriver())

        with pytest.raises(RecordNotFound):
            cache.get("ghost")
        # Surfaced, not retried
        assert fetcher.calls == ["ghost"]

    def test_record_not_found_is_a_key_error(self, make_cache):
        cache = make_cache(on_demand=StubOnDemand(), store=NonStoringDriver())
        with pytest.raises(KeyError):
            cache.get("ghost")

    def test_record_dropped_after_freshness_check_is_refetched(self, make_cache, clock):
        store = EvictOnReadDriver()
        fetcher = StubOnDemand(value=7)
        cache = make_cache(on_demand=fetcher, store=store)
        seed(store, clock, "a", 1)
        store.evict.add("a")

        assert cache.get("a") == 7
        assert fetcher.calls == ["a"]

    def test_hit_and_miss_stats(self, make_cache, driver, clock):
        cache = make_cache(on_demand=StubOnDemand())
        seed(driver, clock, "a", 1)

        cache.get("a")
        cache.get("b")
        cache.get("b")

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["refreshes"] == 1
        assert stats["entries"] == 2
        assert stats["state"] == "scheduled"


class TestNeedsRefresh:
    """Tests for which TTL governs staleness."""

    def test_absent_key_needs_refresh(self, make_cache):
        cache = make_cache(on_demand=StubOnDemand())
        assert cache.needs_refresh("missing")

    def test_bulk_only_cache_uses_bulk_ttl(self, make_cache, clock):
        cache = make_cache(bulk=StubBulk({"a": 1}), bulk_ttl=100)

        clock.advance(50)
        assert not cache.needs_refresh("a")
        clock.advance(50)
        assert cache.needs_refresh("a")

    def test_on_demand_ttl_wins_when_configured(self, make_cache, clock):
        cache = make_cache(
            on_demand=StubOnDemand(), bulk=StubBulk({"a": 1}),
            on_demand_ttl=10, bulk_ttl=1000,
        )
        # Bulk was attached second, so its first load waits for the next tick
        cache.sweep()

        clock.advance(5)
        assert not cache.needs_refresh("a")
        clock.advance(15)
        assert cache.needs_refresh("a")


# =============================================================================
# Scheduling
# =============================================================================

class TestScheduling:
    """Tests for scheduler creation and lifecycle."""

    def test_new_cache_is_uninitialized(self, driver):
        cache = RecordCache(driver)
        assert cache.state is SchedulerState.UNINITIALIZED
        assert cache.scheduler is None

    def test_first_attachment_runs_immediate_sweep(self, make_cache):
        bulk = StubBulk({"a": 1})
        cache = make_cache(bulk=bulk)

        assert bulk.calls == 1
        assert cache.state is SchedulerState.SCHEDULED
        assert cache.scheduler.is_running
        assert cache.scheduler.runs == 1

    def test_second_attachment_reuses_scheduler(self, make_cache):
        bulk = StubBulk({"a": 1})
        cache = make_cache(bulk=bulk)
        scheduler = cache.scheduler

        cache.set_on_demand_fetcher(StubOnDemand(), 100)
        cache.set_bulk_fetcher(bulk, 100)

        assert cache.scheduler is scheduler
        assert scheduler.runs == 1
        assert bulk.calls == 1

    def test_one_sweep_effect_per_tick(self, make_cache, clock):
        bulk = StubBulk({"a": 1})
        cache = make_cache(bulk=bulk, bulk_ttl=100)
        cache.set_on_demand_fetcher(StubOnDemand(), 100)

        clock.advance(100)
        cache.scheduler.run_now()

        assert bulk.calls == 2

    def test_reattaching_updates_ttl(self, make_cache):
        cache = make_cache(on_demand=StubOnDemand(), on_demand_ttl=100)
        cache.set_on_demand_fetcher(StubOnDemand(), timedelta(seconds=30))
        assert cache.on_demand_ttl == 30

    def test_ttls_default_from_settings(self, driver, monkeypatch):
        monkeypatch.setattr(settings, "on_demand_ttl_seconds", 42)
        monkeypatch.setattr(settings, "bulk_ttl_seconds", 900)

        with RecordCache(driver, sweep_interval=3600) as cache:
            cache.set_on_demand_fetcher(StubOnDemand())
            cache.set_bulk_fetcher(StubBulk({"a": 1}))

            assert cache.on_demand_ttl == 42
            assert cache.bulk_ttl == 900

    def test_injected_logger_receives_records(self, driver, caplog):
        custom = logging.getLogger("tests.token_cache")

        with caplog.at_level(logging.INFO, logger="tests.token_cache"):
            with RecordCache(driver, sweep_interval=3600, logger=custom) as cache:
                cache.set_on_demand_fetcher(StubOnDemand(), 100)
                cache.get("a")

        assert any(
            r.name == "tests.token_cache" and "refreshing record 'a'" in r.getMessage()
            for r in caplog.records
        )

    def test_close_stops_scheduler(self, make_cache):
        cache = make_cache(on_demand=StubOnDemand())
        scheduler = cache.scheduler

        cache.close(timeout=1)

        assert cache.state is SchedulerState.STOPPED
        assert not scheduler.is_running

    def test_closed_cache_is_never_rescheduled(self, driver):
        cache = RecordCache(driver, sweep_interval=3600)
        cache.close()
        bulk = StubBulk({"a": 1})

        cache.set_bulk_fetcher(bulk, 100)

        assert cache.state is SchedulerState.STOPPED
        assert cache.scheduler is None
        assert bulk.calls == 0

    def test_context_manager_closes(self, driver):
        with RecordCache(driver, sweep_interval=3600) as cache:
            cache.set_on_demand_fetcher(StubOnDemand(), 100)
        assert cache.state is SchedulerState.STOPPED


# =============================================================================
# Sweeps
# =============================================================================

class TestSweep:
    """Tests for stale purging and bulk refresh."""

    def test_bulk_success_replaces_store(self, make_cache, driver, clock):
        seed(driver, clock, "stale_key", "old")

        cache = make_cache(bulk=StubBulk({"a": 1, "b": 2}))

        assert {k: e.value for k, e in driver.all().items()} == {"a": 1, "b": 2}
        assert cache.last_bulk_refresh == clock.now

    def test_bulk_entries_share_capture_time(self, make_cache, driver, clock):
        make_cache(bulk=StubBulk({"a": 1, "b": 2}))
        assert {e.fetched_at for e in driver.all().values()} == {clock.now}

    def test_bulk_failure_keeps_existing_records(self, make_cache, driver, clock, caplog):
        seed(driver, clock, "a", 1)
        bulk = StubBulk(error=OriginDown("bulk origin down"))

        with caplog.at_level(logging.WARNING, logger="record_cache.engine"):
            cache = make_cache(bulk=bulk, bulk_ttl=100)

        assert cache.last_bulk_refresh is None
        assert cache.get("a") == 1
        assert bulk.calls == 1
        assert "bulk refresh failed" in caplog.text

    def test_bulk_failure_retried_next_sweep(self, make_cache):
        bulk = StubBulk(error=OriginDown("down"))
        cache = make_cache(bulk=bulk)

        bulk.error = None
        bulk.data = {"a": 1}
        cache.sweep()

        assert bulk.calls == 2
        assert cache.get("a") == 1

    def test_rejected_bulk_writes_retried_next_sweep(self, make_cache):
        store = RejectingDriver()
        bulk = StubBulk({"a": 1, "b": 2})
        cache = make_cache(bulk=bulk, bulk_ttl=3600, store=store)

        assert store.all() == {}
        assert cache.last_bulk_refresh is None
        assert cache.get_stats()["bulk_failures"] == 1

        cache.sweep()
        assert bulk.calls == 2

        store.reject_keys = set()
        store.reject_clear = False
        cache.sweep()

        assert bulk.calls == 3
        assert cache.last_bulk_refresh is not None
        assert cache.get("a") == 1

    def test_partially_stored_bulk_is_not_marked_done(self, make_cache, clock):
        store = RejectingDriver(reject_keys={"b"})
        cache = make_cache(bulk=StubBulk({"a": 1, "b": 2}), bulk_ttl=3600, store=store)

        assert set(store.all()) == {"a"}
        assert cache.refresh_all_records() is False
        assert cache.last_bulk_refresh is None
        assert cache.get_stats()["bulk_refreshes"] == 0

    def test_bulk_not_repeated_within_ttl(self, make_cache, clock):
        bulk = StubBulk({"a": 1})
        cache = make_cache(bulk=bulk, bulk_ttl=100)

        clock.advance(99)
        cache.sweep()
        assert bulk.calls == 1

        clock.advance(1)
        cache.sweep()
        assert bulk.calls == 2

    def test_refresh_all_without_bulk_fetcher(self, make_cache):
        cache = make_cache(on_demand=StubOnDemand())
        assert cache.refresh_all_records() is False

    def test_sweep_removes_only_stale_entries(self, make_cache, driver, clock):
        cache = make_cache(on_demand=StubOnDemand(), on_demand_ttl=100)
        seed(driver, clock, "fresh", 1, age_seconds=10)
        seed(driver, clock, "stale", 2, age_seconds=200)

        cache.sweep()

        assert set(driver.all()) == {"fresh"}
        assert cache.get_stats()["stale_removed"] == 1

    def test_remove_stale_returns_count(self, make_cache, driver, clock):
        cache = make_cache(on_demand=StubOnDemand(), on_demand_ttl=100)
        seed(driver, clock, "x", 1, age_seconds=100)
        seed(driver, clock, "y", 1, age_seconds=150)

        assert cache.remove_stale() == 2

    def test_bulk_only_sweep_deletes_nothing(self, make_cache, driver, clock):
        cache = make_cache(bulk=StubBulk({"a": 1}), bulk_ttl=1000)
        seed(driver, clock, "old", 2, age_seconds=5000)
        clock.advance(150)

        cache.sweep()

        assert set(driver.all()) == {"a", "old"}


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrency:
    """Tests for concurrent callers."""

    def test_concurrent_misses_share_one_fetch(self, make_cache):
        release = threading.Event()

        class SlowFetcher:
            calls = 0

            def fetch_by_key(self, key):
                SlowFetcher.calls += 1
                release.wait(5)
                return f"value-{key}"

        cache = make_cache(on_demand=SlowFetcher())
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get("k")))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        time.sleep(0.2)
        release.set()
        for t in threads:
            t.join(5)

        assert results == ["value-k"] * 5
        assert SlowFetcher.calls == 1

    def test_waiters_outlast_slow_fetch(self, make_cache):
        started = threading.Event()

        class SlowFetcher:
            calls = 0

            def fetch_by_key(self, key):
                SlowFetcher.calls += 1
                started.set()
                time.sleep(1.0)
                return "v"

        cache = make_cache(on_demand=SlowFetcher())
        results = []
        first = threading.Thread(target=lambda: results.append(cache.get("k")))
        first.start()
        started.wait(5)

        assert cache.get("k") == "v"
        first.join(5)
        assert results == ["v"]
        assert SlowFetcher.calls == 1

    def test_reads_during_bulk_refresh_never_see_empty_store(self, make_cache):
        cache = make_cache(bulk=StubBulk({i: i for i in range(200)}), bulk_ttl=1000)
        failures = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                try:
                    cache.get(7)
                except NoFetcherConfigured as e:
                    failures.append(e)

        t = threading.Thread(target=reader)
        t.start()
        for _ in range(20):
            cache.refresh_all_records()
        stop.set()
        t.join(5)

        assert failures == []
