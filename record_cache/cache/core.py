"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

V = TypeVar("V")

TTL = Union[int, float, timedelta]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ttl_seconds(ttl: TTL) -> float:
    """Normalize a TTL given as seconds or a timedelta to float seconds."""
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class SchedulerState(Enum):
    """Lifecycle of an engine's background scheduler."""
    UNINITIALIZED = "uninitialized"
    SCHEDULED = "scheduled"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """
    A cached value paired with the moment it was captured.

    Entries are never mutated; a refresh stores a new entry.
    """
    value: V
    fetched_at: datetime

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the value was captured."""
        return ((now or utcnow()) - self.fetched_at).total_seconds()

    def is_stale(self, ttl: TTL, now: Optional[datetime] = None) -> bool:
        """
        True once the entry is at least ``ttl`` old.

        The boundary counts as stale, so a TTL of 0 (or less) means the
        entry is always stale.
        """
        return self.age_seconds(now) >= ttl_seconds(ttl)
