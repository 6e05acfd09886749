"""
Request coalescing for on-demand refreshes.

When several callers miss on the same key at once, only the first one
calls the fetch origin; the others wait and share its outcome.
"""
import threading
import time
import logging
from typing import Any, Callable, Dict, Hashable, Optional
from dataclasses import dataclass, field

logger = logging.getLogger("record_cache.coalescer")


@dataclass
class InFlightFetch:
    """Tracks an in-progress origin fetch for one key."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Shares one origin call among concurrent callers for the same key.

    The initiating caller runs the fetch; waiters block on an Event and
    receive the same value or the same exception.
    """

    def __init__(self):
        self._in_flight: Dict[Hashable, InFlightFetch] = {}
        self._lock = threading.Lock()
        self._coalesced = 0

    def get_or_fetch(self, key: Hashable, fetch_fn: Callable[[], Any]) -> Any:
        """
        Join an in-flight fetch for ``key`` or start a new one.

        Waiters block until the initiator finishes; deadlines belong to
        ``fetch_fn``.

        Raises:
            Exception: Whatever ``fetch_fn`` raised, unchanged
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._coalesced += 1
                is_initiator = False
                logger.debug(
                    f"Coalescing fetch for {key!r} (waiters: {in_flight.waiter_count})"
                )
            else:
                in_flight = InFlightFetch()
                self._in_flight[key] = in_flight
                is_initiator = True

        if is_initiator:
            try:
                in_flight.result = fetch_fn()
            except Exception as e:
                in_flight.error = e
            finally:
                in_flight.event.set()
                with self._lock:
                    self._in_flight.pop(key, None)

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result

        in_flight.event.wait()
        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    @property
    def active_fetches(self) -> int:
        """Number of fetches currently in flight."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_fetches": len(self._in_flight),
                "coalesced": self._coalesced,
            }
