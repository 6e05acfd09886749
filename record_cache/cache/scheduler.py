"""
Recurring timer used to drive background sweeps.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("record_cache.scheduler")

DEFAULT_INTERVAL_SECONDS = 60.0


class RecurringScheduler:
    """
    Runs a job on a daemon thread every ``interval`` seconds.

    The first run happens one interval after ``start()``. A job that raises
    is logged and the schedule keeps going. ``start()`` and ``stop()`` are
    idempotent; a stopped scheduler cannot be restarted.
    """

    def __init__(
        self,
        job: Callable[[], None],
        interval: float = DEFAULT_INTERVAL_SECONDS,
        name: str = "record-cache-sweep",
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._job = job
        self.interval = interval
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None or self._stop_event.is_set():
                return
            self._thread = threading.Thread(
                target=self._run, name=self.name, daemon=True
            )
            self._thread.start()
        logger.debug(f"Scheduler {self.name} started (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel future runs and wait for an in-progress run to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"Scheduler {self.name} stopped")

    def run_now(self) -> None:
        """Run the job once on the calling thread."""
        try:
            self._job()
        except Exception:
            logger.exception(f"Scheduled job {self.name} failed")
        finally:
            self.runs += 1

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_now()
