"""Concurrent CPU usage monitoring for a set of pids."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from queue import Queue

from procvisor.models import UsageSnapshot
from procvisor.sampler import CPUUsageSampler

_logger = logging.getLogger(__name__)


class UsageMonitor:
    """
    Samples the CPU usage of watched pids in a background thread.

    Every round samples all pids in parallel, one worker per pid, because
    each sample blocks for the sampler's interval. Results are pushed to a
    thread-safe Queue. Pids that stop running are dropped from the watch set
    and their cached usage is forgotten.
    """

    def __init__(
        self,
        update_queue: Queue[UsageSnapshot],
        sampler: CPUUsageSampler | None = None,
        poll_rate: float = 2.0,
        max_workers: int | None = None,
    ) -> None:
        """
        Initialize the UsageMonitor.

        Args:
            update_queue: Thread-safe queue to push snapshots to.
            sampler: Sampler shared with other callers. Created if omitted.
            poll_rate: Seconds between rounds. Default 2.0s.
            max_workers: Optional cap on concurrent samples. By default every
                watched pid gets its own worker each round.
        """
        self._queue = update_queue
        self._sampler = sampler or CPUUsageSampler()
        self._poll_rate = poll_rate
        self._max_workers = max_workers
        self._lock = threading.Lock()
        self._watched: set[int] = set()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def watched(self) -> list[int]:
        with self._lock:
            return sorted(self._watched)

    def watch(self, pid: int) -> None:
        with self._lock:
            self._watched.add(pid)

    def unwatch(self, pid: int) -> None:
        with self._lock:
            self._watched.discard(pid)
        self._sampler.forget(pid)

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="UsageMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect())
            except Exception:
                _logger.exception("Usage round failed")

            self._stop_event.wait(timeout=self._poll_rate)

    def collect(self) -> UsageSnapshot:
        """Sample every watched pid once and return the round's results."""
        inspector = self._sampler.inspector
        for pid in self.watched:
            if not inspector.is_running(pid):
                _logger.info("Pid %d is gone, no longer watching it", pid)
                self.unwatch(pid)
        pids = self.watched
        if not pids:
            return UsageSnapshot(timestamp=time.time())

        workers = len(pids) if self._max_workers is None else max(1, min(len(pids), self._max_workers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="UsageSample") as pool:
            values = list(pool.map(self._sampler.sample, pids))

        return UsageSnapshot(timestamp=time.time(), usage=dict(zip(pids, values)))
