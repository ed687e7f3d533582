"""CPU utilization sampling with exponential smoothing."""

import logging
import threading
import time
from collections.abc import Callable

from procvisor.config import get_settings
from procvisor.exceptions import SampleUnavailable
from procvisor.inspector import ProcessInspector, default_inspector
from procvisor.models import CPUTimeSample, SmoothedUsage

_logger = logging.getLogger(__name__)

# Weights of the new reading and of the previous smoothed value. They do not
# sum to 1, so repeated idle samples decay toward zero.
NEW_WEIGHT = 0.3
PREVIOUS_WEIGHT = 0.2


class UsageCache:
    """Smoothed usage per pid, guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[int, SmoothedUsage] = {}

    def get(self, pid: int) -> SmoothedUsage | None:
        with self._lock:
            return self._entries.get(pid)

    def put(self, pid: int, percentage: float, sample: CPUTimeSample) -> SmoothedUsage:
        entry = SmoothedUsage(pid=pid, last_percentage=percentage, last_sample=sample)
        with self._lock:
            self._entries[pid] = entry
        return entry

    def evict(self, pid: int) -> bool:
        with self._lock:
            return self._entries.pop(pid, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def pids(self) -> list[int]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, pid: object) -> bool:
        with self._lock:
            return pid in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CPUUsageSampler:
    """
    Measures a process's CPU usage as a smoothed percentage.

    Each warm ``sample`` takes two CPU-time snapshots ``interval`` seconds
    apart, blocking the calling thread in between. To watch many processes
    at once, sample each pid from its own worker thread.

    The cache is keyed by pid. An entry whose recorded start time differs
    from the live process is treated as belonging to a reused pid and starts
    over, but an entry for a pid that exited and was never reused stays
    until ``forget`` is called.
    """

    def __init__(
        self,
        inspector: ProcessInspector | None = None,
        cache: UsageCache | None = None,
        interval: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the sampler.

        Args:
            inspector: Source of CPU-time snapshots. Defaults to the platform inspector.
            cache: Shared smoothed-usage store. A private one is created if omitted.
            interval: Seconds between the two snapshots. Default from settings.
            sleep: Blocking wait, replaceable in tests.
        """
        self._inspector = inspector or default_inspector()
        self._cache = cache if cache is not None else UsageCache()
        self._interval = interval if interval is not None else get_settings().sample_interval
        self._sleep = sleep

    @property
    def inspector(self) -> ProcessInspector:
        return self._inspector

    @property
    def cache(self) -> UsageCache:
        return self._cache

    @property
    def interval(self) -> float:
        return self._interval

    def _snapshot(self, pid: int) -> CPUTimeSample:
        sample = self._inspector.cpu_time_of(pid)
        if sample is None:
            raise SampleUnavailable(f"no CPU time for pid {pid}")
        return sample

    def sample(self, pid: int) -> float:
        """
        Return the smoothed CPU percentage of ``pid``, in ``[0, 100 * cores]``.

        The first call for a pid only records a baseline and returns 0.0. If
        the process cannot be read at either snapshot, 0.0 is returned and
        the stored state is left as it was.
        """
        previous = self._cache.get(pid)
        try:
            first = self._snapshot(pid)
            if previous is None or previous.last_sample.start_time != first.start_time:
                self._cache.put(pid, 0.0, first)
                return 0.0

            self._sleep(self._interval)
            second = self._snapshot(pid)
        except SampleUnavailable as e:
            _logger.debug("%s", e)
            return 0.0

        elapsed = second.taken_at - first.taken_at
        if elapsed <= 0:
            return 0.0

        cores = self._inspector.core_count()
        cpu_delta = second.cpu_seconds - first.cpu_seconds
        raw = 100.0 * (cpu_delta / elapsed) / cores

        smoothed = raw * NEW_WEIGHT + previous.last_percentage * PREVIOUS_WEIGHT
        smoothed = min(max(smoothed, 0.0), 100.0 * cores)

        self._cache.put(pid, smoothed, second)
        return smoothed

    def forget(self, pid: int) -> bool:
        """Drop the cached state for ``pid``. Returns True if there was any."""
        return self._cache.evict(pid)
