"""
Platform abstraction over OS process metadata.

Two implementations exist: ``ProcfsInspector`` reads Linux ``/proc`` text
records directly, ``PsutilInspector`` goes through psutil and covers every
other POSIX platform. ``default_inspector()`` picks one once per process.
"""

import logging
import os
import sys
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path

import psutil

from procvisor.config import get_settings
from procvisor.exceptions import InspectionError
from procvisor.models import CPUTimeSample, MemoryInfo

_logger = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")

# Fields of /proc/<pid>/stat, counted from the first field after "(comm)".
_STAT_STATE = 0
_STAT_PPID = 1
_STAT_UTIME = 11
_STAT_STIME = 12
_STAT_CUTIME = 13
_STAT_CSTIME = 14
_STAT_STARTTIME = 19

# psutil reports CPU time in seconds; expose it in microsecond ticks.
_PSUTIL_TICKS = 1_000_000


class ProcessInspector(ABC):
    """Read-only queries about OS processes."""

    def __init__(self, max_depth: int | None = None) -> None:
        self._max_depth = max_depth if max_depth is not None else get_settings().max_chain_depth
        self._core_count: int | None = None

    @abstractmethod
    def first_child_of(self, pid: int) -> int | None:
        """Return the first process found whose parent is ``pid``."""

    @abstractmethod
    def cpu_time_of(self, pid: int) -> CPUTimeSample | None:
        """Return cumulative CPU counters for ``pid``, or None if unavailable."""

    @abstractmethod
    def memory_of(self, pid: int) -> MemoryInfo | None:
        """Return resident and virtual memory sizes of ``pid``, or None if unavailable."""

    @abstractmethod
    def is_running(self, pid: int) -> bool:
        """Return True if ``pid`` exists and is not a zombie."""

    def core_count(self) -> int:
        """Number of online logical processors, read once."""
        if self._core_count is None:
            self._core_count = max(1, psutil.cpu_count(logical=True) or 1)
        return self._core_count

    def children_of(self, pid: int) -> list[int]:
        """
        Follow "first child of" links starting at ``pid``.

        The result is a linear chain, oldest descendant first. Siblings are
        not discovered. The walk stops on a repeated pid or after
        ``max_depth`` steps, so a bogus cyclic report cannot loop forever.
        """
        if pid <= 0:
            # 0 is the parent of init: never a chain the caller owns
            return []
        chain: list[int] = []
        seen = {pid}
        current = pid
        while len(chain) < self._max_depth:
            child = self.first_child_of(current)
            if child is None or child in seen:
                break
            chain.append(child)
            seen.add(child)
            current = child
        return chain


def parse_stat(text: str) -> list[str]:
    """
    Split a ``/proc/<pid>/stat`` record into the fields after ``(comm)``.

    The command name may itself contain spaces and parentheses, so the split
    happens at the last closing parenthesis.

    Raises:
        InspectionError: If the record is truncated or has too few fields.
    """
    head, sep, rest = text.rpartition(")")
    if not sep or "(" not in head:
        raise InspectionError(f"malformed stat record: {text[:80]!r}")
    fields = rest.split()
    if len(fields) <= _STAT_STARTTIME:
        raise InspectionError(f"stat record has {len(fields)} fields")
    return fields


def parse_status_memory(text: str) -> MemoryInfo:
    """
    Read VmRSS and VmSize from a ``/proc/<pid>/status`` record.

    Both are reported in kB. Kernel threads and zombies have no such lines
    and come back as zero.

    Raises:
        InspectionError: If a value is not an integer.
    """
    values = {"VmRSS:": 0, "VmSize:": 0}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] in values:
            try:
                values[parts[0]] = int(parts[1]) * 1024
            except ValueError as e:
                raise InspectionError(f"bad {parts[0]} value: {parts[1]!r}") from e
    return MemoryInfo(rss=values["VmRSS:"], vms=values["VmSize:"])


class ProcfsInspector(ProcessInspector):
    """Linux implementation reading ``/proc`` directly."""

    def __init__(self, proc_root: str | Path = PROC_ROOT, max_depth: int | None = None) -> None:
        super().__init__(max_depth)
        self._root = Path(proc_root)
        self._ticks_per_second = os.sysconf("SC_CLK_TCK")

    def _read_stat(self, pid: int) -> list[str]:
        try:
            text = (self._root / str(pid) / "stat").read_text()
        except OSError as e:
            raise InspectionError(f"cannot read stat of {pid}: {e}") from e
        return parse_stat(text)

    def _listed_child(self, pid: int) -> int | None:
        # Only present on kernels built with CONFIG_PROC_CHILDREN.
        path = self._root / str(pid) / "task" / str(pid) / "children"
        try:
            first = path.read_text().split()
        except OSError:
            return None
        if first and first[0].isdigit():
            return int(first[0])
        return None

    def first_child_of(self, pid: int) -> int | None:
        child = self._listed_child(pid)
        if child is not None:
            return child

        try:
            entries = os.scandir(self._root)
        except OSError as e:
            _logger.error("Cannot enumerate %s: %s", self._root, e)
            return None

        with entries:
            for entry in entries:
                if not entry.name.isdigit():
                    continue
                candidate = int(entry.name)
                if candidate == pid:
                    continue
                try:
                    fields = self._read_stat(candidate)
                    ppid = int(fields[_STAT_PPID])
                except (InspectionError, ValueError):
                    # Exited mid-scan or unreadable
                    continue
                if ppid == pid:
                    return candidate
        return None

    def cpu_time_of(self, pid: int) -> CPUTimeSample | None:
        try:
            fields = self._read_stat(pid)
            return CPUTimeSample(
                pid=pid,
                user_ticks=int(fields[_STAT_UTIME]),
                system_ticks=int(fields[_STAT_STIME]),
                children_user_ticks=int(fields[_STAT_CUTIME]),
                children_system_ticks=int(fields[_STAT_CSTIME]),
                ticks_per_second=self._ticks_per_second,
                start_time=int(fields[_STAT_STARTTIME]) / self._ticks_per_second,
                taken_at=time.monotonic(),
            )
        except (InspectionError, ValueError) as e:
            _logger.debug("CPU time of %d unavailable: %s", pid, e)
            return None

    def memory_of(self, pid: int) -> MemoryInfo | None:
        try:
            text = (self._root / str(pid) / "status").read_text()
            return parse_status_memory(text)
        except (OSError, InspectionError) as e:
            _logger.debug("Memory of %d unavailable: %s", pid, e)
            return None

    def core_count(self) -> int:
        if self._core_count is None:
            self._core_count = max(1, os.sysconf("SC_NPROCESSORS_ONLN"))
        return self._core_count

    def is_running(self, pid: int) -> bool:
        try:
            state = self._read_stat(pid)[_STAT_STATE]
        except InspectionError:
            return False
        return state not in ("Z", "X", "x")


class PsutilInspector(ProcessInspector):
    """Portable implementation backed by psutil."""

    def first_child_of(self, pid: int) -> int | None:
        for proc in psutil.process_iter(attrs=["pid", "ppid"]):
            info = proc.info
            if info.get("ppid") == pid and info.get("pid") != pid:
                return info["pid"]
        return None

    def cpu_time_of(self, pid: int) -> CPUTimeSample | None:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                times = proc.cpu_times()
                created = proc.create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            _logger.debug("CPU time of %d unavailable: %s", pid, e)
            return None

        return CPUTimeSample(
            pid=pid,
            user_ticks=round(times.user * _PSUTIL_TICKS),
            system_ticks=round(times.system * _PSUTIL_TICKS),
            children_user_ticks=round(getattr(times, "children_user", 0.0) * _PSUTIL_TICKS),
            children_system_ticks=round(getattr(times, "children_system", 0.0) * _PSUTIL_TICKS),
            ticks_per_second=_PSUTIL_TICKS,
            start_time=created,
            taken_at=time.monotonic(),
        )

    def memory_of(self, pid: int) -> MemoryInfo | None:
        try:
            mem_info = psutil.Process(pid).memory_info()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            _logger.debug("Memory of %d unavailable: %s", pid, e)
            return None
        return MemoryInfo(rss=mem_info.rss, vms=mem_info.vms)

    def is_running(self, pid: int) -> bool:
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            # AccessDenied still means the pid exists
            return psutil.pid_exists(pid)


@lru_cache(maxsize=1)
def default_inspector() -> ProcessInspector:
    """Return the inspector for the running platform."""
    if sys.platform.startswith("linux") and PROC_ROOT.is_dir():
        return ProcfsInspector()
    return PsutilInspector()
