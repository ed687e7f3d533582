"""Data models for procvisor."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path


@dataclass(slots=True, frozen=True)
class LaunchSpec:
    """Parameters for a single launch. Consumed once by the launcher."""

    name: str
    shell: str
    command: str
    log_dir: str | Path
    args: Sequence[str] = ()
    env: Sequence[str] = ()  # "KEY=VALUE" entries

    def environment(self) -> dict[str, str]:
        """Return ``env`` as a mapping. Later duplicates win."""
        result: dict[str, str] = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            if key:
                result[key] = value
        return result


@dataclass(slots=True, frozen=True)
class CPUTimeSample:
    """Cumulative CPU counters of one pid at one instant."""

    pid: int
    user_ticks: int
    system_ticks: int
    children_user_ticks: int  # 0 where the platform does not expose it
    children_system_ticks: int
    ticks_per_second: int
    start_time: float  # OS start time of the process, used to spot pid reuse
    taken_at: float  # monotonic clock reading

    @property
    def cpu_seconds(self) -> float:
        """CPU time consumed by the process itself, in seconds."""
        return (self.user_ticks + self.system_ticks) / self.ticks_per_second


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    """Memory footprint of one pid."""

    rss: int  # Bytes
    vms: int  # Bytes


@dataclass(slots=True)
class SmoothedUsage:
    """Last smoothed CPU percentage and the sample it was computed from."""

    pid: int
    last_percentage: float
    last_sample: CPUTimeSample


class Generation(IntEnum):
    """Which side of a daemonizing fork the caller is on."""

    CHILD = 0
    PARENT = 1
    FAILED = -1


@dataclass(slots=True, frozen=True)
class SignalOutcome:
    """Result of delivering one signal."""

    pid: int
    ok: bool
    errno: int | None = None

    @property
    def code(self) -> int:
        """kill(2)-style result code: 0 when delivered, -1 otherwise."""
        return 0 if self.ok else -1


@dataclass(slots=True)
class UsageSnapshot:
    """One round of CPU samples for every watched pid."""

    timestamp: float
    usage: dict[int, float] = field(default_factory=dict)
