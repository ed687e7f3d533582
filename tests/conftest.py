"""Shared fixtures: a scriptable inspector and helpers for real child processes."""

import os
import time
from collections.abc import Callable

import pytest

from procvisor.inspector import ProcessInspector
from procvisor.launcher import ProcessLauncher
from procvisor.models import CPUTimeSample, LaunchSpec, MemoryInfo
from procvisor.reaper import Reaper, default_reaper

posix_only = pytest.mark.skipif(os.name != "posix", reason="requires fork/exec")

SHELL = "/bin/sh"
PATH_ENV = "PATH=/usr/local/bin:/usr/bin:/bin"


class FakeInspector(ProcessInspector):
    """Inspector answering from dictionaries instead of the OS."""

    def __init__(self, cores: int = 1, max_depth: int | None = 64) -> None:
        super().__init__(max_depth)
        self.children: dict[int, int] = {}
        self.samples: dict[int, list[CPUTimeSample | None]] = {}
        self.running: set[int] = set()
        self.cores = cores
        self.cpu_calls: list[int] = []
        self.memory: dict[int, MemoryInfo] = {}

    def first_child_of(self, pid: int) -> int | None:
        return self.children.get(pid)

    def memory_of(self, pid: int) -> MemoryInfo | None:
        return self.memory.get(pid)

    def cpu_time_of(self, pid: int) -> CPUTimeSample | None:
        self.cpu_calls.append(pid)
        queue = self.samples.get(pid)
        if not queue:
            return None
        return queue.pop(0)

    def is_running(self, pid: int) -> bool:
        return pid in self.running

    def core_count(self) -> int:
        return self.cores


def make_sample(
    pid: int,
    ticks: int,
    taken_at: float,
    start_time: float = 1.0,
    ticks_per_second: int = 100,
) -> CPUTimeSample:
    """CPU sample with all of ``ticks`` counted as user time."""
    return CPUTimeSample(
        pid=pid,
        user_ticks=ticks,
        system_ticks=0,
        children_user_ticks=0,
        children_system_ticks=0,
        ticks_per_second=ticks_per_second,
        start_time=start_time,
        taken_at=taken_at,
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def reaper():
    """A reaper installed for the duration of one test."""
    r = Reaper()
    r.install()
    yield r
    r.uninstall()


@pytest.fixture(autouse=True)
def _restore_default_reaper():
    """Keep the shared reaper from leaking its handler into other tests."""
    yield
    default_reaper().uninstall()


@pytest.fixture
def launcher(reaper) -> ProcessLauncher:
    return ProcessLauncher(reaper=reaper, probe_child=False)


@pytest.fixture
def sh_spec(tmp_path) -> Callable[..., LaunchSpec]:
    """Build a LaunchSpec that runs ``command`` through ``sh -c``."""

    def _factory(command: str, name: str = "worker", env: tuple[str, ...] = ()) -> LaunchSpec:
        return LaunchSpec(
            name=name,
            shell=SHELL,
            command=command,
            log_dir=tmp_path,
            args=["-c"],
            env=[PATH_ENV, *env],
        )

    return _factory
