"""
Operations exposed to the supervisor that drives procvisor.

Each function uses a lazily created, process-wide default instance, so the
supervisor can call them without wiring objects together. Callers that need
custom inspectors, caches or timing build the classes directly.
"""

import threading
from collections.abc import Callable

from procvisor import daemon
from procvisor.inspector import default_inspector
from procvisor.launcher import ProcessLauncher
from procvisor.models import Generation, LaunchSpec, MemoryInfo
from procvisor.sampler import CPUUsageSampler
from procvisor.terminator import ProcessTerminator

_lock = threading.Lock()
_launcher: ProcessLauncher | None = None
_terminator: ProcessTerminator | None = None
_sampler: CPUUsageSampler | None = None
_errors = threading.local()


def _get_launcher() -> ProcessLauncher:
    global _launcher
    with _lock:
        if _launcher is None:
            _launcher = ProcessLauncher()
        return _launcher


def _get_terminator() -> ProcessTerminator:
    global _terminator
    with _lock:
        if _terminator is None:
            _terminator = ProcessTerminator()
        return _terminator


def _get_sampler() -> CPUUsageSampler:
    global _sampler
    with _lock:
        if _sampler is None:
            _sampler = CPUUsageSampler()
        return _sampler


def set_program_name(name: str) -> None:
    daemon.set_program_name(name)


def launch(spec: LaunchSpec) -> int:
    """Start a command. Returns its pid, or -1 if fork failed."""
    return _get_launcher().launch(spec)


def stop(pid: int) -> int:
    """Terminate ``pid`` and its descendant chain. 0 if ``pid`` was signaled, else -1."""
    outcome = _get_terminator().stop(pid)
    _errors.last = outcome.errno
    return outcome.code


def last_errno() -> int | None:
    """errno of the last failed ``stop`` on this thread, None after a success."""
    return getattr(_errors, "last", None)


def children_of(pid: int) -> list[int]:
    return default_inspector().children_of(pid)


def is_running(pid: int) -> bool:
    return default_inspector().is_running(pid)


def memory_of(pid: int) -> MemoryInfo | None:
    return default_inspector().memory_of(pid)


def sample(pid: int) -> float:
    """Smoothed CPU percentage of ``pid``. Blocks for the sampling interval."""
    return _get_sampler().sample(pid)


def daemonize(
    no_chdir: bool,
    no_close: bool,
    on_failure: Callable[[], None] | None = None,
) -> Generation:
    """Double-fork away from the terminal. Call before creating any thread."""
    return daemon.daemonize(no_chdir, no_close, on_failure)
