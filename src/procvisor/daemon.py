"""
Detaching the supervisor from its terminal, plus its pid file and title.

``daemonize`` must run once, before any thread, executor or signal-driven
machinery is created: forking a multi-threaded process leaves the child
with locks held by threads that no longer exist.
"""

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

import setproctitle

from procvisor.config import get_settings
from procvisor.exceptions import (
    ChdirError,
    CloseDescriptorError,
    DaemonizeError,
    ForkError,
    SessionError,
)
from procvisor.models import Generation

_logger = logging.getLogger(__name__)


def set_program_name(name: str) -> None:
    """Best-effort rename of the process as shown by ps/top. Never raises."""
    try:
        setproctitle.setproctitle(name)
        setproctitle.setthreadtitle(name)
    except Exception as e:
        _logger.debug("Could not set program name to %r: %s", name, e)


def _fork() -> Generation:
    try:
        pid = os.fork()
    except OSError as e:
        raise ForkError(f"fork() failed: {e}") from e
    return Generation.CHILD if pid == 0 else Generation.PARENT


def _setsid() -> int:
    try:
        return os.setsid()
    except OSError as e:
        raise SessionError(f"setsid() failed: {e}") from e


def _chdir(directory: Path) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        os.chdir(directory)
    except OSError as e:
        raise ChdirError(f"chdir({directory}) failed: {e}") from e


def _close_std_descriptors() -> None:
    failed = []
    for fd in (0, 1, 2):
        try:
            os.close(fd)
        except OSError:
            failed.append(fd)
    if failed:
        raise CloseDescriptorError(f"close() failed for descriptors {failed}")


def daemonize(
    no_chdir: bool = False,
    no_close: bool = False,
    on_failure: Callable[[], None] | None = None,
    *,
    state_dir: str | Path | None = None,
) -> Generation:
    """
    Detach from the controlling terminal with a double fork.

    The calling process exits with status 0 right after the first fork. The
    first child becomes a session leader, optionally moves into the state
    directory and closes descriptors 0-2, then forks again. It gets
    ``Generation.PARENT`` back and is expected to exit; the grandchild gets
    ``Generation.CHILD`` and carries on as the daemon.

    Args:
        no_chdir: Stay in the current working directory.
        no_close: Keep stdin/stdout/stderr open.
        on_failure: Called when any step fails.
        state_dir: Directory to change into. Defaults to ``Settings.state_dir``.

    Returns:
        ``Generation.PARENT`` or ``Generation.CHILD``, or ``Generation.FAILED``
        if a step failed. Errors are never raised to the caller.
    """
    try:
        if _fork() is Generation.PARENT:
            os._exit(0)

        _setsid()
        if not no_chdir:
            _chdir(Path(state_dir) if state_dir is not None else get_settings().state_dir)
        if not no_close:
            _close_std_descriptors()
        return _fork()
    except DaemonizeError as e:
        _logger.error("Error setting up daemon: %s", e)

    if on_failure is not None:
        on_failure()
    return Generation.FAILED


class PidFile:
    """The daemon's pid file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else get_settings().pid_file

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, pid: int | None = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid if pid is not None else os.getpid()))

    def read(self) -> int | None:
        """Return the recorded pid, or None if the file is missing or invalid."""
        try:
            content = self.path.read_text().strip()
        except OSError:
            return None
        return int(content) if content.isdigit() else None

    def remove(self) -> None:
        if self.exists():
            _logger.warning("Removing pid file %s", self.path)
            try:
                self.path.unlink()
            except OSError as e:
                _logger.error("Failed to remove pid file: %s", e)
        else:
            _logger.info("No pid file at %s", self.path)

    def uptime(self) -> float | None:
        """Seconds since the pid file was written."""
        try:
            return max(0.0, time.time() - self.path.stat().st_mtime)
        except OSError:
            return None

    def is_stale(self) -> bool:
        """True if the file exists but its pid is not a live process."""
        pid = self.read()
        if pid is None:
            return self.exists()
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False
