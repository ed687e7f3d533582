"""Spawning target commands as detached, log-redirected processes."""

import fcntl
import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

from procvisor.config import get_settings
from procvisor.exceptions import ExecError, ForkError
from procvisor.inspector import ProcessInspector, default_inspector
from procvisor.models import LaunchSpec
from procvisor.reaper import Reaper, default_reaper

_logger = logging.getLogger(__name__)

STDOUT_SUFFIX = "-out.log"
STDERR_SUFFIX = "-error.log"
LOG_MODE = 0o644
EXEC_FAILURE_STATUS = 1

_WHITESPACE = re.compile(r"\s")


def sanitize_name(name: str) -> str:
    """Make a process name usable as a file name."""
    return _WHITESPACE.sub("_", name)


def log_paths(name: str, log_dir: str | Path) -> tuple[Path, Path]:
    """Return the (stdout, stderr) log file paths for a process name."""
    base = sanitize_name(name)
    directory = Path(log_dir)
    return directory / f"{base}{STDOUT_SUFFIX}", directory / f"{base}{STDERR_SUFFIX}"


def _open_log(path: Path) -> int:
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, LOG_MODE)
    except OSError as e:
        _logger.warning("Cannot open log file %s: %s", path, e)
        return -1
    if fd < 3:
        # A daemon with closed std descriptors gets 0-2 back from open();
        # move it out of the way of the dup2 onto stdout/stderr.
        high = fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, 3)
        os.close(fd)
        fd = high
    return fd


@dataclass(slots=True)
class LogHandles:
    """Append-only stdout/stderr descriptors for one launch. -1 marks a failed open."""

    stdout_fd: int = -1
    stderr_fd: int = -1

    @classmethod
    def open(cls, name: str, log_dir: str | Path) -> "LogHandles":
        out_path, err_path = log_paths(name, log_dir)
        return cls(stdout_fd=_open_log(out_path), stderr_fd=_open_log(err_path))

    def close(self) -> None:
        for fd in (self.stdout_fd, self.stderr_fd):
            if fd >= 0:
                try:
                    os.close(fd)
                except OSError:
                    pass
        self.stdout_fd = -1
        self.stderr_fd = -1


def _exec_child(spec: LaunchSpec, handles: LogHandles) -> NoReturn:
    """Runs in the forked child. Never returns into the caller's code."""
    try:
        os.setsid()
        for fd in (0, 1, 2):
            try:
                os.close(fd)
            except OSError:
                pass
        if handles.stdout_fd >= 0:
            os.dup2(handles.stdout_fd, 1)
        if handles.stderr_fd >= 0:
            os.dup2(handles.stderr_fd, 2)

        argv = [spec.shell, *spec.args, spec.command]
        os.execve(spec.shell, argv, spec.environment())
    except Exception as e:
        error = ExecError(f"unable to execute {spec.shell!r} for {spec.name!r}: {e}")
        try:
            os.write(2, f"[procvisor] {error}\n".encode(errors="replace"))
        except OSError:
            pass
    finally:
        os._exit(EXEC_FAILURE_STATUS)


class ProcessLauncher:
    """
    Forks and execs target commands with their output sent to log files.

    ``launch`` may return the pid of the process the command's shell spawned
    rather than the shell itself: after forking it waits ``probe_delay`` and
    takes the first child of the forked pid if one exists. This is a race,
    not a guarantee. A worker that appears after the window is missed and
    the wrapper's pid is returned instead.
    """

    def __init__(
        self,
        inspector: ProcessInspector | None = None,
        reaper: Reaper | None = None,
        probe_child: bool = True,
        probe_delay: float | None = None,
    ) -> None:
        """
        Initialize the launcher.

        Args:
            inspector: Used for the child probe. Defaults to the platform inspector.
            reaper: Installed before every fork. Defaults to the shared reaper.
            probe_child: Look for the real worker behind a wrapper shell.
            probe_delay: Seconds to wait before probing. Default from settings.
        """
        self._inspector = inspector or default_inspector()
        self._reaper = reaper or default_reaper()
        self._probe_child = probe_child
        self._probe_delay = probe_delay if probe_delay is not None else get_settings().probe_delay

    @property
    def reaper(self) -> Reaper:
        return self._reaper

    def launch(self, spec: LaunchSpec) -> int:
        """
        Start ``spec.command`` and return its pid, or -1 if fork failed.

        Failures after the fork (setsid, dup2, exec) happen in the child and
        only show up as the child exiting with a non-zero status.
        """
        handles = LogHandles.open(spec.name, spec.log_dir)
        self._reaper.install()

        try:
            pid = os.fork()
        except OSError as e:
            handles.close()
            _logger.error("%s", ForkError(f"cannot fork for {spec.name!r}: {e}"))
            return -1

        if pid == 0:
            _exec_child(spec, handles)

        handles.close()
        _logger.info("Launched %s (pid=%d, shell=%s)", spec.name, pid, spec.shell)

        if not self._probe_child:
            return pid

        time.sleep(self._probe_delay)
        child = self._inspector.first_child_of(pid)
        if child is not None:
            _logger.debug("Using child %d of wrapper %d for %s", child, pid, spec.name)
            return child
        return pid
