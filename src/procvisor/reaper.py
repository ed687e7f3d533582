"""SIGCHLD-driven collection of exited children."""

import logging
import os
import signal
import threading

_logger = logging.getLogger(__name__)


class Reaper:
    """
    Collects exit statuses of terminated children so they do not linger as
    zombies.

    The SIGCHLD handler only calls ``drain()``, which loops a non-blocking
    ``waitpid`` until nothing is pending. Every field it touches is a single
    attribute assignment, so it is safe to run from the handler while other
    threads call ``drain()`` themselves.

    Signal handlers can only be set from the main thread. When ``install()``
    runs on another thread the reaper falls back to a daemon thread that
    drains every ``POLL_INTERVAL`` seconds instead.

    Note that draining reaps *every* exited child of the process, including
    ones started through ``subprocess`` or ``multiprocessing``; those will see
    their child already collected.
    """

    POLL_INTERVAL = 0.1

    def __init__(self) -> None:
        self._installed = False
        self._previous = None
        self._poller: threading.Thread | None = None
        self._stop_polling = threading.Event()
        self._last_status: int | None = None
        self._last_pid: int | None = None
        self._reaped = 0

    @property
    def installed(self) -> bool:
        """Whether this reaper is collecting children, by handler or by polling."""
        return self._installed

    @property
    def polling(self) -> bool:
        """Whether children are drained by the fallback thread rather than SIGCHLD."""
        return self._poller is not None

    @property
    def last_status(self) -> int | None:
        """Raw wait status of the most recently reaped child."""
        return self._last_status

    @property
    def last_pid(self) -> int | None:
        return self._last_pid

    @property
    def last_exit_code(self) -> int | None:
        """Exit code of the last reaped child, negative signal number if killed."""
        if self._last_status is None:
            return None
        return os.waitstatus_to_exitcode(self._last_status)

    @property
    def reaped(self) -> int:
        """Total number of children collected."""
        return self._reaped

    def install(self) -> bool:
        """
        Start reaping children. Safe to call repeatedly.

        On the main thread a SIGCHLD handler is registered. Elsewhere a
        warning is logged and a polling thread is started instead.

        Returns:
            True if the SIGCHLD handler is registered after the call.
        """
        if self._installed:
            return not self.polling
        if threading.current_thread() is not threading.main_thread():
            _logger.warning("SIGCHLD handler not installed: not on the main thread, polling instead")
            self._start_polling()
            self._installed = True
            return False

        self._previous = signal.signal(signal.SIGCHLD, self._on_sigchld)
        self._installed = True
        _logger.debug("SIGCHLD reaper installed")
        return True

    def uninstall(self) -> None:
        """
        Stop reaping children.

        The handler active before ``install()`` is restored only while this
        reaper's handler is still the current one, so instances may be
        uninstalled in any order. A restored handler that belongs to a reaper
        which has since been uninstalled is skipped in favor of the one it
        replaced.
        """
        if not self._installed:
            return
        self._installed = False
        if self._poller is not None:
            self._stop_polling.set()
            self._poller.join(timeout=1.0)
            self._poller = None
            return

        if signal.getsignal(signal.SIGCHLD) == self._on_sigchld:
            signal.signal(signal.SIGCHLD, _live_handler(self._previous))
        else:
            _logger.debug("SIGCHLD handler replaced since install, leaving it in place")

    def _start_polling(self) -> None:
        self._stop_polling.clear()
        self._poller = threading.Thread(target=self._poll_loop, daemon=True, name="Reaper")
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._stop_polling.wait(timeout=self.POLL_INTERVAL):
            self.drain()

    def drain(self) -> int:
        """
        Reap every exited child that is pending.

        Returns:
            Number of children collected by this call.
        """
        count = 0
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            self._last_pid = pid
            self._last_status = status
            self._reaped += 1
            count += 1
        return count

    def _on_sigchld(self, signum, frame) -> None:
        self.drain()


def _live_handler(handler):
    """Follow uninstalled reapers back to the handler that was there before them."""
    seen = set()
    owner = getattr(handler, "__self__", None)
    while isinstance(owner, Reaper) and not owner.installed and id(owner) not in seen:
        seen.add(id(owner))
        handler = owner._previous
        owner = getattr(handler, "__self__", None)
    if isinstance(owner, Reaper) and not owner.installed:
        return signal.SIG_DFL
    return handler if handler is not None else signal.SIG_DFL


_default: Reaper | None = None


def default_reaper() -> Reaper:
    """Return the reaper shared by every launcher in this process."""
    global _default
    if _default is None:
        _default = Reaper()
    return _default
