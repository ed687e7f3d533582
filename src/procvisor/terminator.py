"""Signaling a process together with its descendant chain."""

import errno
import logging
import os
import signal

from procvisor.exceptions import SignalError
from procvisor.inspector import ProcessInspector, default_inspector
from procvisor.models import SignalOutcome

_logger = logging.getLogger(__name__)


def send_signal(pid: int, sig: int = signal.SIGTERM) -> SignalOutcome:
    """Deliver ``sig`` to ``pid`` and report the outcome instead of raising."""
    if pid <= 0:
        # kill(0) and kill(-1) would hit a whole process group
        return SignalOutcome(pid=pid, ok=False, errno=errno.ESRCH)
    try:
        os.kill(pid, sig)
    except OSError as e:
        _logger.debug("%s", SignalError(f"signal {sig} to {pid} failed: {e}"))
        return SignalOutcome(pid=pid, ok=False, errno=e.errno)
    return SignalOutcome(pid=pid, ok=True)


class ProcessTerminator:
    """
    Stops a process and the chain of processes below it.

    Descendants are signaled before the root, but nothing waits for them to
    exit: delivery is fire-and-forget. Only the first child at every level is
    followed, so siblings are missed.
    """

    def __init__(
        self,
        inspector: ProcessInspector | None = None,
        sig: int = signal.SIGTERM,
    ) -> None:
        self._inspector = inspector or default_inspector()
        self._signal = sig

    def stop(self, root: int) -> SignalOutcome:
        """
        Signal every descendant of ``root``, then ``root`` itself.

        Failures on descendants are logged and ignored. The outcome of the
        final signal to ``root`` is returned, so stopping an already dead
        chain yields a failed outcome without raising.
        """
        chain = self._inspector.children_of(root)
        for pid in chain:
            outcome = send_signal(pid, self._signal)
            if not outcome.ok:
                _logger.debug("Descendant %d of %d not signaled (errno=%s)", pid, root, outcome.errno)

        outcome = send_signal(root, self._signal)
        if outcome.ok:
            _logger.info("Stopped %d and %d descendant(s)", root, len(chain))
        else:
            _logger.warning("Could not signal %d: %s", root, os.strerror(outcome.errno or 0))
        return outcome
