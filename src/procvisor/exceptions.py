"""Exception hierarchy for procvisor."""


class ProcvisorError(Exception):
    """Base for all procvisor errors."""


class DaemonizeError(ProcvisorError):
    """A step of the daemonizing double fork failed."""


class LaunchError(ProcvisorError):
    """A target command could not be launched."""


class ForkError(DaemonizeError, LaunchError):
    """fork() failed."""


class SessionError(DaemonizeError):
    """setsid() failed."""


class ChdirError(DaemonizeError):
    """Could not change into the state directory."""


class CloseDescriptorError(DaemonizeError):
    """Closing a standard descriptor failed."""


class ExecError(LaunchError):
    """execve() failed inside a forked child."""


class SignalError(ProcvisorError):
    """A signal could not be delivered (no such process, permission denied)."""


class InspectionError(ProcvisorError):
    """A per-process accounting record was unreadable or malformed."""


class SampleUnavailable(ProcvisorError):
    """No CPU-time snapshot could be taken for a pid."""
