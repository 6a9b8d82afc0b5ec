"""
Errors raised by the supervisor.

Every error is terminal for the current invocation. The CLI prints the
message and exits non-zero.
"""

from enum import Enum


class SupervisorError(Exception):
    """Base class for supervisor failures."""


class InstallReason(Enum):
    PACKAGE_MANAGER_UNAVAILABLE = "package_manager_unavailable"
    INSTALL_FAILED = "install_failed"


class InstallationError(SupervisorError):
    """The daemon binary is missing and could not be installed."""

    def __init__(self, reason: InstallReason, message: str, output: str = ""):
        super().__init__(message)
        self.reason = reason
        self.output = output


class PortConflictError(SupervisorError):
    """The port is held by a process the supervisor does not own."""

    def __init__(self, port: int, owner=None):
        self.port = port
        self.owner = owner
        if owner is not None and owner.pid is not None:
            detail = f"pid {owner.pid} ({owner.name or 'unknown'})"
            if owner.cmdline:
                detail += f": {' '.join(owner.cmdline)}"
        else:
            detail = "an unknown process"
        super().__init__(f"Port {port} is already in use by {detail}")


class StartupTimeoutError(SupervisorError):
    """The daemon was spawned but never answered its readiness probe."""

    def __init__(self, name: str, port: int, alive: bool, log_tail: str, waited: float):
        self.port = port
        self.alive = alive
        self.log_tail = log_tail
        self.waited = waited
        if alive:
            message = f"Timed out after {waited:.1f}s waiting for {name} to start on port {port}"
        else:
            message = f"{name} exited during startup on port {port}"
        super().__init__(message)


class SignalError(SupervisorError):
    """Termination signal delivery failed for a live process."""

    def __init__(self, pid: int, cause: OSError):
        self.pid = pid
        self.cause = cause
        super().__init__(f"Could not signal pid {pid}: {cause}")
