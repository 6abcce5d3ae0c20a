"""Exceptions raised by the command pipeline."""


class CommandCenterError(Exception):
    """Base class for command center errors."""


class ExternalServiceError(CommandCenterError):
    """The reasoning service was unreachable or answered with garbage."""


class SessionBusyError(CommandCenterError):
    """A remote session is already bound to another invocation."""

    def __init__(self, active_invocation_id: str):
        super().__init__(f"A command is already running (invocation {active_invocation_id})")
        self.active_invocation_id = active_invocation_id


class NoActiveSessionError(CommandCenterError):
    """Interrupt was requested but nothing is running."""

    def __init__(self, message: str = "No running command to stop"):
        super().__init__(message)


class RemoteConnectError(CommandCenterError):
    """Connecting to the remote host or starting the command failed."""


class RemoteStreamError(CommandCenterError):
    """The remote output stream broke after the command started."""
