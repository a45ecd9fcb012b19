"""Supervisor exception hierarchy."""


class SupervisorError(Exception):
    """Base error type for all supervisor failures."""


class SpawnError(SupervisorError):
    """External process or its capture file could not be created."""


class ClosedHandleError(SupervisorError):
    """Operation attempted on a process handle that was already reclaimed."""

    def __init__(self, message: str = "process handle is closed"):
        super().__init__(message)


class SupervisorIOError(SupervisorError):
    """Capture file or login artifact could not be read."""
