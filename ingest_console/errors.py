"""Exception types shared by the controller, the API and the client."""

from typing import Optional


class ConsoleError(Exception):
    """Base class for console errors."""


class UnknownJobType(ConsoleError, ValueError):
    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type


class LaunchConflict(ConsoleError):
    """Another run of the same job type is already active."""

    def __init__(self, job_type: str, started_at: Optional[str]):
        super().__init__(f"{job_type} is already running (started {started_at or 'unknown'})")
        self.job_type = job_type
        self.started_at = started_at


class TransportError(ConsoleError):
    """A launch or probe command could not be delivered to the execution host."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
