"""
Error types raised while collecting remote metrics.

Only RemoteConnectionError is fatal. Everything else is recovered at the
probe boundary and reported through the poll's failure list.
"""

from typing import Optional


class RtopError(Exception):
    """Base class for all rtop errors."""


class RemoteConnectionError(RtopError):
    """The SSH session or channel is gone; no further probes can run."""


class CommandError(RtopError):
    """A remote command could not be run or exited non-zero."""

    def __init__(self, command: str, exit_status: Optional[int] = None, stderr: str = ""):
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        message = f"command '{command}' failed"
        if exit_status is not None:
            message += f" with exit status {exit_status}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class FormatError(RtopError):
    """Command output does not have the expected shape."""


class NumericParseError(FormatError):
    """A field that should be numeric is not."""

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"{field}: expected a number, got {value!r}")


class UnsupportedSystemError(RtopError):
    """The remote host is not running Linux."""
