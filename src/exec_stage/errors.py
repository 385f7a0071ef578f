"""Exceptions raised by the streaming executable manager."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .command import StreamingCommand

__all__ = [
    "StreamingError",
    "ProcessLaunchError",
    "ProcessFailedError",
    "InvalidStateError",
    "HandlerError",
]


class StreamingError(Exception):
    """Base exception of the exec_stage package."""
    pass


class ProcessLaunchError(StreamingError):
    """The child process could not be spawned.

    Attributes:
        command: the command that failed to start
        cause: the underlying OS error
    """

    def __init__(self, command: "StreamingCommand", cause: OSError) -> None:
        self.command = command
        self.cause = cause
        super().__init__(f"Failed to start {command}: {cause}")


class ProcessFailedError(StreamingError):
    """The child process exited with a non-zero or unknown status.

    Attributes:
        command: the command that was run
        exit_code: the exit status (-127 when it was never set)
    """

    def __init__(self, command: "StreamingCommand", exit_code: int) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(f"{command} failed with exit status: {exit_code}")


class InvalidStateError(StreamingError):
    """An operation was called in a lifecycle state that does not allow it."""
    pass


class HandlerError(StreamingError):
    """An input or output handler was misused or met undecodable data."""
    pass
