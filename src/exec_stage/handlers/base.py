"""Input/output handler contracts.

An input handler turns records into the bytes the child reads; an output
handler turns the bytes the child produced back into records. Each handler
declares a HandlerMode that the manager uses to decide when the process is
started and when its pipes are bound.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ..types import HandlerMode, Record

__all__ = [
    "InputHandler",
    "OutputHandler",
]


class InputHandler(ABC):
    """Feeds records to the child process."""

    @property
    @abstractmethod
    def mode(self) -> HandlerMode:
        """Input mode, fixed for the handler's lifetime."""
        ...

    def bind(self, writer: asyncio.StreamWriter) -> None:
        """Attach the child's stdin.

        Only called for synchronous handlers. Asynchronous handlers write to
        their own artifact and are never bound.
        """
        raise NotImplementedError(
            f"{type(self).__name__} cannot be bound to a process stdin"
        )

    @abstractmethod
    async def put(self, record: Record) -> None:
        """Serialize one record towards the child."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Flush and release the handler's stream.

        For synchronous handlers this closes the child's stdin, which lets
        most filters run to completion. Must be safe to call more than once.
        """
        ...


class OutputHandler(ABC):
    """Reads records produced by the child process."""

    @property
    @abstractmethod
    def mode(self) -> HandlerMode:
        """Output mode, fixed for the handler's lifetime."""
        ...

    @abstractmethod
    def bind(self, reader: asyncio.StreamReader | None) -> None:
        """Attach the source of the child's output.

        Synchronous handlers get the child's stdout when the process starts.
        Asynchronous handlers get None after the process exited and open
        their own artifact.
        """
        ...

    @abstractmethod
    async def next(self) -> Record | None:
        """Return the next record, or None at end of stream."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the handler's stream. Must be safe to call more than once."""
        ...
