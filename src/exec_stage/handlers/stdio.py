"""Handlers that talk to the live process over its stdin/stdout pipes."""

from __future__ import annotations

import asyncio
import logging

from ..errors import HandlerError
from ..types import HandlerMode, Record
from .base import InputHandler, OutputHandler
from .codec import DelimitedCodec, RecordCodec

__all__ = ["StdinInputHandler", "StdoutOutputHandler"]

logger = logging.getLogger(__name__)


class StdinInputHandler(InputHandler):
    """Synchronous input: writes encoded records to the child's stdin."""

    def __init__(self, codec: RecordCodec | None = None) -> None:
        self.codec = codec or DelimitedCodec()
        self._writer: asyncio.StreamWriter | None = None
        self._closed = False

    @property
    def mode(self) -> HandlerMode:
        return HandlerMode.SYNCHRONOUS

    def bind(self, writer: asyncio.StreamWriter) -> None:
        if self._writer is not None:
            raise HandlerError("stdin handler is already bound")
        self._writer = writer

    async def put(self, record: Record) -> None:
        if self._closed:
            raise HandlerError("stdin handler is closed")
        if self._writer is None:
            raise HandlerError("stdin handler is not bound to a process")
        self._writer.write(self.codec.encode(record))
        # Backpressure: wait until the child has consumed enough of the pipe
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is None:
            return
        self._writer.close()
        try:
            # Shielded: cancelling the pipe's own close future makes asyncio
            # fail later in pipe_connection_lost
            await asyncio.shield(self._writer.wait_closed())
        except (BrokenPipeError, ConnectionResetError):
            # The child stopped reading before we finished; its exit status
            # decides whether that was a failure.
            logger.debug("stdin already closed by the child process")


class StdoutOutputHandler(OutputHandler):
    """Synchronous output: reads one record per line from the child's stdout."""

    def __init__(self, codec: RecordCodec | None = None) -> None:
        self.codec = codec or DelimitedCodec()
        self._reader: asyncio.StreamReader | None = None
        self._closed = False

    @property
    def mode(self) -> HandlerMode:
        return HandlerMode.SYNCHRONOUS

    def bind(self, reader: asyncio.StreamReader | None) -> None:
        if reader is None:
            raise HandlerError("stdout handler needs the process stdout")
        self._reader = reader

    async def next(self) -> Record | None:
        if self._closed:
            return None
        if self._reader is None:
            raise HandlerError("stdout handler is not bound to a process")
        line = await self._reader.readline()
        if not line:
            return None
        return self.codec.decode(line)

    async def close(self) -> None:
        self._closed = True
