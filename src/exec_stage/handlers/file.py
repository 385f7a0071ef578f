"""Handlers that exchange data with the child through files.

FileInputHandler writes every record to a file before the process starts;
the command is expected to read that file (its path is usually part of the
argv). FileOutputHandler reads the file the command wrote, once it exited.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import anyio

from ..errors import HandlerError
from ..types import HandlerMode, Record
from .base import InputHandler, OutputHandler
from .codec import DelimitedCodec, RecordCodec

__all__ = ["FileInputHandler", "FileOutputHandler"]

logger = logging.getLogger(__name__)


class FileInputHandler(InputHandler):
    """Asynchronous input: records are spooled to a file."""

    def __init__(self, path: Path | str, codec: RecordCodec | None = None) -> None:
        self.path = Path(path)
        self.codec = codec or DelimitedCodec()
        self._file: Any = None
        self._closed = False

    @property
    def mode(self) -> HandlerMode:
        return HandlerMode.ASYNCHRONOUS

    async def _ensure_open(self) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = await anyio.open_file(self.path, "wb")
            logger.debug(f"Opened input file {self.path}")

    async def put(self, record: Record) -> None:
        if self._closed:
            raise HandlerError(f"input file {self.path} is closed")
        await self._ensure_open()
        await self._file.write(self.codec.encode(record))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # An empty input still yields a (zero length) file for the command
        await self._ensure_open()
        await self._file.aclose()
        logger.debug(f"Closed input file {self.path}")


class FileOutputHandler(OutputHandler):
    """Asynchronous output: records are read from a file after the child exits."""

    def __init__(self, path: Path | str, codec: RecordCodec | None = None) -> None:
        self.path = Path(path)
        self.codec = codec or DelimitedCodec()
        self._file: Any = None
        self._bound = False
        self._closed = False

    @property
    def mode(self) -> HandlerMode:
        return HandlerMode.ASYNCHRONOUS

    def bind(self, reader: asyncio.StreamReader | None) -> None:
        if reader is not None:
            raise HandlerError("file output handler does not read the process stdout")
        self._bound = True

    async def next(self) -> Record | None:
        if self._closed:
            return None
        if not self._bound:
            raise HandlerError("file output handler read before the process exited")
        if self._file is None:
            try:
                self._file = await anyio.open_file(self.path, "rb")
            except FileNotFoundError as e:
                raise HandlerError(f"output file {self.path} was not produced") from e
            logger.debug(f"Opened output file {self.path}")
        line = await self._file.readline()
        if not line:
            return None
        return self.codec.decode(line)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._file is not None:
            await self._file.aclose()
