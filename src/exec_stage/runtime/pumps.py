"""Background pumps for the child's output and error streams.

Each pump is one asyncio task bound to one stream. A pump never raises
into the task that joins it: failures are logged and kept on ``pump.error``,
and the child's exit status remains the authoritative failure signal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..config import DEFAULT_STREAM_LIMIT
from ..handlers.base import OutputHandler
from ..types import Record

__all__ = ["OutputPump", "ErrorPump"]

logger = logging.getLogger(__name__)

# Read size when draining stderr
CHUNK_SIZE = 4096


class _Pump:
    """Shared task bookkeeping for both pumps."""

    name = "pump"

    def __init__(
        self,
        log: logging.Logger | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self.log = log or logger
        self.on_error = on_error
        self.error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def failed(self) -> bool:
        return self.error is not None

    def start(self) -> asyncio.Task[None]:
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.create_task(self._run(), name=self.name)
        return self._task

    async def join(self) -> None:
        """Wait for the pump to finish, without timeout."""
        if self._task is None:
            return
        await self._task

    async def _run(self) -> None:
        raise NotImplementedError

    def _fail(self, error: BaseException, progress: str) -> None:
        self.error = error
        self.log.warning(f"{self.name} failed after {progress}: {error!r}")
        if self.on_error:
            self.on_error(error)


class OutputPump(_Pump):
    """Moves decoded records from an output handler to a record callback.

    Args:
        handler: the bound output handler
        on_record: called for every record, in order
        drain: stream to discard after a failure so the child cannot block
            writing to a pipe nobody reads anymore
        log: logger to report failures to
        on_error: called with the exception when the pump fails
    """

    name = "output-pump"

    def __init__(
        self,
        handler: OutputHandler,
        on_record: Callable[[Record], None],
        *,
        drain: asyncio.StreamReader | None = None,
        log: logging.Logger | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        super().__init__(log, on_error)
        self.handler = handler
        self.on_record = on_record
        self.drain = drain
        self.records = 0

    async def _run(self) -> None:
        try:
            while True:
                record = await self.handler.next()
                if record is None:
                    break
                self.on_record(record)
                self.records += 1
            await self.handler.close()
            self.log.debug(f"{self.name} done records={self.records}")
        except Exception as e:
            self._fail(e, f"{self.records} record(s)")
            try:
                await self.handler.close()
            except Exception as close_error:
                self.log.info(f"Error closing output handler: {close_error!r}")
            await self._discard_remaining()

    async def _discard_remaining(self) -> None:
        if self.drain is None:
            return
        try:
            while await self.drain.read(CHUNK_SIZE):
                pass
        except Exception as e:
            self.log.debug(f"Error draining stdout after failure: {e!r}")


class ErrorPump(_Pump):
    """Forwards the child's stderr, line by line, to a line callback.

    Every line is delivered with exactly one trailing newline; a final line
    without terminator gets one too. A line longer than ``max_line_length``
    bytes is delivered in pieces of at most that size.
    """

    name = "error-pump"

    def __init__(
        self,
        stream: asyncio.StreamReader,
        on_line: Callable[[str], None],
        *,
        encoding: str = "utf-8",
        max_line_length: int = DEFAULT_STREAM_LIMIT,
        log: logging.Logger | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        super().__init__(log, on_error)
        if max_line_length <= 0:
            raise ValueError(f"max_line_length must be positive: {max_line_length}")
        self.stream = stream
        self.on_line = on_line
        self.encoding = encoding
        self.max_line_length = max_line_length
        self.lines = 0

    def _emit(self, line_bytes: bytes) -> None:
        if line_bytes.endswith(b"\r"):
            line_bytes = line_bytes[:-1]
        line = line_bytes.decode(self.encoding, errors="replace")
        self.on_line(line + "\n")
        self.lines += 1

    async def _run(self) -> None:
        # Line buffer used to cut complete lines out of the byte stream
        line_buffer = bytearray()
        try:
            while True:
                chunk = await self.stream.read(CHUNK_SIZE)
                if not chunk:
                    if line_buffer:
                        self._emit(bytes(line_buffer))
                    break
                line_buffer += chunk
                start = 0
                end = line_buffer.find(b"\n")
                while end >= 0:
                    self._emit(bytes(line_buffer[start:end]))
                    start = end + 1
                    end = line_buffer.find(b"\n", start)
                del line_buffer[:start]
                # Bounded: an unterminated line is passed on in pieces
                while len(line_buffer) >= self.max_line_length:
                    self._emit(bytes(line_buffer[: self.max_line_length]))
                    del line_buffer[: self.max_line_length]
            self.log.debug(f"{self.name} done lines={self.lines}")
        except Exception as e:
            self._fail(e, f"{self.lines} line(s)")
            # Keep reading so the child never blocks on a full stderr pipe
            try:
                while await self.stream.read(CHUNK_SIZE):
                    pass
            except Exception as drain_error:
                self.log.info(f"Error draining stderr: {drain_error!r}")
