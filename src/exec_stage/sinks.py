"""Downstream record sinks and diagnostic sinks."""

from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .types import Record

__all__ = [
    "RecordSink",
    "ListSink",
    "CallbackSink",
    "DiagnosticSink",
    "write_to_stderr",
]

# Receives one line of the child's stderr, newline included
DiagnosticSink = Callable[[str], None]


@runtime_checkable
class RecordSink(Protocol):
    """Consumer of the records a stage produces.

    ``accept`` must not block for long; it is called from the output pump.
    """

    def accept(self, record: Record) -> None: ...


class ListSink:
    """Collects every accepted record in memory."""

    def __init__(self) -> None:
        self.records: list[Record] = []

    def accept(self, record: Record) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class CallbackSink:
    """Adapts a plain callable to the RecordSink protocol."""

    def __init__(self, callback: Callable[[Record], None]) -> None:
        self._callback = callback

    def accept(self, record: Record) -> None:
        self._callback(record)


def write_to_stderr(line: str) -> None:
    """Default diagnostic sink: relay the child's line to our own stderr."""
    sys.stderr.write(line)
    sys.stderr.flush()
