"""Core type definitions.

Defines records, handler mode tags and the handler specs carried by a
streaming command.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = [
    "Record",
    "HandlerMode",
    "HandlerKind",
    "CodecName",
    "HandlerSpec",
    "UNKNOWN_EXIT_STATUS",
]

# Exit status of a child that has not terminated (or never started)
UNKNOWN_EXIT_STATUS = -127


@dataclass(frozen=True)
class Record:
    """A single record flowing through the stage.

    Attributes:
        fields: the record's field values
    """

    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        """Normalize any sequence of fields into a tuple."""
        if not isinstance(self.fields, tuple):
            object.__setattr__(self, "fields", tuple(self.fields))

    @classmethod
    def of(cls, *fields: str) -> "Record":
        return cls(fields)

    @property
    def memory_size(self) -> int:
        """Size of the record in bytes (UTF-8 encoded fields)."""
        return sum(len(f.encode("utf-8")) for f in self.fields)

    def __len__(self) -> int:
        return len(self.fields)


class HandlerMode(str, Enum):
    """When a handler's stream is available.

    - SYNCHRONOUS: the handler talks to the live process through its pipe
    - ASYNCHRONOUS: the handler works on a side artifact (e.g. a file) that
      is complete before the process starts (input) or after it exits (output)
    """

    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"


class HandlerKind(str, Enum):
    """Built-in handler kinds understood by the handler factory."""

    STDIO = "stdio"
    FILE = "file"


class CodecName(str, Enum):
    """Built-in record codecs."""

    DELIMITED = "delimited"
    JSONL = "jsonl"


@dataclass(frozen=True)
class HandlerSpec:
    """Describes which handler to build for one direction of a command.

    Attributes:
        kind: stdio (pipe) or file
        path: file path, required when kind is FILE
        codec: record codec used to (de)serialize records
    """

    kind: HandlerKind = HandlerKind.STDIO
    path: Path | None = None
    codec: CodecName = CodecName.DELIMITED

    def __post_init__(self) -> None:
        """Coerce string values into their enum/Path types."""
        if isinstance(self.kind, str):
            object.__setattr__(self, "kind", HandlerKind(self.kind))
        if isinstance(self.codec, str):
            object.__setattr__(self, "codec", CodecName(self.codec))
        if isinstance(self.path, str):
            object.__setattr__(self, "path", Path(self.path))
        if self.kind == HandlerKind.FILE and self.path is None:
            raise ValueError("File handlers require a path")
