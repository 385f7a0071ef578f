"""Line-oriented record codecs used by the built-in handlers."""

from __future__ import annotations

import json
from typing import Protocol

from ..errors import HandlerError
from ..types import CodecName, Record

__all__ = [
    "RecordCodec",
    "DelimitedCodec",
    "JsonLinesCodec",
    "create_codec",
]


class RecordCodec(Protocol):
    """Converts between records and single newline-terminated lines."""

    def encode(self, record: Record) -> bytes: ...

    def decode(self, line: bytes) -> Record: ...


def _strip_newline(line: bytes) -> bytes:
    if line.endswith(b"\r\n"):
        return line[:-2]
    if line.endswith(b"\n"):
        return line[:-1]
    return line


class DelimitedCodec:
    """One record per line, fields separated by a delimiter (tab by default).

    Fields must not contain the delimiter or a newline; such records are
    rejected instead of being silently re-split by the child. A record with
    no fields is rejected too: its empty line would read back as one empty
    field.
    """

    def __init__(self, delimiter: str = "\t", encoding: str = "utf-8") -> None:
        if not delimiter or "\n" in delimiter:
            raise ValueError(f"Invalid field delimiter: {delimiter!r}")
        self.delimiter = delimiter
        self.encoding = encoding

    def encode(self, record: Record) -> bytes:
        if not record.fields:
            raise HandlerError("A record without fields has no delimited form")
        for value in record.fields:
            if self.delimiter in value or "\n" in value:
                raise HandlerError(
                    f"Field {value[:50]!r} contains the delimiter or a newline"
                )
        return (self.delimiter.join(record.fields) + "\n").encode(self.encoding)

    def decode(self, line: bytes) -> Record:
        try:
            text = _strip_newline(line).decode(self.encoding)
        except UnicodeDecodeError as e:
            raise HandlerError(f"Undecodable output line: {e}") from e
        return Record(tuple(text.split(self.delimiter)))


class JsonLinesCodec:
    """One JSON array of strings per line. Other JSON values are rejected."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def encode(self, record: Record) -> bytes:
        return (json.dumps(list(record.fields), ensure_ascii=False) + "\n").encode(
            self.encoding
        )

    def decode(self, line: bytes) -> Record:
        try:
            data = json.loads(_strip_newline(line).decode(self.encoding))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise HandlerError(f"Invalid JSON line: {e}") from e
        if not isinstance(data, list):
            raise HandlerError(f"Expected a JSON array, got {type(data).__name__}")
        for value in data:
            if not isinstance(value, str):
                raise HandlerError(
                    f"Expected string fields, got {type(value).__name__}: {value!r}"
                )
        return Record(tuple(data))


def create_codec(name: CodecName | str, delimiter: str = "\t") -> RecordCodec:
    """Build a codec by name."""
    name = CodecName(name)
    if name == CodecName.JSONL:
        return JsonLinesCodec()
    return DelimitedCodec(delimiter)
