"""Input/output handlers that (de)serialize records for the child process."""

from __future__ import annotations

from .base import InputHandler, OutputHandler
from .codec import DelimitedCodec, JsonLinesCodec, RecordCodec, create_codec
from .factory import create_input_handler, create_output_handler
from .file import FileInputHandler, FileOutputHandler
from .stdio import StdinInputHandler, StdoutOutputHandler

__all__ = [
    "InputHandler",
    "OutputHandler",
    "RecordCodec",
    "DelimitedCodec",
    "JsonLinesCodec",
    "create_codec",
    "StdinInputHandler",
    "StdoutOutputHandler",
    "FileInputHandler",
    "FileOutputHandler",
    "create_input_handler",
    "create_output_handler",
]
