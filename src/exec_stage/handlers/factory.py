"""Builds the handlers declared by a streaming command."""

from __future__ import annotations

from ..command import StreamingCommand
from ..config import Config, get_config
from ..types import HandlerKind, HandlerSpec
from .base import InputHandler, OutputHandler
from .codec import RecordCodec, create_codec
from .file import FileInputHandler, FileOutputHandler
from .stdio import StdinInputHandler, StdoutOutputHandler

__all__ = ["create_input_handler", "create_output_handler"]


def _codec_for(spec: HandlerSpec, config: Config) -> RecordCodec:
    return create_codec(spec.codec, delimiter=config.field_delimiter)


def create_input_handler(
    command: StreamingCommand, config: Config | None = None
) -> InputHandler:
    """Create the input handler described by ``command.input``."""
    config = config or get_config()
    spec = command.input
    codec = _codec_for(spec, config)
    if spec.kind == HandlerKind.FILE:
        assert spec.path is not None
        return FileInputHandler(spec.path, codec)
    return StdinInputHandler(codec)


def create_output_handler(
    command: StreamingCommand, config: Config | None = None
) -> OutputHandler:
    """Create the output handler described by ``command.output``."""
    config = config or get_config()
    spec = command.output
    codec = _codec_for(spec, config)
    if spec.kind == HandlerKind.FILE:
        assert spec.path is not None
        return FileOutputHandler(spec.path, codec)
    return StdoutOutputHandler(codec)
