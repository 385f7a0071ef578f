"""exec-stage command-line entry point.

Streams the records read from our stdin through an external command and
writes the records it produces to our stdout:

    exec-stage [--input-file PATH] [--output-file PATH] [--codec jsonl] -- CMD ARGS...

With --input-file the records are spooled to PATH before the command starts
(the command must read PATH itself); with --output-file the records are read
from PATH after the command exited.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import anyio

from .command import StreamingCommand
from .config import Config, get_config
from .errors import HandlerError, ProcessFailedError, ProcessLaunchError
from .handlers import create_codec, create_input_handler, create_output_handler
from .handlers.codec import RecordCodec
from .manager import ExecutableManager
from .types import CodecName, HandlerKind, HandlerSpec, Record

__all__ = ["build_command", "parse_args", "run_cli", "main"]

logger = logging.getLogger(__name__)

# Exit status when the command cannot be started (same as a shell)
EXIT_LAUNCH_FAILURE = 127

# Exit status when our own input holds a malformed record (sysexits EX_DATAERR)
EXIT_INVALID_INPUT = 65


class StdoutSink:
    """Writes every output record, encoded, to a binary stream."""

    def __init__(self, codec: RecordCodec, stream=None) -> None:
        self.codec = codec
        self.stream = stream if stream is not None else sys.stdout.buffer

    def accept(self, record: Record) -> None:
        self.stream.write(self.codec.encode(record))

    def flush(self) -> None:
        self.stream.flush()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="exec-stage",
        description="Stream records through an external command",
    )
    parser.add_argument("--input-file", type=Path, default=None,
                        help="Spool input records to this file (asynchronous input)")
    parser.add_argument("--output-file", type=Path, default=None,
                        help="Read output records from this file (asynchronous output)")
    parser.add_argument("--codec", choices=[c.value for c in CodecName],
                        default=CodecName.DELIMITED.value, help="Record codec")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="Command to run, after --")
    args = parser.parse_args(argv)

    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if not args.command:
        parser.error("a command is required after --")
    return args


def build_command(args: argparse.Namespace) -> StreamingCommand:
    """Translate parsed arguments into a StreamingCommand."""
    codec = CodecName(args.codec)
    input_spec = (
        HandlerSpec(HandlerKind.FILE, args.input_file, codec)
        if args.input_file else HandlerSpec(codec=codec)
    )
    output_spec = (
        HandlerSpec(HandlerKind.FILE, args.output_file, codec)
        if args.output_file else HandlerSpec(codec=codec)
    )
    return StreamingCommand(tuple(args.command), input=input_spec, output=output_spec)


async def run_cli(
    command: StreamingCommand,
    config: Config | None = None,
    stdin=None,
    stdout=None,
) -> int:
    """Run ``command`` over the records on ``stdin``; return our exit status."""
    config = config or get_config()
    codec = create_codec(command.input.codec, delimiter=config.field_delimiter)
    out_codec = create_codec(command.output.codec, delimiter=config.field_delimiter)
    sink = StdoutSink(out_codec, stdout)

    manager = ExecutableManager(command, config=config)
    manager.configure(
        create_input_handler(command, config),
        create_output_handler(command, config),
        sink,
    )

    source = anyio.wrap_file(stdin if stdin is not None else sys.stdin.buffer)
    try:
        await manager.run()
        try:
            async for line in source:
                await manager.add(codec.decode(line))
        except BaseException:
            await manager.abort()
            raise
        await manager.close()
    except ProcessLaunchError as e:
        logger.error(str(e))
        return EXIT_LAUNCH_FAILURE
    except ProcessFailedError as e:
        logger.error(str(e))
        return e.exit_code if e.exit_code > 0 else 1
    except HandlerError as e:
        logger.error(f"Invalid input record after {manager.input_records} record(s): {e}")
        return EXIT_INVALID_INPUT
    finally:
        sink.flush()

    logger.info(
        f"Processed {manager.input_records} record(s) in, "
        f"{manager.output_records} record(s) out"
    )
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    config = get_config()

    log_handlers: list[logging.Handler] = []
    if config.log_debug and config.log_file:
        # LOG_DEBUG mode: write to a temp file
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("exec_stage").setLevel(log_level)

    args = parse_args(argv)
    command = build_command(args)
    logger.debug(f"Starting exec-stage: {config}")

    sys.exit(asyncio.run(run_cli(command, config)))


if __name__ == "__main__":
    main()
