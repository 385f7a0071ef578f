"""Manager of the external executable behind a streaming stage.

The manager starts the child, feeds it records through an input handler,
forwards the records read by an output handler to a downstream sink and
relays the child's stderr to a diagnostic sink. When the child is started
and when its pipes are bound depends on the handler modes (see
``exec_stage.timing``).

Lifecycle:
    UNCONFIGURED -> CONFIGURED -> RUNNING | DEFERRED -> CLOSING
    -> SUCCEEDED | FAILED

Only process level outcomes reach the caller as exceptions: a launch
failure from run()/close() and a non-zero exit status from close().
Handler and pump failures are logged and kept on ``handler_errors``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable
from enum import Enum

from .command import StreamingCommand
from .config import Config, get_config
from .errors import InvalidStateError, ProcessFailedError
from .handlers.base import InputHandler, OutputHandler
from .runtime.process_runner import ProcessController
from .runtime.pumps import ErrorPump, OutputPump
from .sinks import DiagnosticSink, RecordSink, write_to_stderr
from .timing import StartPoint, TimingPlan, plan_for
from .types import Record

__all__ = [
    "ExecutableManager",
    "ManagerState",
    "run_stage",
]

logger = logging.getLogger(__name__)

SUCCESS = 0


class ManagerState(str, Enum):
    """Lifecycle state of an ExecutableManager."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    RUNNING = "running"
    DEFERRED = "deferred"
    CLOSING = "closing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminated(self) -> bool:
        return self in (ManagerState.SUCCEEDED, ManagerState.FAILED)


class ExecutableManager:
    """Runs one external executable as a record transform.

    Example:
        ```python
        command = StreamingCommand(["sort", "-u"])
        manager = ExecutableManager(command)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())

        await manager.run()
        for record in records:
            await manager.add(record)
        await manager.close()  # raises ProcessFailedError on non-zero exit
        ```

    Attributes:
        command: the executable and its arguments
        config: runtime configuration
        diagnostic_sink: receives each stderr line of the child
        controller: owner of the child process
        handler_errors: contained handler/pump failures, in order
    """

    def __init__(
        self,
        command: StreamingCommand,
        *,
        config: Config | None = None,
        diagnostic_sink: DiagnosticSink | None = None,
        log: logging.Logger | None = None,
        controller: ProcessController | None = None,
    ) -> None:
        self.command = command
        self.config = config or get_config()
        self.diagnostic_sink = diagnostic_sink or write_to_stderr
        self.log = log or logger
        self.controller = controller or ProcessController(
            term_timeout=self.config.term_timeout,
            kill_timeout=self.config.kill_timeout,
            stream_limit=self.config.stream_limit,
        )

        self.state = ManagerState.UNCONFIGURED
        self.input_handler: InputHandler | None = None
        self.output_handler: OutputHandler | None = None
        self.sink: RecordSink | None = None
        self.plan: TimingPlan | None = None

        self.output_pump: OutputPump | None = None
        self.error_pump: ErrorPump | None = None
        self.handler_errors: list[BaseException] = []

        self._input_failed = False
        self._input_closed = False
        self._input_bytes = 0
        self._input_records = 0
        self._output_bytes = 0
        self._output_records = 0

    # ------------------------------------------------------------------
    # Counters and status
    # ------------------------------------------------------------------

    @property
    def input_bytes(self) -> int:
        return self._input_bytes

    @property
    def input_records(self) -> int:
        return self._input_records

    @property
    def output_bytes(self) -> int:
        return self._output_bytes

    @property
    def output_records(self) -> int:
        return self._output_records

    @property
    def exit_code(self) -> int:
        """Exit status of the child (-127 until it terminated)."""
        return self.controller.exit_code

    @property
    def terminated(self) -> bool:
        return self.state.terminated

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure(
        self,
        input_handler: InputHandler,
        output_handler: OutputHandler,
        sink: RecordSink,
    ) -> None:
        """Attach the handlers and the downstream sink.

        The handler modes are read once here and decide the timing plan.
        """
        if self.state != ManagerState.UNCONFIGURED:
            raise InvalidStateError(
                f"configure() called in state {self.state.value}"
            )
        self.input_handler = input_handler
        self.output_handler = output_handler
        self.sink = sink
        self.plan = plan_for(input_handler.mode, output_handler.mode)
        self.state = ManagerState.CONFIGURED
        self.log.debug(
            f"Configured {self.command}: input={self.plan.input_mode.value} "
            f"output={self.plan.output_mode.value}"
        )

    async def run(self) -> None:
        """Start the child now if input is synchronous.

        With asynchronous input this only marks the manager as deferred;
        the child is started by close() once all input was written.
        """
        if self.state != ManagerState.CONFIGURED:
            raise InvalidStateError(f"run() called in state {self.state.value}")
        assert self.plan is not None and self.input_handler is not None

        if self.plan.start_on == StartPoint.CLOSE:
            self.state = ManagerState.DEFERRED
            self.log.debug(f"Deferring start of {self.command} until close()")
            return

        await self._exec()
        stdin = self.controller.stdin
        assert stdin is not None
        self.input_handler.bind(stdin)
        self.state = ManagerState.RUNNING

    async def add(self, record: Record) -> None:
        """Pass one record to the child through the input handler."""
        if self.state not in (ManagerState.RUNNING, ManagerState.DEFERRED):
            raise InvalidStateError(f"add() called in state {self.state.value}")
        assert self.input_handler is not None

        if self._input_failed:
            self.log.debug("Dropping record, input handler already failed")
            return

        try:
            await self.input_handler.put(record)
        except Exception as e:
            self._input_failed = True
            self._handler_failed(e)
            self.log.warning(
                f"Input handler failed after {self._input_records} record(s): {e!r}"
            )
            await self._close_input()
            return

        self._input_records += 1
        self._input_bytes += record.memory_size

    async def close(self) -> None:
        """Finish input, wait for the child and the pumps, check the status.

        Raises:
            ProcessLaunchError: the deferred start failed
            ProcessFailedError: the child exited with a non-zero status
        """
        if self.state not in (ManagerState.RUNNING, ManagerState.DEFERRED):
            raise InvalidStateError(f"close() called in state {self.state.value}")
        assert self.plan is not None and self.output_handler is not None

        self.state = ManagerState.CLOSING

        try:
            # Closing the input handler is what lets most filters terminate
            await self._close_input()
            if self.plan.start_on == StartPoint.CLOSE:
                await self._exec()
            exit_code = await self.controller.wait_for_exit()
            await self._join_pumps()
        except BaseException:
            self.state = ManagerState.FAILED
            raise
        finally:
            await self.controller.terminate()

        self.log.debug(f"Process exited with: {exit_code}")
        if exit_code != SUCCESS:
            self.state = ManagerState.FAILED
            raise ProcessFailedError(self.command, exit_code)

        if self.plan.deferred_output:
            try:
                await self._pump_deferred_output()
            except BaseException:
                self.state = ManagerState.FAILED
                raise

        self.state = ManagerState.SUCCEEDED
        self.log.debug(
            f"{self.command} succeeded: in={self._input_records} record(s)/"
            f"{self._input_bytes} bytes, out={self._output_records} record(s)/"
            f"{self._output_bytes} bytes"
        )

    async def abort(self) -> None:
        """Tear the stage down without waiting for the child to finish.

        For callers that stop feeding records part way, e.g. because the
        record source failed. The child is terminated, the input handler and
        the pumps are wound down and the manager ends in FAILED. A no-op once
        the manager reached a final state.
        """
        if self.state.terminated:
            return
        started = self.state in (
            ManagerState.RUNNING, ManagerState.DEFERRED, ManagerState.CLOSING
        )
        self.state = ManagerState.FAILED
        if not started:
            return

        self.log.warning(f"Aborting {self.command}")
        try:
            await self.controller.terminate()
        finally:
            await self._close_input()
            await self._join_pumps()

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def process_output(self, record: Record) -> None:
        """Handle one output record. Default: push it to the sink."""
        assert self.sink is not None
        self.sink.accept(record)

    def process_error(self, line: str) -> None:
        """Handle one stderr line. Default: pass it to the diagnostic sink."""
        self.diagnostic_sink(line)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _exec(self) -> None:
        """Start the child and the pumps that run alongside it."""
        assert self.plan is not None and self.output_handler is not None
        try:
            process = await self.controller.start(
                self.command,
                pipe_stdin=self.plan.pipe_stdin,
                pipe_stdout=self.plan.pipe_stdout,
            )
        except BaseException:
            self.state = ManagerState.FAILED
            raise
        self.log.info(f"Started {self.command} pid={process.pid}")

        assert process.stderr is not None
        self.error_pump = ErrorPump(
            process.stderr,
            self.process_error,
            encoding=self.config.stderr_encoding,
            max_line_length=self.config.stream_limit,
            log=self.log,
            on_error=self._handler_failed,
        )
        self.error_pump.start()

        if not self.plan.deferred_output:
            assert process.stdout is not None
            self.output_handler.bind(process.stdout)
            self._start_output_pump(drain=process.stdout)

    def _start_output_pump(
        self, drain: asyncio.StreamReader | None = None
    ) -> OutputPump:
        assert self.output_handler is not None
        self.output_pump = OutputPump(
            self.output_handler,
            self._on_output,
            drain=drain,
            log=self.log,
            on_error=self._handler_failed,
        )
        self.output_pump.start()
        return self.output_pump

    async def _pump_deferred_output(self) -> None:
        """Read the output the child left behind, after it exited."""
        assert self.output_handler is not None
        try:
            self.output_handler.bind(None)
        except Exception as e:
            self._handler_failed(e)
            self.log.warning(f"Output handler failed to bind: {e!r}")
            return
        pump = self._start_output_pump()
        await pump.join()

    async def _join_pumps(self) -> None:
        if self.output_pump is not None:
            await self.output_pump.join()
        if self.error_pump is not None:
            await self.error_pump.join()

    async def _close_input(self) -> None:
        if self._input_closed:
            return
        self._input_closed = True
        assert self.input_handler is not None
        try:
            await self.input_handler.close()
        except Exception as e:
            self._handler_failed(e)
            self.log.warning(f"Error closing input handler: {e!r}")

    def _on_output(self, record: Record) -> None:
        self.process_output(record)
        self._output_records += 1
        self._output_bytes += record.memory_size

    def _handler_failed(self, error: BaseException) -> None:
        self.handler_errors.append(error)


async def run_stage(
    command: StreamingCommand,
    records: Iterable[Record] | AsyncIterable[Record],
    input_handler: InputHandler,
    output_handler: OutputHandler,
    sink: RecordSink,
    **kwargs,
) -> ExecutableManager:
    """Run a command over all ``records`` and return the closed manager.

    Keyword arguments are passed to ExecutableManager. If iterating
    ``records`` raises, the child is aborted before the error propagates.
    """
    manager = ExecutableManager(command, **kwargs)
    manager.configure(input_handler, output_handler, sink)
    await manager.run()
    try:
        if isinstance(records, AsyncIterable):
            async for record in records:
                await manager.add(record)
        else:
            for record in records:
                await manager.add(record)
    except BaseException:
        await manager.abort()
        raise
    await manager.close()
    return manager
