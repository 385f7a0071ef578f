"""ExecutableManager tests.

Test coverage:
- The four input/output mode combinations against a real child
- When the process is started and when stdout is bound
- Byte counters
- Exit status checking and terminate-exactly-once
- Diagnostic stream relay
- Contained handler failures (auxiliary error channel)
- Lifecycle misuse
- Aborting a stage part way
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from exec_stage.command import StreamingCommand
from exec_stage.errors import InvalidStateError, ProcessFailedError, ProcessLaunchError
from exec_stage.handlers import (
    FileInputHandler,
    FileOutputHandler,
    StdinInputHandler,
    StdoutOutputHandler,
)
from exec_stage.handlers.base import OutputHandler
from exec_stage.manager import ExecutableManager, ManagerState, run_stage
from exec_stage.runtime.process_runner import ProcessController
from exec_stage.sinks import ListSink
from exec_stage.types import UNKNOWN_EXIT_STATUS, HandlerMode, Record

SYNC = HandlerMode.SYNCHRONOUS
ASYNC = HandlerMode.ASYNCHRONOUS
ALL_MODES = [(SYNC, SYNC), (SYNC, ASYNC), (ASYNC, SYNC), (ASYNC, ASYNC)]

RECORDS = [Record.of("a" * 10), Record.of("b" * 20), Record.of("c" * 30)]


class CountingController(ProcessController):
    """ProcessController that counts start/terminate calls."""

    def __init__(self) -> None:
        super().__init__(term_timeout=0.5, kill_timeout=0.3)
        self.start_calls = 0
        self.terminate_calls = 0

    async def start(self, command, **kwargs):
        self.start_calls += 1
        return await super().start(command, **kwargs)

    async def terminate(self) -> None:
        self.terminate_calls += 1
        await super().terminate()


class UnknownStatusController(CountingController):
    """Reports the exit status as never set."""

    async def wait_for_exit(self) -> int:
        await super().wait_for_exit()
        self.exit_code = UNKNOWN_EXIT_STATUS
        return self.exit_code


class FailingOutputHandler(OutputHandler):
    """Synchronous output handler whose every read fails."""

    def __init__(self) -> None:
        self.closed = False

    @property
    def mode(self) -> HandlerMode:
        return HandlerMode.SYNCHRONOUS

    def bind(self, reader) -> None:
        self.reader = reader

    async def next(self) -> Record | None:
        raise ValueError("cannot decode output")

    async def close(self) -> None:
        self.closed = True


def build_stage(
    fake_stage: list[str],
    tmp_path: Path,
    input_mode: HandlerMode,
    output_mode: HandlerMode,
    *extra: str,
):
    """Build a fake stage command and matching handlers for a mode pair."""
    argv = list(fake_stage)
    if input_mode == ASYNC:
        in_path = tmp_path / "input.txt"
        argv += ["--input-file", str(in_path)]
        input_handler = FileInputHandler(in_path)
    else:
        input_handler = StdinInputHandler()
    if output_mode == ASYNC:
        out_path = tmp_path / "output.txt"
        argv += ["--output-file", str(out_path)]
        output_handler = FileOutputHandler(out_path)
    else:
        output_handler = StdoutOutputHandler()
    argv += list(extra)
    return StreamingCommand(argv), input_handler, output_handler


@pytest.fixture
def controller() -> CountingController:
    return CountingController()


def make_manager(command, config, controller, diagnostics=None) -> ExecutableManager:
    return ExecutableManager(
        command,
        config=config,
        controller=controller,
        diagnostic_sink=diagnostics.append if diagnostics is not None else None,
    )


# =============================================================================
# Mode combinations
# =============================================================================


class TestModes:
    """All four timing modes end to end."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize("input_mode,output_mode", ALL_MODES)
    async def test_echo_round_trip(
        self, fake_stage, tmp_path, config, controller, diagnostics, input_mode, output_mode
    ):
        command, ih, oh = build_stage(fake_stage, tmp_path, input_mode, output_mode)
        sink = ListSink()
        manager = make_manager(command, config, controller, diagnostics)
        manager.configure(ih, oh, sink)

        await manager.run()
        for record in RECORDS:
            await manager.add(record)
        await manager.close()

        assert sink.records == RECORDS
        assert manager.state == ManagerState.SUCCEEDED
        assert manager.exit_code == 0
        assert manager.input_bytes == 60
        assert manager.output_bytes == 60
        assert manager.input_records == 3
        assert manager.output_records == 3
        assert manager.handler_errors == []
        assert controller.start_calls == 1
        assert controller.terminate_calls == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize("input_mode,output_mode", ALL_MODES)
    async def test_transform(self, fake_stage, tmp_path, config, controller, input_mode, output_mode):
        command, ih, oh = build_stage(fake_stage, tmp_path, input_mode, output_mode, "--upper")
        sink = ListSink()
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, sink)

        await manager.run()
        await manager.add(Record.of("x", "y"))
        await manager.close()

        assert sink.records == [Record.of("X", "Y")]

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_sync_sync_starts_on_run_and_pumps_concurrently(
        self, fake_stage, tmp_path, config, controller
    ):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()

        assert manager.state == ManagerState.RUNNING
        assert controller.start_calls == 1
        assert manager.output_pump is not None and manager.output_pump.started
        assert manager.error_pump is not None and manager.error_pump.started
        await manager.close()

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_sync_async_binds_output_after_exit(
        self, fake_stage, tmp_path, config, controller
    ):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, ASYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        assert controller.start_calls == 1
        assert manager.output_pump is None
        assert controller.stdout is None

        await manager.add(Record.of("r"))
        await manager.close()
        assert manager.output_pump is not None and manager.output_pump.done

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize("output_mode", [SYNC, ASYNC])
    async def test_async_input_defers_start_to_close(
        self, fake_stage, tmp_path, config, controller, output_mode
    ):
        command, ih, oh = build_stage(fake_stage, tmp_path, ASYNC, output_mode)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        assert manager.state == ManagerState.DEFERRED
        for record in RECORDS:
            await manager.add(record)
        assert controller.start_calls == 0
        assert manager.input_bytes == 60

        await manager.close()
        assert controller.start_calls == 1
        assert controller.stdin is None

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_no_records(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        sink = ListSink()
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, sink)

        await manager.run()
        await manager.close()

        assert sink.records == []
        assert manager.input_bytes == 0 and manager.output_bytes == 0


# =============================================================================
# Exit status
# =============================================================================


class TestExitStatus:
    """Non-zero exit handling and teardown."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize("input_mode,output_mode", ALL_MODES)
    async def test_exit_status_reported(
        self, fake_stage, tmp_path, config, controller, input_mode, output_mode
    ):
        command, ih, oh = build_stage(
            fake_stage, tmp_path, input_mode, output_mode, "--exit-code", "2"
        )
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        await manager.add(Record.of("r"))
        with pytest.raises(ProcessFailedError) as exc_info:
            await manager.close()

        assert exc_info.value.exit_code == 2
        assert "2" in str(exc_info.value)
        assert str(command) in str(exc_info.value)
        assert manager.state == ManagerState.FAILED
        assert manager.exit_code == 2
        assert controller.terminate_calls == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_failed_run_skips_deferred_output(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, ASYNC, "--exit-code", "3")
        sink = ListSink()
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, sink)

        await manager.run()
        await manager.add(Record.of("r"))
        with pytest.raises(ProcessFailedError):
            await manager.close()

        assert manager.output_pump is None
        assert sink.records == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_unknown_status_is_failure(self, fake_stage, tmp_path, config):
        controller = UnknownStatusController()
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        with pytest.raises(ProcessFailedError) as exc_info:
            await manager.close()

        assert exc_info.value.exit_code == UNKNOWN_EXIT_STATUS
        assert str(UNKNOWN_EXIT_STATUS) in str(exc_info.value)
        assert controller.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_exit_code_unknown_before_close(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, ASYNC, ASYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())
        await manager.run()
        assert manager.exit_code == UNKNOWN_EXIT_STATUS

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_cancelled_close_still_terminates(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(
            fake_stage, tmp_path, SYNC, SYNC, "--skip-input", "--sleep", "100"
        )
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        process = controller.process
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(manager.close(), timeout=0.5)

        assert controller.terminate_calls == 1
        assert process is not None and process.returncode is not None
        assert manager.state == ManagerState.FAILED

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_cancelled_close_while_flushing_input_terminates(
        self, fake_stage, tmp_path, config, controller
    ):
        # The child never reads, so closing stdin waits on buffered input
        command, ih, oh = build_stage(
            fake_stage, tmp_path, SYNC, SYNC, "--skip-input", "--sleep", "100"
        )
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        process = controller.process
        for _ in range(100):
            await manager.add(Record.of("x" * 1024))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(manager.close(), timeout=1.0)

        assert controller.terminate_calls == 1
        assert process is not None and process.returncode is not None
        assert manager.state == ManagerState.FAILED


# =============================================================================
# Launch failures
# =============================================================================


class TestLaunchFailure:
    """Spawn failures surface immediately."""

    @pytest.mark.asyncio
    async def test_run_raises_for_sync_input(self, config, controller):
        manager = make_manager(StreamingCommand(["nonexistent_command_xyz_123"]), config, controller)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())

        with pytest.raises(ProcessLaunchError):
            await manager.run()
        assert manager.state == ManagerState.FAILED

        with pytest.raises(InvalidStateError):
            await manager.close()

    @pytest.mark.asyncio
    async def test_close_raises_for_async_input(self, config, controller, tmp_path):
        manager = make_manager(StreamingCommand(["nonexistent_command_xyz_123"]), config, controller)
        manager.configure(FileInputHandler(tmp_path / "in"), StdoutOutputHandler(), ListSink())

        await manager.run()
        await manager.add(Record.of("r"))
        with pytest.raises(ProcessLaunchError):
            await manager.close()
        assert manager.state == ManagerState.FAILED
        assert (tmp_path / "in").read_bytes() == b"r\n"


# =============================================================================
# Diagnostics
# =============================================================================


class TestDiagnostics:
    """stderr relay to the diagnostic sink."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize("input_mode,output_mode", ALL_MODES)
    async def test_stderr_lines_in_order(
        self, fake_stage, tmp_path, config, controller, diagnostics, input_mode, output_mode
    ):
        command, ih, oh = build_stage(
            fake_stage, tmp_path, input_mode, output_mode,
            "--stderr", "warning one", "--stderr", "", "--stderr", "warning two",
        )
        manager = make_manager(command, config, controller, diagnostics)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        await manager.close()

        assert diagnostics == ["warning one\n", "\n", "warning two\n"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_diagnostics_flushed_on_failure(
        self, fake_stage, tmp_path, config, controller, diagnostics
    ):
        command, ih, oh = build_stage(
            fake_stage, tmp_path, SYNC, SYNC, "--stderr", "boom", "--exit-code", "1"
        )
        manager = make_manager(command, config, controller, diagnostics)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        with pytest.raises(ProcessFailedError):
            await manager.close()
        assert diagnostics == ["boom\n"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_hooks_can_be_overridden(self, fake_stage, tmp_path, config, controller):
        seen: list[str] = []

        class RecordingManager(ExecutableManager):
            def process_output(self, record: Record) -> None:
                seen.append("out:" + record.fields[0])

            def process_error(self, line: str) -> None:
                seen.append("err:" + line)

        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC, "--stderr", "e")
        manager = RecordingManager(command, config=config, controller=controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        await manager.add(Record.of("r"))
        await manager.close()

        assert sorted(seen) == ["err:e\n", "out:r"]
        assert manager.output_bytes == 1


# =============================================================================
# Contained handler failures
# =============================================================================


class TestHandlerFailures:
    """Handler errors are logged and kept, exit status decides."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_output_handler_failure_does_not_raise(
        self, fake_stage, tmp_path, config, controller
    ):
        command, ih, _ = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        output_handler = FailingOutputHandler()
        sink = ListSink()
        manager = make_manager(command, config, controller)
        manager.configure(ih, output_handler, sink)

        await manager.run()
        for record in RECORDS:
            await manager.add(record)
        await manager.close()

        assert manager.state == ManagerState.SUCCEEDED
        assert sink.records == []
        assert len(manager.handler_errors) == 1
        assert isinstance(manager.handler_errors[0], ValueError)
        assert output_handler.closed

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_sink_failure_recorded(self, fake_stage, tmp_path, config, controller):
        class BrokenSink:
            def accept(self, record: Record) -> None:
                raise RuntimeError("downstream unavailable")

        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, BrokenSink())

        await manager.run()
        await manager.add(Record.of("r"))
        await manager.close()

        assert manager.output_bytes == 0
        assert isinstance(manager.handler_errors[0], RuntimeError)

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_input_failure_when_child_stops_reading(
        self, fake_stage, tmp_path, config, controller
    ):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC, "--skip-input")
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())

        await manager.run()
        big = Record.of("z" * 1024)
        for _ in range(1024):
            await manager.add(big)
        await manager.close()

        assert manager.state == ManagerState.SUCCEEDED
        assert manager.handler_errors
        assert manager.input_records < 1024
        assert manager.input_bytes == manager.input_records * 1024

    @pytest.mark.asyncio
    async def test_unencodable_record_is_contained(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, ASYNC, ASYNC)
        sink = ListSink()
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, sink)

        await manager.run()
        await manager.add(Record.of("ok"))
        await manager.add(Record.of("bad\tfield"))
        await manager.add(Record.of("dropped"))
        await manager.close()

        assert manager.input_records == 1
        assert len(manager.handler_errors) == 1
        assert sink.records == [Record.of("ok")]


# =============================================================================
# Lifecycle misuse
# =============================================================================


class TestLifecycle:
    """State machine enforcement."""

    @pytest.mark.asyncio
    async def test_run_before_configure(self, config, controller):
        manager = make_manager(StreamingCommand(["cat"]), config, controller)
        with pytest.raises(InvalidStateError):
            await manager.run()

    def test_configure_twice(self, config, controller):
        manager = make_manager(StreamingCommand(["cat"]), config, controller)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())
        with pytest.raises(InvalidStateError):
            manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())

    @pytest.mark.asyncio
    async def test_add_before_run(self, config, controller):
        manager = make_manager(StreamingCommand(["cat"]), config, controller)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())
        with pytest.raises(InvalidStateError):
            await manager.add(Record.of("r"))

    @pytest.mark.asyncio
    async def test_close_before_run(self, config, controller):
        manager = make_manager(StreamingCommand(["cat"]), config, controller)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())
        with pytest.raises(InvalidStateError):
            await manager.close()

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_terminated_is_absorbing(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())
        await manager.run()
        await manager.close()

        assert manager.terminated
        with pytest.raises(InvalidStateError):
            await manager.add(Record.of("r"))
        with pytest.raises(InvalidStateError):
            await manager.close()
        with pytest.raises(InvalidStateError):
            await manager.run()
        assert controller.start_calls == 1
        assert controller.terminate_calls == 1

        await manager.abort()
        assert manager.state == ManagerState.SUCCEEDED
        assert controller.terminate_calls == 1


# =============================================================================
# Abort
# =============================================================================


class TestAbort:
    """Tearing a stage down part way."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_abort_running_child(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC, "--sleep", "100")
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())
        await manager.run()
        await manager.add(RECORDS[0])

        await manager.abort()

        assert manager.state == ManagerState.FAILED
        assert controller.terminate_calls == 1
        assert controller.process is not None
        assert controller.process.returncode is not None
        assert manager.output_pump is not None and manager.output_pump.done
        assert manager.error_pump is not None and manager.error_pump.done

        await manager.abort()
        assert controller.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_abort_before_run(self, config, controller):
        manager = make_manager(StreamingCommand(["cat"]), config, controller)
        manager.configure(StdinInputHandler(), StdoutOutputHandler(), ListSink())

        await manager.abort()

        assert manager.state == ManagerState.FAILED
        assert controller.start_calls == 0
        with pytest.raises(InvalidStateError):
            await manager.run()

    @pytest.mark.asyncio
    async def test_abort_deferred_closes_input(self, fake_stage, tmp_path, config, controller):
        command, ih, oh = build_stage(fake_stage, tmp_path, ASYNC, SYNC)
        manager = make_manager(command, config, controller)
        manager.configure(ih, oh, ListSink())
        await manager.run()
        await manager.add(RECORDS[0])

        await manager.abort()

        assert manager.state == ManagerState.FAILED
        assert controller.start_calls == 0
        assert (tmp_path / "input.txt").read_text() == "a" * 10 + "\n"


# =============================================================================
# run_stage helper
# =============================================================================


class TestRunStage:
    """Convenience driver."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_sync_iterable(self, fake_stage, tmp_path, config):
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC)
        sink = ListSink()
        manager = await run_stage(command, RECORDS, ih, oh, sink, config=config)
        assert sink.records == RECORDS
        assert manager.state == ManagerState.SUCCEEDED

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_async_iterable(self, fake_stage, tmp_path, config):
        async def produce():
            for record in RECORDS:
                yield record

        command, ih, oh = build_stage(fake_stage, tmp_path, ASYNC, SYNC)
        sink = ListSink()
        manager = await run_stage(command, produce(), ih, oh, sink, config=config)
        assert sink.records == RECORDS
        assert manager.output_bytes == 60

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_failing_source_aborts_child(self, fake_stage, tmp_path, config):
        def produce():
            yield RECORDS[0]
            raise RuntimeError("record source broke")

        controller = CountingController()
        command, ih, oh = build_stage(fake_stage, tmp_path, SYNC, SYNC, "--sleep", "100")

        with pytest.raises(RuntimeError, match="record source broke"):
            await run_stage(
                command, produce(), ih, oh, ListSink(), config=config, controller=controller
            )

        assert controller.start_calls == 1
        assert controller.terminate_calls == 1
        assert controller.process is not None
        assert controller.process.returncode is not None
