"""Process lifecycle controller for a single streaming child.

exec-stage runtime module

This module provides:
- Spawning the child in its own session/process group
- Exposing the child's stdin/stdout/stderr streams
- Waiting for termination and recording the exit status
- Reliable teardown (SIGTERM -> timeout -> SIGKILL) shielded from cancellation

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Unbound stdin/stdout use DEVNULL so the child never inherits our streams
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from typing import Any

from ..command import StreamingCommand
from ..config import DEFAULT_KILL_TIMEOUT, DEFAULT_STREAM_LIMIT, DEFAULT_TERM_TIMEOUT
from ..errors import InvalidStateError, ProcessLaunchError
from ..types import UNKNOWN_EXIT_STATUS

__all__ = [
    "ProcessController",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"


class ProcessController:
    """Owns the child process of one manager.

    Example:
        controller = ProcessController()
        process = await controller.start(command, pipe_stdin=True, pipe_stdout=True)
        ...
        exit_code = await controller.wait_for_exit()
        await controller.terminate()
    """

    def __init__(
        self,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        stream_limit: int = DEFAULT_STREAM_LIMIT,
    ) -> None:
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.stream_limit = stream_limit
        self.exit_code: int = UNKNOWN_EXIT_STATUS
        self._process: asyncio.subprocess.Process | None = None
        self._command: StreamingCommand | None = None
        self._terminated = False

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def stdin(self) -> asyncio.StreamWriter | None:
        return self._process.stdin if self._process else None

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout if self._process else None

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr if self._process else None

    async def start(
        self,
        command: StreamingCommand,
        *,
        pipe_stdin: bool,
        pipe_stdout: bool,
    ) -> asyncio.subprocess.Process:
        """Spawn the child process.

        Args:
            command: the command to run (quoted arguments are unquoted)
            pipe_stdin: give the child a stdin pipe (DEVNULL otherwise)
            pipe_stdout: give the child a stdout pipe (DEVNULL otherwise)

        Returns:
            The running process

        Raises:
            InvalidStateError: a process was already started
            ProcessLaunchError: the process could not be spawned
        """
        if self._process is not None:
            raise InvalidStateError(
                f"Process already started pid={self._process.pid}"
            )

        argv = command.exec_argv()
        kwargs = self._build_subprocess_kwargs(command)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if pipe_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if pipe_stdout else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                limit=self.stream_limit,
                **kwargs,
            )
        except OSError as e:
            logger.warning(f"Failed to start {command}: {e}")
            raise ProcessLaunchError(command, e) from e

        self._process = process
        self._command = command
        logger.debug(
            f"Started subprocess pid={process.pid} argv={argv[0]} "
            f"stdin={'PIPE' if pipe_stdin else 'DEVNULL'} "
            f"stdout={'PIPE' if pipe_stdout else 'DEVNULL'}"
        )
        return process

    def _build_subprocess_kwargs(self, command: StreamingCommand) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if command.cwd is not None:
            kwargs["cwd"] = command.cwd
        if command.env is not None:
            kwargs["env"] = dict(command.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def wait_for_exit(self) -> int:
        """Block until the child exits and return its exit status."""
        if self._process is None:
            raise InvalidStateError("No process has been started")
        self.exit_code = await self._process.wait()
        logger.debug(
            f"Subprocess completed pid={self._process.pid} "
            f"returncode={self.exit_code}"
        )
        return self.exit_code

    async def terminate(self) -> None:
        """Release the child process.

        Kills the process group if the child is still running (for example
        when waiting was cancelled). Shielded so that a cancelled caller
        still leaves no orphan behind.
        """
        if self._terminated:
            return
        self._terminated = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            await asyncio.shield(self._terminate_process(process))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._terminate_process(process)
            raise

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the child gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        """Send a signal to the child's process group on POSIX systems."""
        try:
            # Process group ID equals the pid due to start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {signal.Signals(sig).name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to process signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because we used CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()
