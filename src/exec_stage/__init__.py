"""exec-stage - run an external executable as a streaming pipeline stage.

Environment variables:
    EXS_LOG_DEBUG: log to a temp file at DEBUG level (default false)
    EXS_TERM_TIMEOUT / EXS_KILL_TIMEOUT: teardown timeouts in seconds

Usage:
    exec-stage -- CMD ARGS...
"""

__version__ = "0.1.0"

from .command import StreamingCommand, unquote_argument
from .errors import (
    HandlerError,
    InvalidStateError,
    ProcessFailedError,
    ProcessLaunchError,
    StreamingError,
)
from .manager import ExecutableManager, ManagerState, run_stage
from .sinks import CallbackSink, ListSink, RecordSink, write_to_stderr
from .types import UNKNOWN_EXIT_STATUS, HandlerMode, HandlerSpec, Record

__all__ = [
    "__version__",
    "ExecutableManager",
    "ManagerState",
    "run_stage",
    "StreamingCommand",
    "unquote_argument",
    "Record",
    "HandlerMode",
    "HandlerSpec",
    "UNKNOWN_EXIT_STATUS",
    "RecordSink",
    "ListSink",
    "CallbackSink",
    "write_to_stderr",
    "StreamingError",
    "ProcessLaunchError",
    "ProcessFailedError",
    "InvalidStateError",
    "HandlerError",
]
