"""EXS environment variable configuration.

Environment variables:
    EXS_LOG_DEBUG: debug logging mode
        - true/1/yes = on (logs go to a temp file)
        - false/0/no = off (default, logs go to stderr)

    EXS_TERM_TIMEOUT: seconds to wait after SIGTERM when tearing down a child
        - default 2.0

    EXS_KILL_TIMEOUT: seconds to wait after SIGKILL
        - default 1.0

    EXS_STDERR_ENCODING: encoding used to decode the child's stderr lines
        - default utf-8

    EXS_STREAM_LIMIT: buffer limit (bytes) of the child's stdout/stderr readers
        - default 1048576, clamped to 64 KiB..64 MiB

    EXS_FIELD_DELIMITER: field delimiter of the delimited record codec
        - default tab
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_STREAM_LIMIT = 1024 * 1024
MIN_STREAM_LIMIT = 64 * 1024
MAX_STREAM_LIMIT = 64 * 1024 * 1024


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """Parse a timeout in seconds, limited to 0.1-60."""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _parse_stream_limit(value: str | None) -> int:
    if not value:
        return DEFAULT_STREAM_LIMIT
    try:
        limit = int(value)
    except ValueError:
        return DEFAULT_STREAM_LIMIT
    return max(MIN_STREAM_LIMIT, min(limit, MAX_STREAM_LIMIT))


def _parse_encoding(value: str | None) -> str:
    """Parse an encoding name, falling back to utf-8 for unknown codecs."""
    if not value or not value.strip():
        return "utf-8"
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return "utf-8"


def _parse_delimiter(value: str | None) -> str:
    if not value:
        return "\t"
    # Allow the escaped form so the variable can be set from a shell
    if value == "\\t":
        return "\t"
    return value


@dataclass
class Config:
    """Runtime configuration.

    Attributes:
        log_debug: debug logging mode (log to a temp file)
        log_file: log file path (set automatically when log_debug=True)
        term_timeout: seconds to wait after SIGTERM
        kill_timeout: seconds to wait after SIGKILL
        stderr_encoding: encoding of the child's diagnostic stream
        stream_limit: buffer limit for the child's pipes
        field_delimiter: delimiter of the delimited record codec
    """

    log_debug: bool = False
    log_file: str | None = None
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    stderr_encoding: str = "utf-8"
    stream_limit: int = DEFAULT_STREAM_LIMIT
    field_delimiter: str = "\t"

    def __repr__(self) -> str:
        return (
            f"Config(log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"stderr_encoding={self.stderr_encoding}, "
            f"stream_limit={self.stream_limit}, "
            f"field_delimiter={self.field_delimiter!r})"
        )


def _generate_log_file_path() -> str:
    """Generate a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "exec-stage"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"exs_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("EXS_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        log_debug=log_debug,
        log_file=log_file,
        term_timeout=_parse_timeout(
            os.environ.get("EXS_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("EXS_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        stderr_encoding=_parse_encoding(os.environ.get("EXS_STDERR_ENCODING")),
        stream_limit=_parse_stream_limit(os.environ.get("EXS_STREAM_LIMIT")),
        field_delimiter=_parse_delimiter(os.environ.get("EXS_FIELD_DELIMITER")),
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
