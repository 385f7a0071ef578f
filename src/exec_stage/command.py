"""Streaming command description."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .types import HandlerSpec

__all__ = ["StreamingCommand", "unquote_argument"]


def unquote_argument(arg: str) -> str:
    """Strip one pair of enclosing single quotes from an argument.

    ``'foo'`` becomes ``foo``; ``foo`` and ``'foo`` are returned unchanged.
    """
    if len(arg) >= 2 and arg[0] == "'" and arg[-1] == "'":
        return arg[1:-1]
    return arg


@dataclass(frozen=True)
class StreamingCommand:
    """The external executable run by a stage.

    Attributes:
        argv: command line arguments (first element is the executable)
        cwd: working directory for the process (None = inherit)
        env: environment variables (None = inherit parent)
        input: which input handler feeds the process
        output: which output handler reads the process' results
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    input: HandlerSpec = field(default_factory=HandlerSpec)
    output: HandlerSpec = field(default_factory=HandlerSpec)

    def __post_init__(self) -> None:
        if isinstance(self.argv, str) or not isinstance(self.argv, Sequence):
            raise TypeError("argv must be a sequence of strings")
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ValueError("argv must not be empty")
        if isinstance(self.cwd, str):
            object.__setattr__(self, "cwd", Path(self.cwd))

    @property
    def executable(self) -> str:
        return unquote_argument(self.argv[0])

    def exec_argv(self) -> list[str]:
        """Return the argument vector as passed to the operating system."""
        return [unquote_argument(arg) for arg in self.argv]

    def __str__(self) -> str:
        return shlex.join(self.argv)
