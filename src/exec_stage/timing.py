"""Timing plan for the four input/output mode combinations.

The plan decides when the child process is started and which of its
streams are bound at start:

    input  output  start on  stdin  stdout  output pump
    sync   sync    run()     pipe   pipe    with the process
    sync   async   run()     pipe   -       after a successful exit
    async  sync    close()   -      pipe    with the process
    async  async   close()   -      -       after a successful exit
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .types import HandlerMode

__all__ = ["StartPoint", "TimingPlan", "plan_for"]


class StartPoint(str, Enum):
    """Manager operation that spawns the child process."""

    RUN = "run"
    CLOSE = "close"


@dataclass(frozen=True)
class TimingPlan:
    """Resolved timing for one manager instance.

    Attributes:
        input_mode: mode declared by the input handler
        output_mode: mode declared by the output handler
        start_on: operation that starts the process
        pipe_stdin: stdin is a pipe bound to the input handler
        pipe_stdout: stdout is a pipe bound to the output handler at start
        deferred_output: the output pump runs only after the process exited
    """

    input_mode: HandlerMode
    output_mode: HandlerMode
    start_on: StartPoint
    pipe_stdin: bool
    pipe_stdout: bool
    deferred_output: bool


def plan_for(input_mode: HandlerMode, output_mode: HandlerMode) -> TimingPlan:
    """Compute the timing plan for a pair of handler modes."""
    sync_input = input_mode == HandlerMode.SYNCHRONOUS
    sync_output = output_mode == HandlerMode.SYNCHRONOUS
    return TimingPlan(
        input_mode=input_mode,
        output_mode=output_mode,
        start_on=StartPoint.RUN if sync_input else StartPoint.CLOSE,
        pipe_stdin=sync_input,
        pipe_stdout=sync_output,
        deferred_output=not sync_output,
    )
