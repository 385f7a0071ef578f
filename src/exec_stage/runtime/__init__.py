"""Runtime module for the child process and its stream pumps.

This module provides isolated process execution with reliable termination,
plus the background tasks that drain the child's stdout and stderr.
"""

from __future__ import annotations

from .process_runner import ProcessController
from .pumps import ErrorPump, OutputPump

__all__ = [
    "ProcessController",
    "OutputPump",
    "ErrorPump",
]
