"""Runtime module for subprocess execution and output capture.

This module provides process execution with concurrent stdout/stderr
draining, deterministic result assembly and reliable termination.
"""

from __future__ import annotations

from .drainer import StreamDrainer
from .errors import (
    DrainerNotFinishedError,
    NonZeroExitError,
    ProcessError,
    ProcessLaunchError,
    ProcessTimeoutError,
    StreamReadError,
)
from .process_runner import ProcessInvocation, ProcessRunner, eval_cmd
from .result import CommandResult

__all__ = [
    "CommandResult",
    "DrainerNotFinishedError",
    "NonZeroExitError",
    "ProcessError",
    "ProcessInvocation",
    "ProcessLaunchError",
    "ProcessRunner",
    "ProcessTimeoutError",
    "StreamDrainer",
    "StreamReadError",
    "eval_cmd",
]
