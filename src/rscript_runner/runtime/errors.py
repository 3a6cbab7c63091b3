"""Exception types raised by the process runtime.

rscript-runner runtime module v0.1.0
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .result import CommandResult

__all__ = [
    "ProcessError",
    "ProcessLaunchError",
    "ProcessTimeoutError",
    "StreamReadError",
    "DrainerNotFinishedError",
    "NonZeroExitError",
]


class ProcessError(Exception):
    """Base class for runtime errors."""
    pass


class ProcessLaunchError(ProcessError):
    """The OS refused to start the child process.

    Attributes:
        argv: Command line that failed to launch
        cause: Underlying OS error
    """

    def __init__(self, argv: Sequence[str], cause: OSError) -> None:
        self.argv = list(argv)
        self.cause = cause
        super().__init__(f"Failed to launch {self.argv[0]!r}: {cause}")


class ProcessTimeoutError(ProcessError):
    """The child did not exit before its deadline and was terminated.

    Attributes:
        argv: Command line of the terminated process
        timeout: Deadline in seconds
    """

    def __init__(self, argv: Sequence[str], timeout: float) -> None:
        self.argv = list(argv)
        self.timeout = timeout
        super().__init__(f"Process {self.argv[0]!r} timed out after {timeout}s")


class StreamReadError(ProcessError):
    """Reading one of the child's output streams failed.

    Never raised to callers of ProcessRunner; drainers record it instead.

    Attributes:
        stream_name: "stdout" or "stderr"
        cause: Underlying exception
    """

    def __init__(self, stream_name: str, cause: BaseException) -> None:
        self.stream_name = stream_name
        self.cause = cause
        super().__init__(f"Error reading {stream_name}: {cause}")


class DrainerNotFinishedError(ProcessError, RuntimeError):
    """Captured output was requested before the drainer completed."""
    pass


class NonZeroExitError(ProcessError):
    """The child ran to completion but returned a non-zero status.

    Attributes:
        result: The full CommandResult of the run
    """

    def __init__(self, result: CommandResult) -> None:
        self.result = result
        super().__init__(f"Process exited with status {result.exit_code}: {result!r}")
