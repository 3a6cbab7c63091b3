"""Result value produced by ProcessRunner.

rscript-runner runtime module v0.1.0
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .errors import NonZeroExitError

__all__ = ["CommandResult"]


@dataclass(frozen=True)
class CommandResult:
    """Exit status plus captured output of a finished child process.

    Attributes:
        exit_code: Process exit status (negative N means killed by signal N on POSIX)
        stdout: Captured stdout lines, without line terminators
        stderr: Captured stderr lines, without line terminators
    """

    exit_code: int
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept any iterable of lines, store tuples so the result stays immutable
        if not isinstance(self.stdout, tuple):
            object.__setattr__(self, "stdout", tuple(self.stdout))
        if not isinstance(self.stderr, tuple):
            object.__setattr__(self, "stderr", tuple(self.stderr))

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout_text(self) -> str:
        """stdout lines joined with newlines, outer whitespace trimmed."""
        return _join_trimmed(self.stdout)

    @property
    def stderr_text(self) -> str:
        """stderr lines joined with newlines, outer whitespace trimmed."""
        return _join_trimmed(self.stderr)

    def check(self) -> CommandResult:
        """Return self if the process succeeded.

        Raises:
            NonZeroExitError: If exit_code is not 0
        """
        if not self.succeeded:
            raise NonZeroExitError(self)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "stdout": list(self.stdout),
            "stderr": list(self.stderr),
        }


def _join_trimmed(lines: Iterable[str]) -> str:
    return "\n".join(lines).strip()
