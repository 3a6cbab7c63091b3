"""Run a script body through an external interpreter.

rscript-runner render module v0.1.0

The script text is written verbatim to a temporary file and the interpreter
is started with its fixed flags followed by the file's absolute path. The
CommandResult is returned unmodified: deciding what a non-zero exit means is
left to the caller (see LocalREngine).
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import anyio

from ..config import DEFAULT_R_PATH
from ..runtime import CommandResult, ProcessInvocation, ProcessRunner

if TYPE_CHECKING:
    from ..config import Config

__all__ = [
    "InterpreterCommand",
    "ScriptInvoker",
    "R_SCRIPT_FLAGS",
]

logger = logging.getLogger(__name__)

# Non-interactive, no startup banner, no echo of the input, run the given file
R_SCRIPT_FLAGS: tuple[str, ...] = ("--vanilla", "--quiet", "--slave", "-f")


@dataclass(frozen=True)
class InterpreterCommand:
    """Interpreter executable plus the flags placed before the script path.

    Attributes:
        executable: Interpreter path or name
        flags: Fixed arguments preceding the script path
        script_suffix: File extension for generated scripts
    """

    executable: str
    flags: Sequence[str] = ()
    script_suffix: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "flags", tuple(self.flags))

    @classmethod
    def r(cls, executable: str = DEFAULT_R_PATH) -> InterpreterCommand:
        """R invoked as `<executable> --vanilla --quiet --slave -f <script>`."""
        return cls(executable=executable, flags=R_SCRIPT_FLAGS, script_suffix=".R")

    def argv_for(self, script_path: Path) -> list[str]:
        return [self.executable, *self.flags, str(Path(script_path).resolve())]


class ScriptInvoker:
    """Persist a script to a temp file and run it with an interpreter.

    Example:
        invoker = ScriptInvoker(InterpreterCommand.r("/usr/bin/R"))
        result = await invoker.run_script('cat("hello\\n")')
        assert result.stdout == ("hello",)
    """

    def __init__(
        self,
        interpreter: InterpreterCommand,
        runner: ProcessRunner | None = None,
        *,
        echo: bool = False,
        cwd: Path | None = None,
        timeout: float | None = None,
        keep_scripts: bool = False,
        script_dir: Path | None = None,
    ) -> None:
        """Initialize the invoker.

        Args:
            interpreter: Interpreter command template
            runner: ProcessRunner to use (a default one is created if omitted)
            echo: Mirror interpreter output to the console
            cwd: Working directory for the interpreter (default: current directory)
            timeout: Deadline per script run in seconds
            keep_scripts: Leave temp scripts on disk after the run
            script_dir: Directory for temp scripts (default: system temp dir)
        """
        self.interpreter = interpreter
        self.runner = runner or ProcessRunner()
        self.echo = echo
        self.cwd = cwd
        self.timeout = timeout
        self.keep_scripts = keep_scripts
        self.script_dir = script_dir

    @classmethod
    def from_config(cls, config: Config, runner: ProcessRunner | None = None) -> ScriptInvoker:
        """Build an R invoker from configuration."""
        return cls(
            InterpreterCommand.r(config.r_path),
            runner,
            echo=config.echo,
            cwd=config.workdir,
            timeout=config.timeout,
            keep_scripts=config.keep_scripts,
        )

    async def run_script(self, script: str) -> CommandResult:
        """Run a script body and return the interpreter's CommandResult.

        Raises:
            ProcessLaunchError: If the interpreter could not be started
            ProcessTimeoutError: If the deadline passed
        """
        script_path = self._write_script(script)
        logger.debug(f"Wrote script {script_path} ({len(script)} chars)")

        try:
            invocation = ProcessInvocation(
                executable=self.interpreter.executable,
                arguments=self.interpreter.argv_for(script_path)[1:],
                cwd=self.cwd if self.cwd is not None else Path.cwd(),
                echo=self.echo,
                timeout=self.timeout,
            )
            return await self.runner.run(invocation)
        finally:
            if not self.keep_scripts:
                _remove_quietly(script_path)

    def run_script_sync(self, script: str) -> CommandResult:
        """Blocking variant of run_script()."""
        return anyio.run(self.run_script, script)

    def _write_script(self, script: str) -> Path:
        fd, name = tempfile.mkstemp(
            suffix=self.interpreter.script_suffix,
            prefix="rscript_",
            dir=self.script_dir,
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(script)
        return Path(name).resolve()


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Could not remove temp file {path}: {e}")
