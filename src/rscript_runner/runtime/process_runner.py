"""Process runner with concurrent output capture and reliable termination.

rscript-runner runtime module v0.1.0

This module provides:
- Subprocess launch with separate stdout/stderr pipes
- Concurrent draining of both pipes (no backpressure deadlock)
- Deterministic CommandResult assembly after exit and drain
- Optional deadline with graceful shutdown (SIGTERM -> timeout -> SIGKILL)
- Cancel-safe cleanup using asyncio.shield

Key design points:
- One task per pipe, both started before waiting on the process
- The result is built only after the process exited AND both drainers finished
- POSIX: start_new_session=True so termination reaches the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

import anyio

from .drainer import StreamDrainer
from .errors import ProcessLaunchError, ProcessTimeoutError
from .result import CommandResult

__all__ = [
    "ProcessInvocation",
    "ProcessRunner",
    "eval_cmd",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# asyncio.StreamReader buffer limit; longer lines are assembled from several reads
DEFAULT_STREAM_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class ProcessInvocation:
    """A single request to run an executable.

    Attributes:
        executable: Path or name of the program
        arguments: Arguments passed after the executable
        cwd: Working directory for the process
        echo: Mirror captured output live to the console
        redirect_stdout: Optional file receiving a copy of stdout
        redirect_stderr: Optional file receiving a copy of stderr
        env: Environment variables (None = inherit parent)
        timeout: Deadline in seconds (None = wait indefinitely)
    """

    executable: str
    arguments: Sequence[str] = ()
    cwd: Path = field(default_factory=Path.cwd)
    echo: bool = False
    redirect_stdout: Path | None = None
    redirect_stderr: Path | None = None
    env: Mapping[str, str] | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(str(a) for a in self.arguments))
        object.__setattr__(self, "cwd", Path(self.cwd))
        for name in ("redirect_stdout", "redirect_stderr"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.arguments]


@dataclass
class ProcessRunner:
    """Run a child process to completion and capture both output streams.

    Every call owns its process, its two drainers and their buffers, so one
    runner instance can serve concurrent calls.

    Example:
        runner = ProcessRunner()
        result = await runner.run(
            ProcessInvocation("R", ["--vanilla", "-f", "plot.R"])
        )
        if not result.succeeded:
            print(result.stderr_text)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    stdout_sink: TextIO | None = None
    stderr_sink: TextIO | None = None
    stream_limit: int = DEFAULT_STREAM_LIMIT

    async def run(self, invocation: ProcessInvocation) -> CommandResult:
        """Run the invocation and return its CommandResult.

        This method:
        1. Starts the subprocess with separate stdout/stderr pipes
        2. Starts one drainer task per pipe
        3. Waits for the process to exit (bounded by invocation.timeout)
        4. Waits for both drainers to reach end-of-input
        5. Ensures cleanup even if cancelled

        Args:
            invocation: What to run

        Returns:
            CommandResult with the exit status and all captured lines

        Raises:
            ProcessLaunchError: If the process could not be started
            ProcessTimeoutError: If the deadline passed and the process was terminated
        """
        argv = invocation.argv
        kwargs = self._build_subprocess_kwargs(invocation)
        drain_tasks: list[asyncio.Task[None]] = []

        with contextlib.ExitStack() as files:
            stdout_file = _open_redirect(files, invocation.redirect_stdout)
            stderr_file = _open_redirect(files, invocation.redirect_stderr)

            try:
                # stdin=DEVNULL: the child must never read the parent's stdin,
                # which is the JSON-RPC channel when running as an MCP server
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=invocation.cwd,
                    limit=self.stream_limit,
                    **kwargs,
                )
            except OSError as e:
                logger.debug(f"Launch failed argv={argv[0]} cwd={invocation.cwd}: {e}")
                raise ProcessLaunchError(argv, e) from e

            logger.debug(
                f"Started subprocess pid={process.pid} "
                f"argv={argv[0]} cwd={invocation.cwd}"
            )

            stdout_drainer = StreamDrainer(
                process.stdout,
                name="stdout",
                echo_sink=self._echo_sink(invocation, self.stdout_sink, sys.stdout),
                redirect_sink=stdout_file,
            )
            stderr_drainer = StreamDrainer(
                process.stderr,
                name="stderr",
                echo_sink=self._echo_sink(invocation, self.stderr_sink, sys.stderr),
                redirect_sink=stderr_file,
            )

            try:
                drain_tasks = [
                    asyncio.create_task(stdout_drainer.run(), name=f"drain-stdout-{process.pid}"),
                    asyncio.create_task(stderr_drainer.run(), name=f"drain-stderr-{process.pid}"),
                ]

                exit_code = await self._wait_for_exit(process, invocation)

                # Pipes close when the child exits; drainers finish at EOF
                await asyncio.gather(*drain_tasks)

            finally:
                await self._safe_cleanup(process, drain_tasks)

        logger.debug(
            f"Subprocess completed pid={process.pid} returncode={exit_code} "
            f"stdout_lines={len(stdout_drainer.lines)} "
            f"stderr_lines={len(stderr_drainer.lines)}"
        )

        return CommandResult(
            exit_code=exit_code,
            stdout=stdout_drainer.lines,
            stderr=stderr_drainer.lines,
        )

    def run_sync(self, invocation: ProcessInvocation) -> CommandResult:
        """Blocking variant of run() for callers without an event loop."""
        return anyio.run(self.run, invocation)

    async def _wait_for_exit(
        self,
        process: asyncio.subprocess.Process,
        invocation: ProcessInvocation,
    ) -> int:
        """Wait for the process, enforcing the invocation's deadline.

        Raises:
            ProcessTimeoutError: If the deadline passed
        """
        if invocation.timeout is None:
            return await process.wait()

        try:
            return await asyncio.wait_for(process.wait(), timeout=invocation.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Subprocess pid={process.pid} exceeded {invocation.timeout}s, terminating"
            )
            await self._terminate_process(process)
            raise ProcessTimeoutError(invocation.argv, invocation.timeout) from None

    def _echo_sink(
        self,
        invocation: ProcessInvocation,
        configured: TextIO | None,
        default: TextIO,
    ) -> TextIO | None:
        if not invocation.echo:
            return None
        return configured if configured is not None else default

    def _build_subprocess_kwargs(self, invocation: ProcessInvocation) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            invocation: Process invocation

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        # Environment
        if invocation.env is not None:
            kwargs["env"] = dict(invocation.env)

        # Platform-specific isolation
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _safe_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_tasks: list[asyncio.Task[None]],
    ) -> None:
        """Cleanup shielded from cancellation of the calling task.

        Args:
            process: The subprocess to terminate if still running
            drain_tasks: Drainer tasks to cancel if still running
        """
        try:
            await asyncio.shield(self._do_cleanup(process, drain_tasks))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_cleanup(process, drain_tasks)
            raise

    async def _do_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_tasks: list[asyncio.Task[None]],
    ) -> None:
        """Perform actual cleanup.

        Args:
            process: The subprocess to terminate
            drain_tasks: The drainer tasks
        """
        # Terminate first so drainers can see EOF
        if process.returncode is None:
            await self._terminate_process(process)

        for task in drain_tasks:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _terminate_process(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        Args:
            process: The subprocess to terminate
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                await self._windows_terminate(process)
            else:
                await self._posix_terminate(process)

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
                await self._windows_kill(process)
            else:
                await self._posix_kill(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def _posix_terminate(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Send SIGTERM to the process group on POSIX systems."""
        try:
            # Process group ID equals pid because of start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    async def _posix_kill(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    async def _windows_terminate(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    async def _windows_kill(
        self,
        process: asyncio.subprocess.Process,
    ) -> None:
        """Force kill on Windows."""
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass


def _open_redirect(files: contextlib.ExitStack, path: Path | None) -> TextIO | None:
    if path is None:
        return None
    return files.enter_context(open(path, "w", encoding="utf-8"))


# Convenience function for simple use cases
def eval_cmd(
    executable: str,
    args: Sequence[str] = (),
    *,
    show_output: bool = False,
    redirect_stdout: Path | None = None,
    redirect_stderr: Path | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command synchronously and return its CommandResult.

    Args:
        executable: Program to run
        args: Arguments after the executable
        show_output: Echo stdout/stderr to the console while capturing
        redirect_stdout: Optional file receiving a copy of stdout
        redirect_stderr: Optional file receiving a copy of stderr
        cwd: Working directory (default: current directory)
        timeout: Deadline in seconds

    Raises:
        ProcessLaunchError: If the process could not be started
        ProcessTimeoutError: If the deadline passed
    """
    invocation = ProcessInvocation(
        executable=executable,
        arguments=args,
        cwd=cwd if cwd is not None else Path.cwd(),
        echo=show_output,
        redirect_stdout=redirect_stdout,
        redirect_stderr=redirect_stderr,
        timeout=timeout,
    )
    return ProcessRunner().run_sync(invocation)
