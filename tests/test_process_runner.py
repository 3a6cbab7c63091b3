"""ProcessRunner unit tests.

Test coverage:
- Exit code fidelity
- Stream separation and line splitting
- No deadlock when both pipes overflow their OS buffers
- Echo and redirect sinks
- Launch failures
- Deadline / termination
- ProcessInvocation dataclass
"""

from __future__ import annotations

import asyncio
import io
import os
import sys
from pathlib import Path

import pytest

from rscript_runner.runtime import (
    CommandResult,
    ProcessInvocation,
    ProcessLaunchError,
    ProcessRunner,
    ProcessTimeoutError,
    eval_cmd,
)
from rscript_runner.runtime.process_runner import IS_WINDOWS

from conftest import EMITTER


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runner() -> ProcessRunner:
    """Create ProcessRunner instance with short timeouts for testing."""
    return ProcessRunner(term_timeout=0.5, kill_timeout=0.3)


def emit(*args: str, cwd: Path, **kwargs) -> ProcessInvocation:
    """Invocation of the emitter fixture."""
    return ProcessInvocation(
        executable=sys.executable,
        arguments=[str(EMITTER), *args],
        cwd=cwd,
        **kwargs,
    )


# =============================================================================
# Basic Execution Tests
# =============================================================================


class TestBasicExecution:
    """Test basic process execution."""

    @pytest.mark.asyncio
    async def test_two_lines_exit_zero(self, temp_workspace: Path, runner: ProcessRunner):
        """Two stdout lines, exit 0, nothing on stderr."""
        result = await runner.run(
            emit("--stdout", "line1", "--stdout", "line2", cwd=temp_workspace)
        )

        assert result == CommandResult(exit_code=0, stdout=("line1", "line2"), stderr=())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [0, 1, 2, 3, 42, 255])
    async def test_exit_code_fidelity(
        self, temp_workspace: Path, runner: ProcessRunner, code: int
    ):
        """Exit status is reported unchanged."""
        result = await runner.run(emit("--exit-code", str(code), cwd=temp_workspace))

        assert result.exit_code == code
        assert result.succeeded is (code == 0)

    @pytest.mark.asyncio
    async def test_stderr_and_nonzero_exit(self, temp_workspace: Path, runner: ProcessRunner):
        """stderr message with exit 2 is a result, not an exception."""
        result = await runner.run(
            emit("--stderr", "something went wrong", "--exit-code", "2", cwd=temp_workspace)
        )

        assert result.exit_code == 2
        assert result.stdout == ()
        assert result.stderr == ("something went wrong",)

    @pytest.mark.asyncio
    async def test_empty_output(self, temp_workspace: Path, runner: ProcessRunner):
        """Process with no output yields empty sequences."""
        result = await runner.run(emit(cwd=temp_workspace))

        assert result.stdout == ()
        assert result.stderr == ()
        assert result.stdout_text == ""

    @pytest.mark.asyncio
    async def test_final_line_without_newline(self, temp_workspace: Path, runner: ProcessRunner):
        """A last line without a terminator is still captured."""
        result = await runner.run(
            emit("--stdout", "a", "--stdout", "b", "--no-trailing-newline", cwd=temp_workspace)
        )

        assert result.stdout == ("a", "b")

    @pytest.mark.asyncio
    async def test_blank_lines_preserved(self, temp_workspace: Path, runner: ProcessRunner):
        """Empty lines in the middle of output are kept."""
        result = await runner.run(
            emit("--stdout", "a", "--stdout", "", "--stdout", "b", cwd=temp_workspace)
        )

        assert result.stdout == ("a", "", "b")

    @pytest.mark.asyncio
    async def test_working_directory(self, temp_workspace: Path, runner: ProcessRunner):
        """Working directory is passed to the child."""
        result = await runner.run(emit("--print-cwd", cwd=temp_workspace))

        assert Path(result.stdout[0]).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_custom_environment(self, temp_workspace: Path, runner: ProcessRunner):
        """Custom environment replaces the inherited one."""
        env = os.environ.copy()
        env["RSCRIPT_TEST_VAR"] = "test_value_123"

        result = await runner.run(
            emit("--print-env", "RSCRIPT_TEST_VAR", cwd=temp_workspace, env=env)
        )

        assert result.stdout == ("test_value_123",)

    def test_run_sync(self, temp_workspace: Path, runner: ProcessRunner):
        """Blocking bridge returns the same result."""
        result = runner.run_sync(emit("--stdout", "sync", cwd=temp_workspace))

        assert result.stdout == ("sync",)


# =============================================================================
# Stream Separation Tests
# =============================================================================


class TestStreamSeparation:
    """stdout and stderr are never mixed."""

    @pytest.mark.asyncio
    async def test_streams_kept_apart(self, temp_workspace: Path, runner: ProcessRunner):
        result = await runner.run(
            emit(
                "--stdout", "out-1", "--stdout", "out-2",
                "--stderr", "err-1", "--stderr", "err-2",
                cwd=temp_workspace,
            )
        )

        assert result.stdout == ("out-1", "out-2")
        assert result.stderr == ("err-1", "err-2")

    @pytest.mark.asyncio
    async def test_undecodable_bytes_replaced(self, temp_workspace: Path, runner: ProcessRunner):
        """Invalid UTF-8 does not abort capture."""
        result = await runner.run(
            ProcessInvocation(
                executable=sys.executable,
                arguments=["-c", "import sys; sys.stdout.buffer.write(b'ok\\xff\\n')"],
                cwd=temp_workspace,
            )
        )

        assert result.stdout == ("ok\ufffd",)


# =============================================================================
# Backpressure Tests
# =============================================================================


class TestBackpressure:
    """Large output on both pipes must not deadlock."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_both_streams_overflow_pipe_buffers(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        """Over 64 KiB on each stream, written without any reads in between."""
        size = 512 * 1024
        expected_lines = -(-size // 99)

        result = await runner.run(
            emit(
                "--stdout-bytes", str(size),
                "--stderr-bytes", str(size),
                cwd=temp_workspace,
            )
        )

        assert result.exit_code == 0
        assert len(result.stdout) == expected_lines
        assert len(result.stderr) == expected_lines
        assert result.stdout[0].startswith("out00000000")
        assert result.stdout[-1].startswith(f"out{expected_lines - 1:08d}")
        assert result.stderr[-1].startswith(f"err{expected_lines - 1:08d}")
        assert sum(len(line) + 1 for line in result.stdout) == expected_lines * 99

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_only_stderr_overflows(self, temp_workspace: Path, runner: ProcessRunner):
        """A chatty stderr with a quiet stdout still completes."""
        result = await runner.run(
            emit("--stderr-bytes", str(256 * 1024), "--stdout", "done", cwd=temp_workspace)
        )

        assert result.stdout == ("done",)
        assert len(result.stderr) == -(-(256 * 1024) // 99)

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_line_longer_than_stream_limit(self, temp_workspace: Path, runner: ProcessRunner):
        """A 2 MiB line is captured whole, followed by the lines after it."""
        size = 2 * 1024 * 1024
        result = await runner.run(
            ProcessInvocation(
                executable=sys.executable,
                arguments=[
                    "-c",
                    f"import sys; sys.stdout.write('a' * {size} + '\\n' + 'after\\n')",
                ],
                cwd=temp_workspace,
            )
        )

        assert result.exit_code == 0
        assert len(result.stdout) == 2
        assert result.stdout[0] == "a" * size
        assert result.stdout[1] == "after"

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_small_stream_limit(self, temp_workspace: Path):
        """Lines several times the buffer limit are still assembled in order."""
        runner = ProcessRunner(term_timeout=0.5, kill_timeout=0.3, stream_limit=1024)

        result = await runner.run(
            emit("--stdout", "x" * 5000, "--stdout", "tail", "--stderr", "e" * 3000, cwd=temp_workspace)
        )

        assert result.stdout == ("x" * 5000, "tail")
        assert result.stderr == ("e" * 3000,)


# =============================================================================
# Echo and Redirect Tests
# =============================================================================


class TestEchoAndRedirect:
    """Live mirroring and file copies of captured output."""

    @pytest.mark.asyncio
    async def test_echo_matches_captured_stdout(self, temp_workspace: Path):
        out_sink = io.StringIO()
        err_sink = io.StringIO()
        runner = ProcessRunner(stdout_sink=out_sink, stderr_sink=err_sink)

        result = await runner.run(
            emit(
                "--stdout", "first", "--stdout", "second", "--stdout", "third",
                cwd=temp_workspace,
                echo=True,
            )
        )

        assert out_sink.getvalue().splitlines() == list(result.stdout)
        assert err_sink.getvalue() == ""

    @pytest.mark.asyncio
    async def test_no_echo_by_default(self, temp_workspace: Path):
        out_sink = io.StringIO()
        runner = ProcessRunner(stdout_sink=out_sink)

        result = await runner.run(emit("--stdout", "quiet", cwd=temp_workspace))

        assert result.stdout == ("quiet",)
        assert out_sink.getvalue() == ""

    @pytest.mark.asyncio
    async def test_echo_stderr_goes_to_stderr_sink(self, temp_workspace: Path):
        out_sink = io.StringIO()
        err_sink = io.StringIO()
        runner = ProcessRunner(stdout_sink=out_sink, stderr_sink=err_sink)

        await runner.run(emit("--stderr", "warn", cwd=temp_workspace, echo=True))

        assert out_sink.getvalue() == ""
        assert err_sink.getvalue() == "warn\n"

    @pytest.mark.asyncio
    async def test_closed_echo_sink_does_not_stop_capture(self, temp_workspace: Path):
        sink = io.StringIO()
        sink.close()
        runner = ProcessRunner(stdout_sink=sink)

        result = await runner.run(
            emit("--stdout", "a", "--stdout", "b", cwd=temp_workspace, echo=True)
        )

        assert result.stdout == ("a", "b")

    @pytest.mark.asyncio
    async def test_redirect_files_receive_copies(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        out_file = temp_workspace / "out.log"
        err_file = temp_workspace / "err.log"

        result = await runner.run(
            emit(
                "--stdout", "o1", "--stderr", "e1",
                cwd=temp_workspace,
                redirect_stdout=out_file,
                redirect_stderr=err_file,
            )
        )

        assert result.stdout == ("o1",)
        assert out_file.read_text(encoding="utf-8") == "o1\n"
        assert err_file.read_text(encoding="utf-8") == "e1\n"


# =============================================================================
# Launch Failure Tests
# =============================================================================


class TestLaunchFailure:
    """Spawn errors short-circuit with ProcessLaunchError."""

    @pytest.mark.asyncio
    async def test_nonexistent_executable(self, temp_workspace: Path, runner: ProcessRunner):
        invocation = ProcessInvocation(
            executable=str(temp_workspace / "no-such-interpreter"),
            cwd=temp_workspace,
        )

        with pytest.raises(ProcessLaunchError) as exc_info:
            await runner.run(invocation)

        assert isinstance(exc_info.value.cause, OSError)
        assert exc_info.value.argv == invocation.argv

    @pytest.mark.asyncio
    async def test_nonexistent_working_directory(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        invocation = emit(cwd=temp_workspace / "missing")

        with pytest.raises(ProcessLaunchError):
            await runner.run(invocation)

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX permission bits")
    async def test_not_executable(self, temp_workspace: Path, runner: ProcessRunner):
        script = temp_workspace / "plain.txt"
        script.write_text("not a program")
        script.chmod(0o644)

        with pytest.raises(ProcessLaunchError):
            await runner.run(ProcessInvocation(executable=str(script), cwd=temp_workspace))

    def test_eval_cmd_nonexistent(self, temp_workspace: Path):
        with pytest.raises(ProcessLaunchError):
            eval_cmd("nonexistent_command_xyz_123", ["--help"], cwd=temp_workspace)


# =============================================================================
# Deadline Tests
# =============================================================================


class TestDeadline:
    """Optional timeout terminates the child."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timeout_terminates_process(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        invocation = emit("--stdout", "started", "--sleep", "30", cwd=temp_workspace, timeout=0.5)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(ProcessTimeoutError) as exc_info:
            await runner.run(invocation)

        assert exc_info.value.timeout == 0.5
        assert loop.time() - started < 10

    @pytest.mark.asyncio
    async def test_fast_process_within_deadline(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        result = await runner.run(emit("--stdout", "quick", cwd=temp_workspace, timeout=30))

        assert result.stdout == ("quick",)

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_cancellation_terminates_process(
        self, temp_workspace: Path, runner: ProcessRunner
    ):
        """Cancelling the awaiting task raises CancelledError and cleans up."""
        task = asyncio.create_task(runner.run(emit("--sleep", "30", cwd=temp_workspace)))

        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


# =============================================================================
# Concurrency Tests
# =============================================================================


class TestConcurrentCalls:
    """Each call owns its process and buffers."""

    @pytest.mark.asyncio
    async def test_parallel_runs_do_not_mix(self, temp_workspace: Path, runner: ProcessRunner):
        invocations = [
            emit("--stdout", f"run-{i}", "--stderr", f"err-{i}", "--exit-code", str(i), cwd=temp_workspace)
            for i in range(5)
        ]

        results = await asyncio.gather(*(runner.run(inv) for inv in invocations))

        for i, result in enumerate(results):
            assert result.exit_code == i
            assert result.stdout == (f"run-{i}",)
            assert result.stderr == (f"err-{i}",)


# =============================================================================
# ProcessInvocation Tests
# =============================================================================


class TestProcessInvocation:
    """Test ProcessInvocation dataclass."""

    def test_frozen(self, temp_workspace: Path):
        invocation = ProcessInvocation(executable="R", cwd=temp_workspace)

        with pytest.raises(AttributeError):
            invocation.executable = "other"  # type: ignore

    def test_default_values(self):
        invocation = ProcessInvocation(executable="R")

        assert invocation.arguments == ()
        assert invocation.cwd == Path.cwd()
        assert invocation.echo is False
        assert invocation.redirect_stdout is None
        assert invocation.redirect_stderr is None
        assert invocation.env is None
        assert invocation.timeout is None

    def test_coercion(self):
        invocation = ProcessInvocation(
            executable="R",
            arguments=["-f", Path("x.R")],  # type: ignore[list-item]
            cwd="/tmp",  # type: ignore[arg-type]
            redirect_stdout="out.txt",  # type: ignore[arg-type]
        )

        assert invocation.arguments == ("-f", "x.R")
        assert invocation.cwd == Path("/tmp")
        assert invocation.redirect_stdout == Path("out.txt")

    def test_argv(self):
        invocation = ProcessInvocation(executable="R", arguments=["--vanilla", "-f", "a.R"])

        assert invocation.argv == ["R", "--vanilla", "-f", "a.R"]
