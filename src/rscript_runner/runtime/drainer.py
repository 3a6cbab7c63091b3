"""Line-oriented draining of a child process output stream.

rscript-runner runtime module v0.1.0

A child's stdout and stderr are independent pipes with bounded OS buffers.
If the parent reads only one of them (or only waits for exit) while the child
fills the other, both sides block forever. ProcessRunner therefore runs one
StreamDrainer per pipe as its own task, concurrently with the process wait.

Read failures are recorded on the drainer and logged, never raised: capture is
best-effort, the exit status is what callers act on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TextIO

from .errors import DrainerNotFinishedError, StreamReadError

__all__ = ["StreamDrainer"]

logger = logging.getLogger(__name__)

# Chunk size used to discard output after a read failure
_DISCARD_CHUNK_SIZE = 65536


class StreamDrainer:
    """Read one stream to end-of-input, keeping every line.

    Example:
        drainer = StreamDrainer(process.stdout, name="stdout", echo_sink=sys.stdout)
        task = asyncio.create_task(drainer.run())
        ...
        await task
        lines = drainer.lines
    """

    def __init__(
        self,
        stream: asyncio.StreamReader,
        *,
        name: str,
        echo_sink: TextIO | None = None,
        redirect_sink: TextIO | None = None,
        encoding: str = "utf-8",
    ) -> None:
        """Create a drainer.

        Args:
            stream: Pipe reader of the child process
            name: Stream label used in logs and errors ("stdout"/"stderr")
            echo_sink: Optional live mirror (e.g. sys.stdout)
            redirect_sink: Optional file receiving a copy of every line
            encoding: Text encoding of the child's output
        """
        self.name = name
        self.error: StreamReadError | None = None
        self._stream = stream
        self._echo_sink = echo_sink
        self._redirect_sink = redirect_sink
        self._encoding = encoding
        self._lines: list[str] = []
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def lines(self) -> tuple[str, ...]:
        """Captured lines. Only valid once run() has completed."""
        self._require_done()
        return tuple(self._lines)

    @property
    def text(self) -> str:
        """Captured output with a newline after every line."""
        self._require_done()
        return "".join(f"{line}\n" for line in self._lines)

    async def run(self) -> None:
        """Consume the stream until end-of-input.

        Lines longer than the stream's buffer limit are assembled from
        several reads. Returns normally on EOF and on read failures.
        Cancellation propagates.
        """
        try:
            while True:
                raw = await self._read_line()
                if raw is None:
                    break
                self._append(_strip_line_ending(raw.decode(self._encoding, errors="replace")))
        except OSError as e:
            self.error = StreamReadError(self.name, e)
            logger.warning(f"Stopped capturing {self.name} after {len(self._lines)} lines: {e}")
            await self._discard_remaining()
        finally:
            self._done = True

    async def _read_line(self) -> bytes | None:
        """Next line including its terminator, or None at end-of-input."""
        pending = bytearray()
        while True:
            try:
                chunk = await self._stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; a final line without newline still counts
                pending += e.partial
                return bytes(pending) if pending else None
            except asyncio.LimitOverrunError as e:
                # Line longer than the buffer limit: take what is buffered, keep going
                pending += await self._stream.read(max(e.consumed, 1))
                continue
            pending += chunk
            return bytes(pending)

    def _append(self, line: str) -> None:
        self._lines.append(line)

        if self._echo_sink is not None:
            try:
                self._echo_sink.write(line + "\n")
                self._echo_sink.flush()
            except (OSError, ValueError) as e:
                logger.debug(f"Echo of {self.name} disabled: {e}")
                self._echo_sink = None

        if self._redirect_sink is not None:
            try:
                self._redirect_sink.write(line + "\n")
            except (OSError, ValueError) as e:
                logger.warning(f"Redirect of {self.name} disabled: {e}")
                self._redirect_sink = None

    async def _discard_remaining(self) -> None:
        """Keep the pipe flowing so the child cannot block on a full buffer."""
        try:
            while await self._stream.read(_DISCARD_CHUNK_SIZE):
                pass
        except (OSError, ValueError) as e:
            logger.debug(f"Discarding {self.name} failed: {e}")

    def _require_done(self) -> None:
        if not self._done:
            raise DrainerNotFinishedError(
                f"{self.name} drainer is still running; join it before reading output"
            )


def _strip_line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n") or line.endswith("\r"):
        return line[:-1]
    return line
