"""Subprocess lifecycle utilities.

- communicate_bounded: feed stdin, drain stdout/stderr concurrently with byte
  ceilings, enforce a wall-clock deadline, kill on timeout or output flood
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import OUTPUT_READ_CHUNK_BYTES
from sandbox_judge.models import RunResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sandbox_judge.platform_utils import ProcessWrapper

logger = get_logger(__name__)


class BoundedBuffer:
    """Byte accumulator that keeps at most `limit` bytes.

    Everything past the limit is discarded (the pipe keeps being drained so
    the writer never blocks). on_overflow fires once, on the first byte over.
    """

    def __init__(self, limit: int, on_overflow: Callable[[], None] | None = None) -> None:
        self._limit = limit
        self._on_overflow = on_overflow
        self._data = bytearray()
        self.overflowed = False

    def feed(self, chunk: bytes) -> None:
        room = self._limit - len(self._data)
        if len(chunk) <= room:
            self._data += chunk
            return
        self._data += chunk[:room]
        if not self.overflowed:
            self.overflowed = True
            if self._on_overflow is not None:
                self._on_overflow()

    def getvalue(self) -> bytes:
        return bytes(self._data)

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


async def _pump(stream: asyncio.StreamReader | None, buffer: BoundedBuffer) -> None:
    """Read stream until EOF into buffer."""
    if stream is None:
        return
    while chunk := await stream.read(OUTPUT_READ_CHUNK_BYTES):
        buffer.feed(chunk)


async def _feed_stdin(stream: asyncio.StreamWriter | None, data: bytes, context_id: str) -> None:
    """Write data to the program's stdin, then close it.

    A program that exits without reading its input is normal, not a fault.
    """
    if stream is None:
        return
    try:
        if data:
            stream.write(data)
            await stream.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Program closed stdin before reading all input", extra={"context_id": context_id})
    finally:
        stream.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stream.wait_closed()


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def communicate_bounded(
    process: ProcessWrapper,
    *,
    stdin: bytes,
    timeout: float,
    max_stdout_bytes: int,
    max_stderr_bytes: int,
    kill: Callable[[], Awaitable[None]],
    grace_seconds: float,
    context_id: str,
) -> RunResult:
    """Run a started process to completion under a deadline.

    Feeds stdin and drains stdout/stderr concurrently (prevents pipe
    deadlock). Stops at the first of: process exit, stdout ceiling exceeded,
    deadline reached. In the latter two cases `kill` is awaited; it must take
    down the whole process tree so that the output pipes reach EOF.

    Never raises for the program's own behavior.

    Args:
        process: Started process with stdin/stdout/stderr pipes
        stdin: Bytes to feed on standard input
        timeout: Wall-clock limit in seconds
        max_stdout_bytes: stdout ceiling; exceeding it kills the program
        max_stderr_bytes: stderr ceiling; excess is discarded
        kill: Coroutine function that kills the process tree
        grace_seconds: Bound on reaping and on draining pipes after exit/kill
        context_id: Context for logging (env_id)

    Returns:
        RunResult with captured output, exit code and flags
    """
    loop = asyncio.get_running_loop()
    overflow = asyncio.Event()
    stdout_buf = BoundedBuffer(max_stdout_bytes, on_overflow=overflow.set)
    stderr_buf = BoundedBuffer(max_stderr_bytes)

    started = loop.time()
    readers = [
        asyncio.create_task(_pump(process.stdout, stdout_buf)),
        asyncio.create_task(_pump(process.stderr, stderr_buf)),
    ]
    writer = asyncio.create_task(_feed_stdin(process.stdin, stdin, context_id))
    # Not process.wait(): it also waits for every pipe to close
    exit_task = asyncio.create_task(process.wait_exited())
    overflow_task = asyncio.create_task(overflow.wait())

    timed_out = False
    try:
        done, _ = await asyncio.wait(
            {exit_task, overflow_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        duration_ms = int((loop.time() - started) * 1000)

        if exit_task not in done:
            if overflow.is_set():
                logger.debug("Output ceiling exceeded, killing process tree", extra={"context_id": context_id})
            else:
                timed_out = True
                logger.debug("Time limit exceeded, killing process tree", extra={"context_id": context_id})
            await kill()
            await asyncio.wait({exit_task}, timeout=grace_seconds)

        # Pipes close once every process holding them is gone. A background
        # descendant that outlives the program keeps them open: kill it.
        _, pending = await asyncio.wait(readers, timeout=grace_seconds)
        if pending:
            logger.debug("Output pipes still open after exit, killing process tree", extra={"context_id": context_id})
            await kill()
            await asyncio.wait(readers, timeout=grace_seconds)
    finally:
        await _cancel_all([*readers, writer, exit_task, overflow_task])

    return RunResult(
        stdout=stdout_buf.text(),
        stderr=stderr_buf.text(),
        exit_code=process.returncode,
        timed_out=timed_out,
        output_limit_exceeded=stdout_buf.overflowed,
        duration_ms=duration_ms,
    )
