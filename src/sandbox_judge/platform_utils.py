"""Cross-platform OS detection and process management utilities.

Uses psutil's built-in OS detection constants for platform identification.
Provides a PID-reuse safe process wrapper that can kill a whole process tree.
"""

import asyncio
import contextlib
import os
import signal
from enum import Enum, auto
from functools import cache

import psutil

from sandbox_judge.constants import EXIT_POLL_INTERVAL_SECONDS


class HostOS(Enum):
    """Supported host operating systems."""

    LINUX = auto()
    """Linux (production environment)."""

    MACOS = auto()
    """macOS (development environment)."""

    UNKNOWN = auto()
    """Unsupported or unrecognized OS."""


@cache
def detect_host_os() -> HostOS:
    """Detect current host operating system using psutil constants."""
    if psutil.LINUX:
        return HostOS.LINUX
    if psutil.MACOS:
        return HostOS.MACOS
    return HostOS.UNKNOWN


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process for safer PID
    monitoring. Programs are started with start_new_session=True, so the
    process group id equals the pid and kill_tree() can signal the group.

    env_tag is a (variable, value) pair set in the program's environment.
    Every process inheriting it is treated as part of the tree, even after
    the leader is gone or the process moved to another session.
    """

    def __init__(
        self,
        async_proc: asyncio.subprocess.Process,
        env_tag: tuple[str, str] | None = None,
    ) -> None:
        self.async_proc = async_proc
        self.env_tag = env_tag
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                # Process already died or inaccessible
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe)."""
        if not self.psutil_proc:
            return self.async_proc.returncode is None

        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    @property
    def stdin(self):
        """Process stdin stream."""
        return self.async_proc.stdin

    @property
    def stdout(self):
        """Process stdout stream."""
        return self.async_proc.stdout

    @property
    def stderr(self):
        """Process stderr stream."""
        return self.async_proc.stderr

    async def wait(self) -> int:
        """Wait for process to complete and its pipes to close."""
        return await self.async_proc.wait()

    async def wait_exited(self, poll_interval: float = EXIT_POLL_INTERVAL_SECONDS) -> int:
        """Wait for the process itself to exit.

        Unlike wait(), does not also wait for stdout/stderr to close, which
        a surviving background descendant can hold open indefinitely.
        """
        while self.async_proc.returncode is None:
            await asyncio.sleep(poll_interval)
        return self.async_proc.returncode

    async def kill(self) -> None:
        """Kill the direct child only (SIGKILL)."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        elif self.async_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.async_proc.kill()

    async def descendants(self) -> list[psutil.Process]:
        """Snapshot all descendants of the process (recursive) plus tagged processes."""
        children: list[psutil.Process] = []
        if self.psutil_proc:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                children = await asyncio.to_thread(self.psutil_proc.children, recursive=True)
        if self.env_tag is None:
            return children

        tagged = await asyncio.to_thread(find_tagged_processes, *self.env_tag)
        seen = {p.pid for p in children}
        if self.pid is not None:
            seen.add(self.pid)
        return children + [p for p in tagged if p.pid not in seen]

    async def kill_tree(self) -> None:
        """SIGKILL the process, its process group and every descendant.

        Descendants are snapshotted first: once the leader dies they are
        reparented and can no longer be found through it. Processes that left
        the group with setsid() are still reached through the snapshot, or
        through env_tag when the leader had already exited.
        """
        children = await self.descendants()

        if self.pid is not None:
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(self.pid, signal.SIGKILL)

        await self.kill()

        for child in children:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(child.kill)

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for process exit with a timeout.

        Raises:
            TimeoutError: If process doesn't exit within timeout
        """
        async with asyncio.timeout(timeout):
            await self.wait_exited()
        return self.returncode  # type: ignore[return-value]


async def wait_for_processes_gone(processes: list[psutil.Process], timeout: float) -> list[psutil.Process]:
    """Wait until the given processes are gone.

    Returns:
        Processes still alive after timeout (empty on success)
    """
    if not processes:
        return []
    _gone, alive = await asyncio.to_thread(psutil.wait_procs, processes, timeout=timeout)
    return alive


def find_tagged_processes(variable: str, value: str) -> list[psutil.Process]:
    """Find processes whose initial environment has variable=value.

    Processes of other users (environ not readable) are skipped.
    """
    own_pid = os.getpid()
    matches = []
    for proc in psutil.process_iter(["environ"]):
        environ = proc.info["environ"]
        if proc.pid != own_pid and environ and environ.get(variable) == value:
            matches.append(proc)
    return matches
