"""Sandbox runtime adapter contract.

A SandboxRuntime wraps one isolation primitive (local process jail, container)
and hands out ExecutionEnvironments: ephemeral, single-use contexts with the
submitted source staged inside.

Lifecycle of one environment:
    provision() -> run() (once) -> destroy()

destroy() must be safe to call on every exit path: after a normal run, after
a timeout, after run() or provision() failed half-way, and more than once.
The environment() context manager guarantees it is called.

Subclasses implement _prepare(), _execute(), _teardown() and health_check();
staging and bookkeeping live here.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar
from uuid import uuid4

import aiofiles
import aiofiles.os

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import WORKDIR_PREFIX
from sandbox_judge.exceptions import EnvironmentUnavailableError
from sandbox_judge.languages import LanguageRuntime, get_language_runtime
from sandbox_judge.resource_cleanup import cleanup_workdir

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sandbox_judge.models import Language, RunResult
    from sandbox_judge.platform_utils import ProcessWrapper

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResourceLimits:
    """Ceilings applied to one environment."""

    time_limit_ms: int
    memory_limit_bytes: int | None
    max_output_bytes: int
    max_stderr_bytes: int
    max_processes: int

    @property
    def time_limit_seconds(self) -> float:
        return self.time_limit_ms / 1000


@dataclass
class ExecutionEnvironment:
    """One ephemeral, single-use sandboxed process context.

    Owned by exactly one test case execution. Never reused.
    """

    env_id: str
    language_runtime: LanguageRuntime
    limits: ResourceLimits
    workdir: Path | None = None
    container_name: str | None = None
    process: ProcessWrapper | None = None
    created_at: float = field(default_factory=time.monotonic)
    ran: bool = False
    destroyed: bool = False

    @property
    def source_path(self) -> Path | None:
        if self.workdir is None:
            return None
        return self.workdir / self.language_runtime.filename


class SandboxRuntime(ABC):
    """Base class for sandbox runtime adapters."""

    name: ClassVar[str]

    def __init__(self, workdir_root: Path | None = None, kill_grace_seconds: float = 2.0) -> None:
        self._workdir_root = workdir_root
        self._kill_grace_seconds = kill_grace_seconds
        self._active: dict[str, ExecutionEnvironment] = {}

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    async def provision(self, code: str, language: Language, limits: ResourceLimits) -> ExecutionEnvironment:
        """Create a fresh environment with the source code staged inside.

        Raises:
            UnsupportedLanguageError: No environment exists for the language
            EnvironmentUnavailableError: The isolation primitive could not be created
        """
        language_runtime = get_language_runtime(language)
        env = ExecutionEnvironment(env_id=uuid4().hex, language_runtime=language_runtime, limits=limits)
        self._active[env.env_id] = env

        try:
            await self._stage(env, code)
            await self._prepare(env)
        except OSError as e:
            await self.destroy(env)
            raise EnvironmentUnavailableError(
                f"Failed to provision {self.name} environment: {e}",
                context={"env_id": env.env_id, "runtime": self.name, "error_type": type(e).__name__},
            ) from e
        except BaseException:
            await self.destroy(env)
            raise

        logger.debug(
            "Environment provisioned",
            extra={"env_id": env.env_id, "runtime": self.name, "language": language_runtime.language.value},
        )
        return env

    async def run(self, env: ExecutionEnvironment, stdin: str, time_limit_ms: int) -> RunResult:
        """Execute the staged program once.

        Program misbehavior (non-zero exit, crash, flood of output, hang) is
        reported in the RunResult, never raised. On timeout the environment's
        entire process tree is killed before returning timed_out=True.

        Raises:
            EnvironmentUnavailableError: The environment is unusable (destroyed,
                already run, or the program could not be started at all)
        """
        if env.destroyed or env.env_id not in self._active:
            raise EnvironmentUnavailableError(
                "Environment already destroyed",
                context={"env_id": env.env_id, "runtime": self.name},
            )
        if env.ran:
            raise EnvironmentUnavailableError(
                "Environment is single-use and has already run",
                context={"env_id": env.env_id, "runtime": self.name},
            )
        env.ran = True
        return await self._execute(env, stdin.encode("utf-8"), time_limit_ms / 1000)

    async def destroy(self, env: ExecutionEnvironment) -> None:
        """Release every resource of the environment. Idempotent, never raises."""
        if env.destroyed:
            return
        env.destroyed = True
        try:
            await self._teardown(env)
        finally:
            await cleanup_workdir(env.workdir, context_id=env.env_id)
            self._active.pop(env.env_id, None)
            logger.debug(
                "Environment destroyed",
                extra={
                    "env_id": env.env_id,
                    "runtime": self.name,
                    "lifetime_ms": int((time.monotonic() - env.created_at) * 1000),
                },
            )

    @asynccontextmanager
    async def environment(
        self,
        code: str,
        language: Language,
        limits: ResourceLimits,
    ) -> AsyncIterator[ExecutionEnvironment]:
        """Provision an environment and destroy it on every exit path."""
        env = await self.provision(code, language, limits)
        try:
            yield env
        finally:
            await self.destroy(env)

    def active_environments(self) -> dict[str, ExecutionEnvironment]:
        """Environments provisioned and not yet destroyed (copy)."""
        return dict(self._active)

    @abstractmethod
    async def health_check(self, language: Language | None = None) -> None:
        """Probe the runtime.

        Raises:
            SandboxRuntimeUnavailableError: The runtime cannot run programs
        """

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _prepare(self, env: ExecutionEnvironment) -> None:
        """Create the isolation primitive for a staged environment."""

    @abstractmethod
    async def _execute(self, env: ExecutionEnvironment, stdin: bytes, timeout: float) -> RunResult:
        """Run the staged program under the deadline."""

    @abstractmethod
    async def _teardown(self, env: ExecutionEnvironment) -> None:
        """Release runtime-specific resources. Must not raise."""

    # -------------------------------------------------------------------------
    # Staging
    # -------------------------------------------------------------------------

    _workdir_mode: ClassVar[int] = 0o700
    _source_mode: ClassVar[int] = 0o600

    async def _stage(self, env: ExecutionEnvironment, code: str) -> None:
        """Create the environment's private workdir and write the source into it."""
        root = self._workdir_root or Path(tempfile.gettempdir())
        workdir = root / f"{WORKDIR_PREFIX}{env.env_id}"
        await aiofiles.os.mkdir(workdir, mode=self._workdir_mode)
        env.workdir = workdir
        # mkdir mode is filtered by umask
        await asyncio.to_thread(os.chmod, workdir, self._workdir_mode)

        source_path = env.source_path
        async with aiofiles.open(source_path, "w", encoding="utf-8") as f:
            await f.write(code)
        await asyncio.to_thread(os.chmod, source_path, self._source_mode)
