"""Local process sandbox runtime.

Each environment is a private temporary directory holding the staged source.
The program runs as a child process in its own session (and so its own
process group), with a scrubbed environment and rlimits applied in the child
before exec. On timeout or output flood the whole tree is SIGKILLed.

This runtime provides process separation and resource ceilings, not
filesystem or network isolation. Use the docker runtime for untrusted code in
production.
"""

from __future__ import annotations

import asyncio
import functools
import os
import resource
import shutil
import subprocess
from typing import TYPE_CHECKING

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import ENV_TAG_VARIABLE, MAX_FILE_SIZE_BYTES
from sandbox_judge.exceptions import EnvironmentUnavailableError, SandboxRuntimeUnavailableError
from sandbox_judge.languages import LANGUAGE_RUNTIMES, get_language_runtime
from sandbox_judge.platform_utils import HostOS, ProcessWrapper, detect_host_os
from sandbox_judge.resource_cleanup import cleanup_process
from sandbox_judge.sandbox import ExecutionEnvironment, SandboxRuntime
from sandbox_judge.subprocess_utils import communicate_bounded

if TYPE_CHECKING:
    from pathlib import Path

    from sandbox_judge.models import Language, RunResult

logger = get_logger(__name__)


def _lower_rlimit(limit: int, value: int) -> None:
    _soft, hard = resource.getrlimit(limit)
    if hard != resource.RLIM_INFINITY:
        value = min(value, hard)
    resource.setrlimit(limit, (value, value))


def _apply_rlimits(address_space_bytes: int | None, max_file_bytes: int) -> None:
    """Runs in the child between fork and exec."""
    _lower_rlimit(resource.RLIMIT_CORE, 0)
    _lower_rlimit(resource.RLIMIT_FSIZE, max_file_bytes)
    if address_space_bytes is not None:
        _lower_rlimit(resource.RLIMIT_AS, address_space_bytes)


def _program_env(workdir: Path, env_id: str) -> dict[str, str]:
    """Minimal environment for a judged program. Nothing from the host leaks in but PATH.

    The env_id tag lets teardown find processes that left the process group.
    """
    return {
        ENV_TAG_VARIABLE: env_id,
        "PATH": os.environ.get("PATH", os.defpath),
        "HOME": str(workdir),
        "TMPDIR": str(workdir),
        "LANG": "C.UTF-8",
    }


class ProcessSandboxRuntime(SandboxRuntime):
    """Runs each test case as a fresh local process group."""

    name = "process"

    def __init__(
        self,
        workdir_root: Path | None = None,
        kill_grace_seconds: float = 2.0,
        max_file_bytes: int = MAX_FILE_SIZE_BYTES,
    ) -> None:
        super().__init__(workdir_root=workdir_root, kill_grace_seconds=kill_grace_seconds)
        self._max_file_bytes = max_file_bytes

    async def health_check(self, language: Language | None = None) -> None:
        """Check that the interpreter(s) are installed on the host.

        Raises:
            SandboxRuntimeUnavailableError: Interpreter not found on PATH
        """
        runtimes = [get_language_runtime(language)] if language is not None else list(LANGUAGE_RUNTIMES.values())
        found = {rt.interpreter: shutil.which(rt.interpreter) for rt in runtimes}
        missing = [name for name, path in found.items() if path is None]

        # With no language given, the runtime is usable if any interpreter is
        if missing and (language is not None or len(missing) == len(found)):
            raise SandboxRuntimeUnavailableError(
                f"Interpreter not found: {', '.join(missing)}",
                context={"runtime": self.name, "missing": missing},
            )

    async def _prepare(self, env: ExecutionEnvironment) -> None:
        """Nothing beyond staging: the process is created by run()."""

    def _address_space_limit(self, env: ExecutionEnvironment) -> int | None:
        multiplier = env.language_runtime.address_space_multiplier
        if env.limits.memory_limit_bytes is None or multiplier is None:
            return None
        # macOS does not enforce RLIMIT_AS and rejects some values
        if detect_host_os() != HostOS.LINUX:
            return None
        return env.limits.memory_limit_bytes * multiplier

    async def _execute(self, env: ExecutionEnvironment, stdin: bytes, timeout: float) -> RunResult:
        assert env.workdir is not None
        argv = env.language_runtime.argv(str(env.workdir))
        preexec = functools.partial(
            _apply_rlimits,
            address_space_bytes=self._address_space_limit(env),
            max_file_bytes=self._max_file_bytes,
        )

        try:
            proc = ProcessWrapper(
                await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=env.workdir,
                    env=_program_env(env.workdir, env.env_id),
                    start_new_session=True,  # own process group for tree kill
                    preexec_fn=preexec,
                ),
                env_tag=(ENV_TAG_VARIABLE, env.env_id),
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise EnvironmentUnavailableError(
                f"Failed to start {env.language_runtime.interpreter}: {e}",
                context={"env_id": env.env_id, "runtime": self.name, "argv": argv},
            ) from e

        env.process = proc
        logger.debug("Program started", extra={"env_id": env.env_id, "pid": proc.pid})

        return await communicate_bounded(
            proc,
            stdin=stdin,
            timeout=timeout,
            max_stdout_bytes=env.limits.max_output_bytes,
            max_stderr_bytes=env.limits.max_stderr_bytes,
            kill=proc.kill_tree,
            grace_seconds=self._kill_grace_seconds,
            context_id=env.env_id,
        )

    async def _teardown(self, env: ExecutionEnvironment) -> None:
        await cleanup_process(
            env.process,
            name=env.language_runtime.filename,
            context_id=env.env_id,
            kill_timeout=self._kill_grace_seconds,
        )
