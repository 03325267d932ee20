"""Docker sandbox runtime.

One container per test case:
    provision: stage source in a private workdir, `docker create` a container
               with the workdir mounted read-only, no network, memory/pids caps
    run:       `docker start --attach --interactive`, stdin piped through
    timeout:   `docker kill` (every process in the container's PID namespace
               dies, so no orphan survives), then the CLI process
    destroy:   `docker rm --force` + workdir removal

Container exit codes follow the shell convention (128 + signal for a
signal-killed program, 137 for OOM kill) and are reported unchanged.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, ClassVar

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import DOCKER_CONTAINER_PREFIX, DOCKER_WORKDIR, HEALTH_CHECK_TIMEOUT_SECONDS
from sandbox_judge.exceptions import EnvironmentUnavailableError, SandboxRuntimeUnavailableError
from sandbox_judge.platform_utils import ProcessWrapper
from sandbox_judge.resource_cleanup import cleanup_container, cleanup_process
from sandbox_judge.sandbox import ExecutionEnvironment, SandboxRuntime
from sandbox_judge.subprocess_utils import communicate_bounded

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from sandbox_judge.models import Language, RunResult

logger = get_logger(__name__)

# Unprivileged uid/gid inside the container (nobody)
_CONTAINER_USER = "65534:65534"
_TMPFS_SPEC = "/tmp:rw,noexec,nosuid,size=16m"

# stderr of a failed `docker start` that came from the CLI or daemon, not the program
_DAEMON_ERROR_MARKERS = (
    "Cannot connect to the Docker daemon",
    "Error response from daemon",
    "error during connect",
)


def is_daemon_failure(result: RunResult) -> bool:
    """Whether a `docker start --attach` result is a docker failure rather than a program exit."""
    if result.timed_out or result.exit_code in (0, None) or result.stdout:
        return False
    return any(marker in result.stderr for marker in _DAEMON_ERROR_MARKERS)


class DockerSandboxRuntime(SandboxRuntime):
    """Runs each test case in a fresh, network-less container."""

    name = "docker"

    # The container user must be able to read the staged source
    _workdir_mode: ClassVar[int] = 0o755
    _source_mode: ClassVar[int] = 0o644

    def __init__(
        self,
        docker_binary: str = "docker",
        images: Mapping[Language, str] | None = None,
        workdir_root: Path | None = None,
        kill_grace_seconds: float = 2.0,
        command_timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(workdir_root=workdir_root, kill_grace_seconds=kill_grace_seconds)
        self._docker = docker_binary
        self._images = dict(images or {})
        self._command_timeout = command_timeout_seconds

    def image_for(self, env: ExecutionEnvironment) -> str:
        return self._images.get(env.language_runtime.language, env.language_runtime.image)

    def create_args(self, env: ExecutionEnvironment) -> list[str]:
        """Arguments of the `docker create` call for an environment."""
        assert env.workdir is not None and env.container_name is not None
        limits = env.limits
        args = [
            self._docker,
            "create",
            "--name",
            env.container_name,
            "--interactive",
            "--network",
            "none",
            "--read-only",
            "--tmpfs",
            _TMPFS_SPEC,
            "--cap-drop",
            "ALL",
            "--security-opt",
            "no-new-privileges",
            "--user",
            _CONTAINER_USER,
            "--pids-limit",
            str(limits.max_processes),
            "--ulimit",
            "core=0",
            "--volume",
            f"{env.workdir}:{DOCKER_WORKDIR}:ro",
            "--workdir",
            DOCKER_WORKDIR,
            "--label",
            f"sandbox-judge.env-id={env.env_id}",
        ]
        if limits.memory_limit_bytes is not None:
            # Equal memory and memory-swap: no swap
            args += ["--memory", str(limits.memory_limit_bytes), "--memory-swap", str(limits.memory_limit_bytes)]
        args += [self.image_for(env), *env.language_runtime.argv(DOCKER_WORKDIR)]
        return args

    async def _docker_cli(self, *args: str, timeout: float) -> tuple[int, str, str]:
        """Run a docker CLI command to completion.

        Raises:
            OSError: docker binary missing or not executable
            TimeoutError: command did not finish in time
        """
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            async with asyncio.timeout(timeout):
                stdout, stderr = await proc.communicate()
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise
        return proc.returncode or 0, stdout.decode(errors="replace").strip(), stderr.decode(errors="replace").strip()

    async def health_check(self, language: Language | None = None) -> None:
        """Check that the docker daemon answers.

        Raises:
            SandboxRuntimeUnavailableError: docker CLI missing or daemon unreachable
        """
        try:
            rc, out, err = await self._docker_cli(
                self._docker,
                "version",
                "--format",
                "{{.Server.Version}}",
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except (OSError, TimeoutError) as e:
            raise SandboxRuntimeUnavailableError(
                f"docker not available: {e or type(e).__name__}",
                context={"runtime": self.name, "docker_binary": self._docker},
            ) from e
        if rc != 0:
            raise SandboxRuntimeUnavailableError(
                f"docker daemon unreachable: {err}",
                context={"runtime": self.name, "returncode": rc},
            )
        logger.debug("docker daemon healthy", extra={"server_version": out})

    async def _prepare(self, env: ExecutionEnvironment) -> None:
        env.container_name = f"{DOCKER_CONTAINER_PREFIX}{env.env_id}"
        try:
            rc, _out, err = await self._docker_cli(*self.create_args(env), timeout=self._command_timeout)
        except TimeoutError as e:
            raise EnvironmentUnavailableError(
                "docker create timed out",
                context={"env_id": env.env_id, "container": env.container_name},
            ) from e
        if rc != 0:
            raise EnvironmentUnavailableError(
                f"docker create failed: {err}",
                context={"env_id": env.env_id, "container": env.container_name, "returncode": rc},
            )

    async def _execute(self, env: ExecutionEnvironment, stdin: bytes, timeout: float) -> RunResult:
        assert env.container_name is not None
        try:
            proc = ProcessWrapper(
                await asyncio.create_subprocess_exec(
                    self._docker,
                    "start",
                    "--attach",
                    "--interactive",
                    env.container_name,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                )
            )
        except OSError as e:
            raise EnvironmentUnavailableError(
                f"Failed to start container: {e}",
                context={"env_id": env.env_id, "container": env.container_name},
            ) from e

        env.process = proc

        async def kill() -> None:
            # Killing the container takes down its whole PID namespace; the
            # attached CLI then exits on its own.
            try:
                await self._docker_cli(self._docker, "kill", env.container_name, timeout=self._command_timeout)
            except (OSError, TimeoutError):
                logger.warning("docker kill failed", extra={"env_id": env.env_id}, exc_info=True)
            await proc.kill_tree()

        result = await communicate_bounded(
            proc,
            stdin=stdin,
            timeout=timeout,
            max_stdout_bytes=env.limits.max_output_bytes,
            max_stderr_bytes=env.limits.max_stderr_bytes,
            kill=kill,
            grace_seconds=self._kill_grace_seconds,
            context_id=env.env_id,
        )
        if is_daemon_failure(result):
            raise EnvironmentUnavailableError(
                f"docker start failed: {result.stderr.strip()}",
                context={"env_id": env.env_id, "container": env.container_name, "returncode": result.exit_code},
            )
        return result

    async def _teardown(self, env: ExecutionEnvironment) -> None:
        await cleanup_container(self._docker, env.container_name, context_id=env.env_id, timeout=self._command_timeout)
        await cleanup_process(
            env.process,
            name="docker start",
            context_id=env.env_id,
            kill_timeout=self._kill_grace_seconds,
        )
