"""Tests for DockerSandboxRuntime.

No docker daemon is required: command construction is checked directly and
the CLI is pointed at binaries that fail in known ways.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from sandbox_judge.docker_runtime import DockerSandboxRuntime, is_daemon_failure
from sandbox_judge.exceptions import EnvironmentUnavailableError, SandboxRuntimeUnavailableError
from sandbox_judge.languages import get_language_runtime
from sandbox_judge.models import Language, RunResult
from sandbox_judge.sandbox import ExecutionEnvironment, ResourceLimits
from tests.conftest import skip_unless_linux

_LIMITS = ResourceLimits(
    time_limit_ms=2000,
    memory_limit_bytes=128 * 1024 * 1024,
    max_output_bytes=1024,
    max_stderr_bytes=1024,
    max_processes=32,
)


def _env(language: Language = Language.PYTHON, limits: ResourceLimits = _LIMITS) -> ExecutionEnvironment:
    return ExecutionEnvironment(
        env_id="abc123",
        language_runtime=get_language_runtime(language),
        limits=limits,
        workdir=Path("/tmp/sbx-judge-abc123"),
        container_name="sbx-judge-abc123",
    )


def _flag_value(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


# ============================================================================
# docker create arguments
# ============================================================================


class TestCreateArgs:
    def test_isolation_flags(self) -> None:
        args = DockerSandboxRuntime().create_args(_env())

        assert args[:2] == ["docker", "create"]
        assert _flag_value(args, "--name") == "sbx-judge-abc123"
        assert _flag_value(args, "--network") == "none"
        assert "--read-only" in args
        assert _flag_value(args, "--cap-drop") == "ALL"
        assert _flag_value(args, "--security-opt") == "no-new-privileges"
        assert _flag_value(args, "--user") == "65534:65534"
        assert _flag_value(args, "--pids-limit") == "32"
        assert _flag_value(args, "--volume") == "/tmp/sbx-judge-abc123:/app:ro"

    def test_memory_limit_without_swap(self) -> None:
        args = DockerSandboxRuntime().create_args(_env())
        assert _flag_value(args, "--memory") == str(128 * 1024 * 1024)
        assert _flag_value(args, "--memory-swap") == str(128 * 1024 * 1024)

    def test_no_memory_limit(self) -> None:
        limits = ResourceLimits(
            time_limit_ms=1000,
            memory_limit_bytes=None,
            max_output_bytes=1024,
            max_stderr_bytes=1024,
            max_processes=8,
        )
        args = DockerSandboxRuntime().create_args(_env(limits=limits))
        assert "--memory" not in args

    def test_image_and_command_last(self) -> None:
        args = DockerSandboxRuntime().create_args(_env(Language.JAVASCRIPT))
        assert args[-3:] == ["node:22-alpine", "node", "/app/solution.js"]

    def test_image_override(self) -> None:
        runtime = DockerSandboxRuntime(docker_binary="/usr/bin/docker", images={Language.PYTHON: "judge/py:1"})
        args = runtime.create_args(_env())
        assert args[0] == "/usr/bin/docker"
        assert args[-4:] == ["judge/py:1", "python3", "-I", "/app/solution.py"]


# ============================================================================
# Failure handling
# ============================================================================


class TestUnavailableDocker:
    async def test_missing_binary_fails_health_check(self) -> None:
        runtime = DockerSandboxRuntime(docker_binary="/nonexistent/docker")
        with pytest.raises(SandboxRuntimeUnavailableError, match="docker not available"):
            await runtime.health_check()

    @pytest.mark.skipif(shutil.which("false") is None, reason="false(1) not available")
    async def test_failing_daemon_fails_health_check(self) -> None:
        runtime = DockerSandboxRuntime(docker_binary=shutil.which("false") or "false")
        with pytest.raises(SandboxRuntimeUnavailableError, match="unreachable"):
            await runtime.health_check()

    async def test_provision_failure_cleans_up(self, tmp_path: Path) -> None:
        runtime = DockerSandboxRuntime(docker_binary="/nonexistent/docker", workdir_root=tmp_path)
        with pytest.raises(EnvironmentUnavailableError):
            await runtime.provision("print(1)", Language.PYTHON, _LIMITS)

        assert runtime.active_environments() == {}
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.skipif(shutil.which("false") is None, reason="false(1) not available")
    async def test_create_rejected_cleans_up(self, tmp_path: Path) -> None:
        runtime = DockerSandboxRuntime(docker_binary=shutil.which("false") or "false", workdir_root=tmp_path)
        with pytest.raises(EnvironmentUnavailableError, match="docker create failed"):
            await runtime.provision("print(1)", Language.PYTHON, _LIMITS)

        assert runtime.active_environments() == {}
        assert list(tmp_path.iterdir()) == []


# ============================================================================
# Daemon failures during docker start
# ============================================================================

_DAEMON_DOWN = "Cannot connect to the Docker daemon at unix:///var/run/docker.sock. Is the docker daemon running?"


class TestDaemonFailure:
    @pytest.mark.parametrize(
        ("result", "expected"),
        [
            (RunResult(stderr=_DAEMON_DOWN, exit_code=1), True),
            (RunResult(stderr="Error response from daemon: container is marked for removal", exit_code=1), True),
            (RunResult(stderr="Traceback (most recent call last):\nValueError", exit_code=1), False),
            (RunResult(stdout="partial", stderr=_DAEMON_DOWN, exit_code=1), False),
            (RunResult(stderr=_DAEMON_DOWN, exit_code=0), False),
            (RunResult(stderr=_DAEMON_DOWN, exit_code=137, timed_out=True), False),
        ],
    )
    def test_is_daemon_failure(self, result: RunResult, expected: bool) -> None:
        assert is_daemon_failure(result) is expected

    @skip_unless_linux
    async def test_start_failure_is_environment_fault(self, tmp_path: Path) -> None:
        fake_docker = tmp_path / "docker"
        fake_docker.write_text(
            "#!/bin/sh\n"
            'if [ "$1" = "start" ]; then\n'
            "    echo 'Error response from daemon: container is marked for removal' >&2\n"
            "    exit 1\n"
            "fi\n"
            "exit 0\n"
        )
        fake_docker.chmod(0o755)
        workdirs = tmp_path / "work"
        workdirs.mkdir()
        runtime = DockerSandboxRuntime(docker_binary=str(fake_docker), workdir_root=workdirs, kill_grace_seconds=0.5)

        async with runtime.environment("print(1)", Language.PYTHON, _LIMITS) as env:
            with pytest.raises(EnvironmentUnavailableError, match="docker start failed"):
                await runtime.run(env, "", 1000)

        assert runtime.active_environments() == {}
        assert list(workdirs.iterdir()) == []
