"""Shared pytest fixtures for sandbox-judge tests.

Most tests drive the engine through FakeRuntime, an in-memory SandboxRuntime
whose programs are Python callables. It stages and cleans up real workdirs
(under tmp_path) so lifecycle bookkeeping is exercised, but never spawns a
process. Tests of the real runtimes live in test_process_runtime.py and
test_docker_runtime.py.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from sandbox_judge.config import JudgeConfig
from sandbox_judge.exceptions import SandboxRuntimeUnavailableError
from sandbox_judge.models import Language, RunResult, Submission, TestCase
from sandbox_judge.platform_utils import HostOS, detect_host_os
from sandbox_judge.sandbox import ExecutionEnvironment, SandboxRuntime

# A fake program: (staged source, stdin, timeout seconds) -> what the sandbox observed
Program = Callable[[str, str, float], RunResult]


# ============================================================================
# Fake Programs
# ============================================================================


def ok(stdout: str) -> RunResult:
    return RunResult(stdout=stdout, exit_code=0, duration_ms=5)


def crash(exit_code: int = 1, stderr: str = "Traceback ...") -> RunResult:
    return RunResult(stderr=stderr, exit_code=exit_code, duration_ms=5)


def hang(timeout: float) -> RunResult:
    return RunResult(exit_code=-9, timed_out=True, duration_ms=int(timeout * 1000))


def doubler(code: str, stdin: str, timeout: float) -> RunResult:
    """Behaves like print(int(input()) * 2)."""
    return ok(f"{int(stdin) * 2}\n")


def by_input(results: dict[str, RunResult]) -> Program:
    """Program whose result is looked up by its stdin."""

    def program(code: str, stdin: str, timeout: float) -> RunResult:
        return results[stdin]

    return program


def echo_source(code: str, stdin: str, timeout: float) -> RunResult:
    """Prints its own staged source: lets tests see which submission ran."""
    return ok(code)


# ============================================================================
# Fake Runtime
# ============================================================================


class FakeRuntime(SandboxRuntime):
    """Scripted in-memory sandbox runtime."""

    name = "fake"

    def __init__(
        self,
        program: Program,
        workdir_root: Path,
        *,
        run_delay: float = 0.0,
        provision_error: BaseException | None = None,
        healthy: bool = True,
    ) -> None:
        super().__init__(workdir_root=workdir_root, kill_grace_seconds=0.1)
        self.program = program
        self.run_delay = run_delay
        self.provision_error = provision_error
        self.healthy = healthy
        self.health_checks = 0
        self.provisioned: list[str] = []
        self.destroyed: list[str] = []
        self.runs: list[tuple[str, str]] = []  # (env_id, stdin)
        self.workdirs: list[Path] = []
        self.max_active = 0

    async def health_check(self, language: Language | None = None) -> None:
        self.health_checks += 1
        if not self.healthy:
            raise SandboxRuntimeUnavailableError("fake runtime is down", context={"runtime": self.name})

    async def _prepare(self, env: ExecutionEnvironment) -> None:
        assert env.workdir is not None
        self.workdirs.append(env.workdir)
        if self.provision_error is not None:
            raise self.provision_error
        self.provisioned.append(env.env_id)
        self.max_active = max(self.max_active, len(self._active))

    async def _execute(self, env: ExecutionEnvironment, stdin: bytes, timeout: float) -> RunResult:
        assert env.source_path is not None
        self.runs.append((env.env_id, stdin.decode()))
        if self.run_delay:
            await asyncio.sleep(self.run_delay)
        code = env.source_path.read_text(encoding="utf-8")
        return self.program(code, stdin.decode(), timeout)

    async def _teardown(self, env: ExecutionEnvironment) -> None:
        self.destroyed.append(env.env_id)


# ============================================================================
# Builders
# ============================================================================


def make_submission(
    cases: list[tuple[str, str]] | None = None,
    *,
    code: str = "print(int(input()) * 2)",
    language: Language = Language.PYTHON,
    time_limit_ms: int = 2000,
    memory_limit_bytes: int | None = None,
    points_available: int = 100,
    hidden: bool = False,
) -> Submission:
    """Submission from (input, expected_output) pairs."""
    cases = cases if cases is not None else [("1", "2"), ("2", "4"), ("3", "6")]
    return Submission(
        code=code,
        language=language,
        test_cases=[TestCase(input=i, expected_output=o, is_hidden=hidden) for i, o in cases],
        time_limit_ms=time_limit_ms,
        memory_limit_bytes=memory_limit_bytes,
        points_available=points_available,
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def judge_config(tmp_path: Path) -> JudgeConfig:
    """Config with fast health checks and workdirs under tmp_path."""
    return JudgeConfig(
        workdir_root=tmp_path,
        health_check_attempts=1,
        admission_timeout_seconds=5,
        host_memory_mb=16_000,
        kill_grace_seconds=0.5,
    )


@pytest.fixture
def doubler_runtime(tmp_path: Path) -> FakeRuntime:
    return FakeRuntime(doubler, tmp_path)


# ============================================================================
# Shared Skip Markers
# ============================================================================

skip_unless_linux = pytest.mark.skipif(
    detect_host_os() != HostOS.LINUX,
    reason="This test requires Linux (process groups, RLIMIT_AS)",
)

skip_unless_python3 = pytest.mark.skipif(
    shutil.which("python3") is None,
    reason="python3 interpreter not on PATH",
)
