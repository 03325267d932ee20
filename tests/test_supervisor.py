"""Tests for ExecutionSupervisor and run classification.

Uses FakeRuntime (no real processes).
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from sandbox_judge.exceptions import EnvironmentUnavailableError
from sandbox_judge.models import FailureKind, RunResult, TestCase
from sandbox_judge.sandbox import ResourceLimits
from sandbox_judge.supervisor import ExecutionSupervisor, classify_run, describe_fault, outputs_match
from tests.conftest import FakeRuntime, crash, doubler, hang, make_submission, ok

_LIMITS = ResourceLimits(
    time_limit_ms=1000,
    memory_limit_bytes=None,
    max_output_bytes=1024 * 1024,
    max_stderr_bytes=1024,
    max_processes=16,
)

# ============================================================================
# Output comparison
# ============================================================================


class TestOutputsMatch:
    @pytest.mark.parametrize(
        ("actual", "expected"),
        [
            ("4", "4"),
            ("4\n", "4"),
            ("  4  \n\n", "4"),
            ("4", "\t4\n"),
            ("a b\nc", "a b\nc"),
        ],
    )
    def test_equal_after_trim(self, actual: str, expected: str) -> None:
        assert outputs_match(actual, expected)

    @pytest.mark.parametrize(
        ("actual", "expected"),
        [
            ("4", "5"),
            ("a  b", "a b"),  # internal whitespace significant
            ("a\r\nb", "a\nb"),  # line endings compared as-is
            ("4.0", "4"),  # no numeric tolerance
            ("", "4"),
        ],
    )
    def test_not_equal(self, actual: str, expected: str) -> None:
        assert not outputs_match(actual, expected)


# ============================================================================
# classify_run
# ============================================================================


class TestClassifyRun:
    def test_clean_exit_matching_output_passes(self) -> None:
        outcome = classify_run(0, ok("4\n"), "4")
        assert outcome.passed
        assert outcome.failure_kind is FailureKind.NONE
        assert outcome.output == "4\n"

    def test_clean_exit_wrong_output_is_mismatch(self) -> None:
        outcome = classify_run(1, ok("5\n"), "4")
        assert not outcome.passed
        assert outcome.failure_kind is FailureKind.MISMATCH
        assert outcome.case_index == 1

    def test_nonzero_exit_is_runtime_fault_even_with_correct_output(self) -> None:
        result = RunResult(stdout="4\n", exit_code=1)
        outcome = classify_run(0, result, "4")
        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert outcome.detail == "exit code 1"

    def test_signal_is_runtime_fault(self) -> None:
        outcome = classify_run(0, RunResult(exit_code=-11), "4")
        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert outcome.detail == "killed by signal 11"

    def test_output_flood_is_runtime_fault(self) -> None:
        result = RunResult(stdout="x" * 10, exit_code=-9, output_limit_exceeded=True)
        outcome = classify_run(0, result, "x")
        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert outcome.detail == "output limit exceeded"

    def test_timeout_wins_over_exit_code(self) -> None:
        outcome = classify_run(0, hang(1.0), "4")
        assert outcome.failure_kind is FailureKind.TIMEOUT
        assert not outcome.environment_fault

    def test_unknown_exit_status(self) -> None:
        assert describe_fault(RunResult(exit_code=None)) == "exit status unknown"


# ============================================================================
# ExecutionSupervisor.run_case
# ============================================================================


class TestRunCase:
    async def test_pass(self, doubler_runtime: FakeRuntime) -> None:
        supervisor = ExecutionSupervisor(doubler_runtime, provision_timeout_seconds=5)
        submission = make_submission()
        outcome = await supervisor.run_case(submission, 0, TestCase(input="21", expected_output="42"), _LIMITS)
        assert outcome.passed
        assert doubler_runtime.runs[0][1] == "21"

    @pytest.mark.parametrize(
        "program",
        [
            doubler,
            lambda code, stdin, timeout: ok("wrong"),
            lambda code, stdin, timeout: crash(),
            lambda code, stdin, timeout: hang(timeout),
        ],
        ids=["pass", "mismatch", "crash", "timeout"],
    )
    async def test_environment_destroyed_on_every_path(self, tmp_path: Path, program) -> None:
        runtime = FakeRuntime(program, tmp_path)
        supervisor = ExecutionSupervisor(runtime, provision_timeout_seconds=5)
        await supervisor.run_case(make_submission(), 0, TestCase(input="1", expected_output="2"), _LIMITS)

        assert runtime.destroyed == runtime.provisioned
        assert runtime.active_environments() == {}
        assert all(not workdir.exists() for workdir in runtime.workdirs)

    async def test_environment_destroyed_when_run_raises(self, tmp_path: Path) -> None:
        def boom(code: str, stdin: str, timeout: float) -> RunResult:
            raise EnvironmentUnavailableError("exec failed")

        runtime = FakeRuntime(boom, tmp_path)
        supervisor = ExecutionSupervisor(runtime, provision_timeout_seconds=5)
        outcome = await supervisor.run_case(make_submission(), 0, TestCase(expected_output="x"), _LIMITS)

        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert outcome.environment_fault
        assert runtime.destroyed == runtime.provisioned
        assert runtime.active_environments() == {}

    async def test_provision_failure_is_environment_fault(self, tmp_path: Path) -> None:
        runtime = FakeRuntime(doubler, tmp_path, provision_error=OSError("Resource temporarily unavailable"))
        supervisor = ExecutionSupervisor(runtime, provision_timeout_seconds=5)
        outcome = await supervisor.run_case(make_submission(), 0, TestCase(expected_output="x"), _LIMITS)

        assert not outcome.passed
        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert outcome.environment_fault
        assert outcome.detail is not None
        assert outcome.detail.startswith("ENVIRONMENT_UNAVAILABLE")
        assert runtime.runs == []
        # Half-provisioned environment was still cleaned up
        assert runtime.active_environments() == {}
        assert all(not workdir.exists() for workdir in runtime.workdirs)

    async def test_provision_timeout_is_environment_fault(self, tmp_path: Path) -> None:
        class SlowProvision(FakeRuntime):
            async def _prepare(self, env) -> None:
                await super()._prepare(env)
                await asyncio.sleep(10)

        runtime = SlowProvision(doubler, tmp_path)
        supervisor = ExecutionSupervisor(runtime, provision_timeout_seconds=0.05)
        outcome = await supervisor.run_case(make_submission(), 0, TestCase(expected_output="x"), _LIMITS)

        assert outcome.environment_fault
        assert "provisioning exceeded" in (outcome.detail or "")
        assert runtime.runs == []
        assert runtime.active_environments() == {}

    async def test_program_misbehavior_never_raises(self, tmp_path: Path) -> None:
        runtime = FakeRuntime(lambda code, stdin, timeout: crash(exit_code=-6, stderr="abort"), tmp_path)
        supervisor = ExecutionSupervisor(runtime, provision_timeout_seconds=5)
        outcome = await supervisor.run_case(make_submission(), 0, TestCase(expected_output="x"), _LIMITS)
        assert outcome.failure_kind is FailureKind.RUNTIME_FAULT
        assert not outcome.environment_fault
        assert outcome.exit_code == -6
