"""Execution supervisor: one test case to one terminal outcome.

The supervisor acquires a fresh environment, runs the staged program once
with the case input, destroys the environment (always), and classifies:

    timed out                                  -> timeout
    output flood / non-zero exit / signal      -> runtime_fault
    provisioning or start failure              -> runtime_fault (environment_fault)
    clean exit, trimmed output == expected     -> passed
    clean exit, trimmed output != expected     -> mismatch

Output comparison is exact equality after stripping leading and trailing
whitespace. Internal whitespace, line endings and number formatting are
compared as-is.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import STDERR_LOG_TAIL_CHARS
from sandbox_judge.exceptions import EnvironmentUnavailableError
from sandbox_judge.models import CaseOutcome, FailureKind

if TYPE_CHECKING:
    from sandbox_judge.models import RunResult, Submission, TestCase
    from sandbox_judge.sandbox import ResourceLimits, SandboxRuntime

logger = get_logger(__name__)


def outputs_match(actual: str, expected: str) -> bool:
    """Trim-exact match."""
    return actual.strip() == expected.strip()


def describe_fault(result: RunResult) -> str:
    if result.output_limit_exceeded:
        return "output limit exceeded"
    if result.signal is not None:
        return f"killed by signal {result.signal}"
    if result.exit_code is None:
        return "exit status unknown"
    return f"exit code {result.exit_code}"


def classify_run(case_index: int, result: RunResult, expected_output: str) -> CaseOutcome:
    """Turn what the sandbox observed into a CaseOutcome."""
    common = {
        "case_index": case_index,
        "output": result.stdout,
        "duration_ms": result.duration_ms,
        "exit_code": result.exit_code,
    }

    if result.timed_out:
        return CaseOutcome(passed=False, failure_kind=FailureKind.TIMEOUT, detail="time limit exceeded", **common)

    if not result.exited_normally:
        return CaseOutcome(passed=False, failure_kind=FailureKind.RUNTIME_FAULT, detail=describe_fault(result), **common)

    if outputs_match(result.stdout, expected_output):
        return CaseOutcome(passed=True, failure_kind=FailureKind.NONE, **common)

    return CaseOutcome(passed=False, failure_kind=FailureKind.MISMATCH, detail="output mismatch", **common)


class ExecutionSupervisor:
    """Runs exactly one test case in bounded wall-clock time."""

    def __init__(self, runtime: SandboxRuntime, provision_timeout_seconds: float) -> None:
        self._runtime = runtime
        self._provision_timeout = provision_timeout_seconds

    def _environment_fault(self, case_index: int, error: EnvironmentUnavailableError) -> CaseOutcome:
        return CaseOutcome(
            case_index=case_index,
            passed=False,
            failure_kind=FailureKind.RUNTIME_FAULT,
            detail=f"{EnvironmentUnavailableError.code}: {error.message}",
            environment_fault=True,
        )

    async def run_case(
        self,
        submission: Submission,
        case_index: int,
        test_case: TestCase,
        limits: ResourceLimits,
    ) -> CaseOutcome:
        """Run one test case to a terminal CaseOutcome. Never raises for
        submission-caused failures or single-environment faults."""
        log_extra = {"submission_id": submission.id, "case_index": case_index, "hidden": test_case.is_hidden}

        try:
            async with asyncio.timeout(self._provision_timeout):
                env = await self._runtime.provision(submission.code, submission.language, limits)
        except TimeoutError:
            error = EnvironmentUnavailableError(
                f"provisioning exceeded {self._provision_timeout}s",
                context={"runtime": self._runtime.name},
            )
            logger.warning("Environment provisioning timed out", extra=log_extra)
            return self._environment_fault(case_index, error)
        except EnvironmentUnavailableError as e:
            logger.warning("Environment unavailable", extra={**log_extra, **e.context, "error": e.message})
            return self._environment_fault(case_index, e)

        log_extra["env_id"] = env.env_id
        try:
            result = await self._runtime.run(env, test_case.input, submission.time_limit_ms)
        except EnvironmentUnavailableError as e:
            logger.warning("Program could not be started", extra={**log_extra, **e.context, "error": e.message})
            return self._environment_fault(case_index, e)
        finally:
            await self._runtime.destroy(env)

        outcome = classify_run(case_index, result, test_case.expected_output)

        if outcome.failure_kind is FailureKind.RUNTIME_FAULT:
            logger.info(
                "Runtime fault",
                extra={
                    **log_extra,
                    "detail": outcome.detail,
                    "exit_code": result.exit_code,
                    "duration_ms": result.duration_ms,
                    "stderr_tail": result.stderr[-STDERR_LOG_TAIL_CHARS:],
                },
            )
        else:
            logger.debug(
                "Test case finished",
                extra={
                    **log_extra,
                    "failure_kind": outcome.failure_kind.value,
                    "duration_ms": result.duration_ms,
                },
            )
        return outcome
