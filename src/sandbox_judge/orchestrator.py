"""Submission orchestrator: Submission -> Verdict.

Test cases run strictly sequentially, in declared order, each in its own
fresh environment. The first timeout or runtime fault stops the run (early
exit); mismatches do not. The reported total is always the full test case
count, so "X / N passed" is stable whether or not the run stopped early.

Different submissions may be judged concurrently; the orchestrator keeps no
mutable state across submissions. Capacity is bounded by the
AdmissionController handed in by the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from sandbox_judge import constants
from sandbox_judge._logging import get_logger
from sandbox_judge.exceptions import SandboxRuntimeUnavailableError
from sandbox_judge.languages import get_language_runtime
from sandbox_judge.models import FailureKind
from sandbox_judge.sandbox import ResourceLimits
from sandbox_judge.supervisor import ExecutionSupervisor
from sandbox_judge.verdict import classify

if TYPE_CHECKING:
    from sandbox_judge.admission import AdmissionController
    from sandbox_judge.config import JudgeConfig
    from sandbox_judge.models import CaseOutcome, Language, Submission, Verdict
    from sandbox_judge.sandbox import SandboxRuntime

logger = get_logger(__name__)

EARLY_EXIT_KINDS: Final[frozenset[FailureKind]] = frozenset({FailureKind.TIMEOUT, FailureKind.RUNTIME_FAULT})


async def ensure_runtime_healthy(
    runtime: SandboxRuntime,
    language: Language | None = None,
    attempts: int = constants.HEALTH_CHECK_MAX_ATTEMPTS,
) -> None:
    """Probe the runtime, retrying transient failures with jittered backoff.

    Raises:
        SandboxRuntimeUnavailableError: Still unhealthy after all attempts
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(
            min=constants.HEALTH_CHECK_RETRY_MIN_SECONDS,
            max=constants.HEALTH_CHECK_RETRY_MAX_SECONDS,
        ),
        retry=retry_if_exception_type(SandboxRuntimeUnavailableError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            await runtime.health_check(language)


class SubmissionOrchestrator:
    """Drives one submission through its test cases."""

    def __init__(
        self,
        runtime: SandboxRuntime,
        config: JudgeConfig,
        admission: AdmissionController | None = None,
    ) -> None:
        self._runtime = runtime
        self._config = config
        self._admission = admission
        self._supervisor = ExecutionSupervisor(runtime, config.provision_timeout_seconds)

    def limits_for(self, submission: Submission) -> ResourceLimits:
        return ResourceLimits(
            time_limit_ms=submission.time_limit_ms,
            memory_limit_bytes=submission.memory_limit_bytes,
            max_output_bytes=self._config.max_output_bytes,
            max_stderr_bytes=self._config.max_stderr_bytes,
            max_processes=self._config.max_processes,
        )

    async def run_cases(self, submission: Submission) -> list[CaseOutcome]:
        """Run test cases in order until done or the first timeout/runtime fault.

        Raises:
            SandboxRuntimeUnavailableError: A case could not get an environment
                and the runtime as a whole is down
        """
        limits = self.limits_for(submission)
        outcomes: list[CaseOutcome] = []

        for case_index, test_case in enumerate(submission.test_cases):
            outcome = await self._supervisor.run_case(submission, case_index, test_case, limits)
            outcomes.append(outcome)

            if outcome.failure_kind in EARLY_EXIT_KINDS:
                if outcome.environment_fault:
                    # Distinguish "this environment failed" (a verdict) from
                    # "the runtime is down" (a retryable service error).
                    await ensure_runtime_healthy(self._runtime, submission.language, self._config.health_check_attempts)
                logger.debug(
                    "Early exit",
                    extra={
                        "submission_id": submission.id,
                        "case_index": case_index,
                        "failure_kind": outcome.failure_kind.value,
                        "skipped_cases": len(submission.test_cases) - case_index - 1,
                    },
                )
                break

        return outcomes

    async def judge(self, submission: Submission) -> Verdict:
        """Judge a submission.

        Every submission-caused failure resolves to a Verdict.

        Raises:
            UnsupportedLanguageError: No environment for the declared language
            CapacityError: Not admitted within the admission timeout
            SandboxRuntimeUnavailableError: The sandbox runtime is down
        """
        get_language_runtime(submission.language)

        if self._admission is None:
            outcomes = await self.run_cases(submission)
        else:
            memory_bytes = submission.memory_limit_bytes or constants.DEFAULT_MEMORY_LIMIT_BYTES
            async with self._admission.reserve(submission.id, memory_bytes, self._config.admission_timeout_seconds):
                outcomes = await self.run_cases(submission)

        verdict = classify(outcomes, len(submission.test_cases), submission.points_available)
        logger.info(
            "Submission judged",
            extra={
                "submission_id": submission.id,
                "language": submission.language.value,
                "status": verdict.status.value,
                "test_cases_passed": verdict.test_cases_passed,
                "total_test_cases": verdict.total_test_cases,
                "cases_run": len(outcomes),
                "points_earned": verdict.points_earned,
                "total_duration_ms": sum(o.duration_ms for o in outcomes),
            },
        )
        return verdict
