"""Verdict policy: ordered test case outcomes -> final status and points.

Pure and deterministic. This is the only place points are computed.

Precedence (first match wins):
    1. any runtime fault  -> runtime_error,       0 passed, 0 points
    2. any timeout        -> time_limit_exceeded, 0 passed, 0 points
    3. otherwise          -> accepted if every case passed, else wrong_answer,
                             points = floor(passed / total * points_available)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sandbox_judge.models import FailureKind, Verdict, VerdictStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sandbox_judge.models import CaseOutcome


def score(passed: int, total: int, points_available: int) -> int:
    """floor(passed / total * points_available), in exact integer arithmetic."""
    return (passed * points_available) // total


def classify(outcomes: Sequence[CaseOutcome], total_cases: int, points_available: int) -> Verdict:
    """Map ordered outcomes to a Verdict.

    total_cases is the submission's full test case count, which is larger
    than len(outcomes) after an early exit.

    Raises:
        ValueError: total_cases < 1, or more outcomes than cases
    """
    if total_cases < 1:
        raise ValueError("total_cases must be at least 1")
    if len(outcomes) > total_cases:
        raise ValueError(f"{len(outcomes)} outcomes for {total_cases} test cases")

    kinds = {outcome.failure_kind for outcome in outcomes}

    if FailureKind.RUNTIME_FAULT in kinds:
        return Verdict(
            status=VerdictStatus.RUNTIME_ERROR,
            test_cases_passed=0,
            total_test_cases=total_cases,
            points_earned=0,
        )

    if FailureKind.TIMEOUT in kinds:
        return Verdict(
            status=VerdictStatus.TIME_LIMIT_EXCEEDED,
            test_cases_passed=0,
            total_test_cases=total_cases,
            points_earned=0,
        )

    passed = sum(1 for outcome in outcomes if outcome.passed)
    status = VerdictStatus.ACCEPTED if passed == total_cases else VerdictStatus.WRONG_ANSWER
    return Verdict(
        status=status,
        test_cases_passed=passed,
        total_test_cases=total_cases,
        points_earned=score(passed, total_cases, points_available),
    )
