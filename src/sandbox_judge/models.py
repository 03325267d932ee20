"""Data models for sandbox-judge.

Inputs (ProblemDefinition, SubmissionRequest, Submission, TestCase) are frozen:
the engine never mutates what the caller hands in. Field aliases are camelCase
so the models load and dump the surrounding service's JSON unchanged.
"""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from sandbox_judge.constants import MAX_CODE_SIZE, MAX_TEST_CASES, MAX_TIME_LIMIT_MS

_FROZEN_CAMEL = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
)


class Language(str, Enum):
    """Languages with a provisioned execution environment."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"


class TestCase(BaseModel):
    """One input/expected-output pair."""

    __test__ = False  # not a pytest test class

    model_config = _FROZEN_CAMEL

    input: str = ""
    expected_output: str
    is_hidden: bool = False


class ProblemDefinition(BaseModel):
    """Problem as supplied by the contest/problem service."""

    model_config = _FROZEN_CAMEL

    id: str | int
    time_limit_ms: int = Field(gt=0, le=MAX_TIME_LIMIT_MS)
    memory_limit_bytes: int | None = Field(default=None, gt=0)
    points_available: int = Field(ge=0)
    test_cases: tuple[TestCase, ...] = Field(min_length=1, max_length=MAX_TEST_CASES)


class SubmissionRequest(BaseModel):
    """Code attempt as received from the user."""

    model_config = _FROZEN_CAMEL

    code: str
    language: Language


class Submission(BaseModel):
    """One code attempt for one problem, ready to be judged.

    Invariants: time limit > 0, at least one test case, code non-empty.
    """

    model_config = _FROZEN_CAMEL

    id: str = Field(default_factory=lambda: uuid4().hex)
    code: str
    language: Language
    test_cases: tuple[TestCase, ...] = Field(min_length=1, max_length=MAX_TEST_CASES)
    time_limit_ms: int = Field(gt=0, le=MAX_TIME_LIMIT_MS)
    memory_limit_bytes: int | None = Field(default=None, gt=0)
    points_available: int = Field(ge=0)

    @field_validator("code")
    @classmethod
    def _validate_code(cls, code: str) -> str:
        if not code.strip():
            raise ValueError("code must not be empty")
        if "\x00" in code:
            raise ValueError("code must not contain null bytes")
        if len(code.encode("utf-8")) > MAX_CODE_SIZE:
            raise ValueError(f"code exceeds {MAX_CODE_SIZE} bytes")
        return code

    @classmethod
    def from_request(
        cls,
        request: SubmissionRequest,
        problem: ProblemDefinition,
        *,
        submission_id: str | None = None,
    ) -> Submission:
        """Combine a user's request with the problem it targets."""
        fields = {
            "code": request.code,
            "language": request.language,
            "test_cases": problem.test_cases,
            "time_limit_ms": problem.time_limit_ms,
            "memory_limit_bytes": problem.memory_limit_bytes,
            "points_available": problem.points_available,
        }
        if submission_id is not None:
            fields["id"] = submission_id
        return cls(**fields)


class RunResult(BaseModel):
    """What the sandbox observed while running one program once.

    Program misbehavior lives here, never in an exception: a crash is a
    non-zero or negative exit_code, a hang is timed_out, a flood of output is
    output_limit_exceeded.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = Field(default=None, description="Exit code; negative = killed by signal")
    timed_out: bool = False
    output_limit_exceeded: bool = False
    duration_ms: int = Field(default=0, ge=0)

    @property
    def signal(self) -> int | None:
        """Signal number that killed the program, if any."""
        if self.exit_code is not None and self.exit_code < 0:
            return -self.exit_code
        return None

    @property
    def exited_normally(self) -> bool:
        return self.exit_code == 0 and not self.output_limit_exceeded


class FailureKind(str, Enum):
    """Why a test case did not pass."""

    NONE = "none"
    TIMEOUT = "timeout"
    RUNTIME_FAULT = "runtime_fault"
    MISMATCH = "mismatch"


class CaseOutcome(BaseModel):
    """Result of running one test case."""

    model_config = ConfigDict(frozen=True)

    case_index: int = Field(ge=0)
    passed: bool
    output: str = ""
    failure_kind: FailureKind
    duration_ms: int = Field(default=0, ge=0)
    exit_code: int | None = None
    detail: str | None = None
    # The environment could not be provisioned or started: the program never ran
    environment_fault: bool = False

    @model_validator(mode="after")
    def _passed_iff_no_failure(self) -> CaseOutcome:
        if self.passed != (self.failure_kind is FailureKind.NONE):
            raise ValueError("passed must be True exactly when failure_kind is 'none'")
        if self.environment_fault and self.failure_kind is not FailureKind.RUNTIME_FAULT:
            raise ValueError("environment faults are runtime faults")
        return self


class VerdictStatus(str, Enum):
    """Final judged status of a submission."""

    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    RUNTIME_ERROR = "runtime_error"


class Verdict(BaseModel):
    """The submission's final judged result.

    Counts only: which hidden case failed is never exposed.
    """

    model_config = _FROZEN_CAMEL

    status: VerdictStatus
    test_cases_passed: int = Field(ge=0)
    total_test_cases: int = Field(ge=1)
    points_earned: int = Field(ge=0)
