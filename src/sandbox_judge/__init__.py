"""sandbox-judge: run untrusted submissions against test cases and compute a verdict.

Each test case runs in a fresh, single-use sandboxed environment under a
wall-clock limit (and an optional memory ceiling). Outcomes are folded into
one of four verdicts: accepted, wrong_answer, time_limit_exceeded,
runtime_error.

Quick Start:
    ```python
    from sandbox_judge import Judge, ProblemDefinition, SubmissionRequest, TestCase

    problem = ProblemDefinition(
        id=1,
        time_limit_ms=2000,
        points_available=100,
        test_cases=[TestCase(input="2\\n", expected_output="4")],
    )
    async with Judge() as judge:
        verdict = await judge.judge_request(
            SubmissionRequest(code="print(int(input()) ** 2)", language="python"),
            problem,
        )
    ```

Runtimes:
    - process: local child process per test case in its own process group
      (development, trusted CI)
    - docker:  one network-less container per test case (production)

Only infrastructure failures escape judge() (CapacityError,
SandboxRuntimeUnavailableError). Everything caused by the submission itself
becomes a Verdict.
"""

from sandbox_judge.admission import AdmissionController
from sandbox_judge.config import JudgeConfig
from sandbox_judge.exceptions import (
    CapacityError,
    EnvironmentUnavailableError,
    InputValidationError,
    JudgeError,
    PermanentError,
    RuntimeConfigError,
    SandboxRuntimeUnavailableError,
    TransientError,
    UnsupportedLanguageError,
)
from sandbox_judge.judge import Judge, judge
from sandbox_judge.models import (
    CaseOutcome,
    FailureKind,
    Language,
    ProblemDefinition,
    RunResult,
    Submission,
    SubmissionRequest,
    TestCase,
    Verdict,
    VerdictStatus,
)
from sandbox_judge.sandbox import ExecutionEnvironment, ResourceLimits, SandboxRuntime
from sandbox_judge.verdict import classify

__all__ = [
    "AdmissionController",
    "CapacityError",
    "CaseOutcome",
    "EnvironmentUnavailableError",
    "ExecutionEnvironment",
    "FailureKind",
    "InputValidationError",
    "Judge",
    "JudgeConfig",
    "JudgeError",
    "Language",
    "PermanentError",
    "ProblemDefinition",
    "ResourceLimits",
    "RunResult",
    "RuntimeConfigError",
    "SandboxRuntime",
    "SandboxRuntimeUnavailableError",
    "Submission",
    "SubmissionRequest",
    "TestCase",
    "TransientError",
    "UnsupportedLanguageError",
    "Verdict",
    "VerdictStatus",
    "classify",
    "judge",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sandbox-judge")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
