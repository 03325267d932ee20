"""Exception hierarchy for sandbox-judge.

All exceptions inherit from JudgeError.

Hierarchy:
    JudgeError (base)
    ├── TransientError (retryable marker base)
    │   ├── EnvironmentUnavailableError     ← one environment could not be provisioned
    │   ├── SandboxRuntimeUnavailableError  ← isolation runtime itself is down
    │   └── CapacityError                   ← admission pool full after timeout
    ├── PermanentError (non-retryable marker base)
    │   └── RuntimeConfigError              ← invalid runtime configuration
    └── InputValidationError (caller-bug marker base)
        └── UnsupportedLanguageError        ← no runtime for declared language

Only infrastructure errors escape judge(). Anything caused by the content of
a submission (bad code, slow code, wrong output) resolves to a Verdict.
EnvironmentUnavailableError is the exception: raised by the adapter, it is
caught by the supervisor and turned into a runtime fault for that test case.
"""

from __future__ import annotations

from typing import Any


class JudgeError(Exception):
    """Base exception for all judge errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Transient vs Permanent Error Base Classes
# =============================================================================


class TransientError(JudgeError):
    """Base for transient errors that may succeed on retry.

    Callers of judge() should treat these as a retryable service error
    rather than a verdict (e.g. surface INTERNAL_SERVER_ERROR or requeue).
    """


class PermanentError(JudgeError):
    """Base for permanent errors that won't succeed on retry."""


# =============================================================================
# Transient Errors
# =============================================================================


class EnvironmentUnavailableError(TransientError):
    """The isolation primitive could not be created for one test case.

    Typical causes: resource exhaustion (fork/EAGAIN, disk full), container
    create failure. Not retried automatically; the supervisor classifies the
    affected test case as a runtime fault.
    """

    code = "ENVIRONMENT_UNAVAILABLE"


class SandboxRuntimeUnavailableError(TransientError):
    """The sandbox runtime as a whole is down.

    Raised when the runtime health check keeps failing (docker daemon
    unreachable, interpreter missing). Propagates out of judge().
    """


class CapacityError(TransientError):
    """Admission pool at capacity.

    Raised when no environment slot or memory budget became available within
    the admission timeout. Capacity may free up as other submissions finish.
    """


# =============================================================================
# Permanent Errors
# =============================================================================


class RuntimeConfigError(PermanentError):
    """Invalid sandbox runtime configuration (unknown runtime, bad paths)."""


# =============================================================================
# Input Validation Errors
# =============================================================================


class InputValidationError(JudgeError):
    """Base for input validation errors (caller bugs, not sandbox failures)."""


class UnsupportedLanguageError(InputValidationError):
    """No execution environment is provisioned for the declared language."""
