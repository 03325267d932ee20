"""Constants for sandbox-judge configuration and limits."""

from typing import Final

# ============================================================================
# Submission Limits
# ============================================================================

MAX_CODE_SIZE: Final[int] = 1024 * 1024  # 1MB
"""Maximum size in bytes (UTF-8) of submitted source code."""

MAX_TIME_LIMIT_MS: Final[int] = 60_000
"""Maximum per-test-case time limit in milliseconds."""

MAX_TEST_CASES: Final[int] = 1000
"""Maximum number of test cases in one problem definition."""

DEFAULT_MEMORY_LIMIT_BYTES: Final[int] = 256 * 1024 * 1024
"""Memory charged at admission for a submission without a memory limit (256MB)."""

# ============================================================================
# Output Capture
# ============================================================================

DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 16 * 1024 * 1024
"""Captured stdout ceiling. Exceeding it kills the program (runtime fault)."""

DEFAULT_MAX_STDERR_BYTES: Final[int] = 64 * 1024
"""Captured stderr ceiling. stderr is diagnostic only and never compared."""

STDERR_LOG_TAIL_CHARS: Final[int] = 500
"""How much of stderr is attached to runtime-fault log records."""

OUTPUT_READ_CHUNK_BYTES: Final[int] = 64 * 1024
"""Read size for stdout/stderr pipe draining."""

# ============================================================================
# Process Control
# ============================================================================

DEFAULT_KILL_GRACE_SECONDS: Final[float] = 2.0
"""Bound on waiting for a killed process tree to be reaped."""

EXIT_POLL_INTERVAL_SECONDS: Final[float] = 0.01
"""How often a running program is checked for exit, independently of its pipes."""

ENV_TAG_VARIABLE: Final[str] = "SANDBOX_JUDGE_ENV_ID"
"""Environment variable carrying the env_id into every process of an environment."""

DEFAULT_PROVISION_TIMEOUT_SECONDS: Final[float] = 30.0
"""Deadline for provisioning one environment (container create, staging)."""

DEFAULT_MAX_PROCESSES: Final[int] = 64
"""Process ceiling per environment (fork bomb prevention)."""

MAX_FILE_SIZE_BYTES: Final[int] = 64 * 1024 * 1024
"""Largest file a sandboxed program may write (RLIMIT_FSIZE)."""

# ============================================================================
# Admission
# ============================================================================

DEFAULT_MAX_CONCURRENT_ENVIRONMENTS: Final[int] = 4
"""Default number of submissions judged at once."""

DEFAULT_ADMISSION_TIMEOUT_SECONDS: Final[float] = 60.0
"""How long a submission waits for capacity before CapacityError."""

DEFAULT_HOST_MEMORY_RESERVE_RATIO: Final[float] = 0.1
"""Fraction of host memory kept out of the admission memory budget."""

# ============================================================================
# Runtime Health
# ============================================================================

HEALTH_CHECK_MAX_ATTEMPTS: Final[int] = 3
"""Attempts before declaring the sandbox runtime unavailable."""

HEALTH_CHECK_RETRY_MIN_SECONDS: Final[float] = 0.1
"""Minimum backoff between health check attempts."""

HEALTH_CHECK_RETRY_MAX_SECONDS: Final[float] = 2.0
"""Maximum backoff between health check attempts."""

HEALTH_CHECK_TIMEOUT_SECONDS: Final[float] = 10.0
"""Deadline for a single health check probe."""

# ============================================================================
# Workspace
# ============================================================================

WORKDIR_PREFIX: Final[str] = "sbx-judge-"
"""Prefix of per-environment temporary working directories."""

DOCKER_CONTAINER_PREFIX: Final[str] = "sbx-judge-"
"""Prefix of per-environment container names."""

DOCKER_WORKDIR: Final[str] = "/app"
"""Mount point of the staged source inside a container."""
