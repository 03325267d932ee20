"""Judge configuration for sandbox-judge.

JudgeConfig provides all configuration options for the Judge facade: which
sandbox runtime to use, admission (capacity) limits, output ceilings and
process-control timeouts.

Example:
    ```python
    from sandbox_judge import Judge, JudgeConfig

    config = JudgeConfig(runtime="docker", max_concurrent_environments=8)
    async with Judge(config) as judge:
        verdict = await judge.judge(submission)
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from sandbox_judge import constants
from sandbox_judge.models import Language


class JudgeConfig(BaseModel):
    """Configuration for Judge.

    All fields have sensible defaults for local development. Production
    deployments should use the docker runtime and size
    max_concurrent_environments to the host.

    Attributes:
        runtime: Isolation primitive. "process" runs programs as local child
            processes in their own process group; "docker" runs one container
            per test case.
        max_concurrent_environments: Submissions judged at once (admission
            slots). Each holds at most one live environment.
        admission_timeout_seconds: How long a submission queues for capacity
            before CapacityError.
        host_memory_mb: Memory budget base for admission. None = detect
            via psutil.
        max_output_bytes: stdout ceiling per run; exceeding it is a runtime
            fault.
        max_stderr_bytes: stderr ceiling per run (diagnostics only).
        max_processes: Process ceiling per environment.
        kill_grace_seconds: Bound on reaping a killed process tree.
        provision_timeout_seconds: Deadline for provisioning one environment.
        workdir_root: Parent of per-environment temp dirs. None = system tmp.
        docker_binary: docker CLI used by the docker runtime.
        docker_images: Per-language image overrides.
        health_check_attempts: Runtime health probes before giving up.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    runtime: Literal["process", "docker"] = "process"

    # Admission
    max_concurrent_environments: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENT_ENVIRONMENTS,
        ge=1,
        le=256,
        description="Maximum submissions judged concurrently",
    )
    admission_timeout_seconds: float = Field(
        default=constants.DEFAULT_ADMISSION_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds to wait for capacity before rejecting",
    )
    host_memory_mb: float | None = Field(
        default=None,
        gt=0,
        description="Host memory for the admission budget (auto-detect if None)",
    )

    # Output capture
    max_output_bytes: int = Field(
        default=constants.DEFAULT_MAX_OUTPUT_BYTES,
        ge=1024,
        description="stdout ceiling per run",
    )
    max_stderr_bytes: int = Field(
        default=constants.DEFAULT_MAX_STDERR_BYTES,
        ge=0,
        description="stderr ceiling per run",
    )

    # Process control
    max_processes: int = Field(
        default=constants.DEFAULT_MAX_PROCESSES,
        ge=1,
        description="Process ceiling per environment",
    )
    kill_grace_seconds: float = Field(
        default=constants.DEFAULT_KILL_GRACE_SECONDS,
        gt=0,
        le=30,
        description="Seconds to wait for a killed process tree to exit",
    )
    provision_timeout_seconds: float = Field(
        default=constants.DEFAULT_PROVISION_TIMEOUT_SECONDS,
        gt=0,
        description="Deadline for provisioning one environment",
    )

    # Paths / binaries
    workdir_root: Path | None = Field(
        default=None,
        description="Parent directory for per-environment working directories",
    )
    docker_binary: str = Field(
        default="docker",
        description="docker CLI executable",
    )
    docker_images: dict[Language, str] = Field(
        default_factory=dict,
        description="Per-language image overrides for the docker runtime",
    )

    # Health
    health_check_attempts: int = Field(
        default=constants.HEALTH_CHECK_MAX_ATTEMPTS,
        ge=1,
        le=10,
        description="Runtime health probes before declaring it unavailable",
    )
