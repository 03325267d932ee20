"""Runtime configuration from environment variables."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from sandbox_judge import constants
from sandbox_judge.config import JudgeConfig
from sandbox_judge.models import Language


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with the
    SANDBOX_JUDGE_ prefix.
    Example: SANDBOX_JUDGE_RUNTIME=docker
    """

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_JUDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Runtime
    runtime: Literal["process", "docker"] = "process"
    docker_binary: str = "docker"
    docker_image_python: str | None = None
    docker_image_javascript: str | None = None
    workdir_root: Path | None = None

    # Limits
    max_concurrent_environments: int = constants.DEFAULT_MAX_CONCURRENT_ENVIRONMENTS
    admission_timeout_seconds: float = constants.DEFAULT_ADMISSION_TIMEOUT_SECONDS
    max_output_bytes: int = constants.DEFAULT_MAX_OUTPUT_BYTES
    max_stderr_bytes: int = constants.DEFAULT_MAX_STDERR_BYTES
    max_processes: int = constants.DEFAULT_MAX_PROCESSES
    # None = auto-detect via psutil
    host_memory_mb: float | None = None

    # Process control
    kill_grace_seconds: float = constants.DEFAULT_KILL_GRACE_SECONDS
    provision_timeout_seconds: float = constants.DEFAULT_PROVISION_TIMEOUT_SECONDS
    health_check_attempts: int = constants.HEALTH_CHECK_MAX_ATTEMPTS

    def to_config(self) -> JudgeConfig:
        """Build a validated JudgeConfig from these settings."""
        images: dict[Language, str] = {}
        if self.docker_image_python:
            images[Language.PYTHON] = self.docker_image_python
        if self.docker_image_javascript:
            images[Language.JAVASCRIPT] = self.docker_image_javascript
        return JudgeConfig(
            runtime=self.runtime,
            docker_binary=self.docker_binary,
            docker_images=images,
            workdir_root=self.workdir_root,
            max_concurrent_environments=self.max_concurrent_environments,
            admission_timeout_seconds=self.admission_timeout_seconds,
            max_output_bytes=self.max_output_bytes,
            max_stderr_bytes=self.max_stderr_bytes,
            max_processes=self.max_processes,
            host_memory_mb=self.host_memory_mb,
            kill_grace_seconds=self.kill_grace_seconds,
            provision_timeout_seconds=self.provision_timeout_seconds,
            health_check_attempts=self.health_check_attempts,
        )
