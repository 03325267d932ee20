"""Judge - entry point of the judge engine.

Owns the sandbox runtime and the capacity pool, and exposes judging to the
surrounding contest/problem service.

Example:
    ```python
    from sandbox_judge import Judge, ProblemDefinition, SubmissionRequest

    async with Judge() as judge:
        verdict = await judge.judge_request(
            SubmissionRequest(code="print(int(input()) * 2)", language="python"),
            problem,
        )
        print(verdict.status, verdict.points_earned)
    ```

The engine is stateless between submissions; only capacity bookkeeping is
shared. One Judge may serve any number of concurrent judge() calls.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from sandbox_judge._logging import get_logger
from sandbox_judge.admission import AdmissionController
from sandbox_judge.config import JudgeConfig
from sandbox_judge.docker_runtime import DockerSandboxRuntime
from sandbox_judge.exceptions import RuntimeConfigError
from sandbox_judge.models import Submission
from sandbox_judge.orchestrator import SubmissionOrchestrator, ensure_runtime_healthy
from sandbox_judge.process_runtime import ProcessSandboxRuntime

if TYPE_CHECKING:
    from types import TracebackType

    from sandbox_judge.models import ProblemDefinition, SubmissionRequest, Verdict
    from sandbox_judge.sandbox import SandboxRuntime

logger = get_logger(__name__)


def create_runtime(config: JudgeConfig) -> SandboxRuntime:
    """Build the sandbox runtime selected by config.

    Raises:
        RuntimeConfigError: Unknown runtime name
    """
    match config.runtime:
        case "process":
            return ProcessSandboxRuntime(
                workdir_root=config.workdir_root,
                kill_grace_seconds=config.kill_grace_seconds,
            )
        case "docker":
            return DockerSandboxRuntime(
                docker_binary=config.docker_binary,
                images=config.docker_images,
                workdir_root=config.workdir_root,
                kill_grace_seconds=config.kill_grace_seconds,
                command_timeout_seconds=config.provision_timeout_seconds,
            )
        case _:
            raise RuntimeConfigError(f"Unknown sandbox runtime: {config.runtime}", context={"runtime": config.runtime})


class Judge:
    """Judges submissions in sandboxed environments.

    Args:
        config: Engine configuration (defaults to JudgeConfig())
        runtime: Sandbox runtime; built from config when None
        admission: Capacity pool; built from config when None. Pass one
            shared controller to bound several Judges together.
    """

    def __init__(
        self,
        config: JudgeConfig | None = None,
        *,
        runtime: SandboxRuntime | None = None,
        admission: AdmissionController | None = None,
    ) -> None:
        self.config = config or JudgeConfig()
        self._runtime = runtime or create_runtime(self.config)
        self._admission = admission or AdmissionController(
            max_concurrent=self.config.max_concurrent_environments,
            host_memory_mb=self.config.host_memory_mb,
        )
        self._orchestrator = SubmissionOrchestrator(self._runtime, self.config, self._admission)
        self._started = False

    @property
    def runtime(self) -> SandboxRuntime:
        return self._runtime

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    async def start(self) -> None:
        """Probe host capacity and runtime health. Idempotent.

        Raises:
            SandboxRuntimeUnavailableError: The sandbox runtime is down
        """
        if self._started:
            return
        await self._admission.start()
        await ensure_runtime_healthy(self._runtime, attempts=self.config.health_check_attempts)
        self._started = True
        logger.info(
            "Judge started",
            extra={"runtime": self._runtime.name, "max_concurrent": self.config.max_concurrent_environments},
        )

    async def close(self) -> None:
        """Destroy any environment still alive. Safe to call multiple times."""
        leftovers = self._runtime.active_environments()
        if leftovers:
            logger.warning("Destroying leftover environments", extra={"count": len(leftovers)})
        for env in leftovers.values():
            await self._runtime.destroy(env)
        self._started = False

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def judge(self, submission: Submission) -> Verdict:
        """Judge one submission.

        Raises:
            UnsupportedLanguageError: No environment for the declared language
            CapacityError: Not admitted within the admission timeout
            SandboxRuntimeUnavailableError: The sandbox runtime is down
        """
        await self.start()
        return await self._orchestrator.judge(submission)

    async def judge_request(
        self,
        request: SubmissionRequest,
        problem: ProblemDefinition,
        *,
        submission_id: str | None = None,
    ) -> Verdict:
        """Judge a user's request against a problem definition."""
        submission = Submission.from_request(request, problem, submission_id=submission_id)
        return await self.judge(submission)


async def judge(
    request: SubmissionRequest,
    problem: ProblemDefinition,
    *,
    config: JudgeConfig | None = None,
) -> Verdict:
    """Judge one request with a one-shot Judge."""
    async with Judge(config) as engine:
        return await engine.judge_request(request, problem)
