"""Resource cleanup utilities for environment lifecycle management.

Cleanup operations that log errors but don't fail. Used by the sandbox
runtimes' destroy() paths, which must run on every exit path.
"""

import asyncio
import contextlib
import shutil
from pathlib import Path

import aiofiles.os

from sandbox_judge._logging import get_logger
from sandbox_judge.platform_utils import ProcessWrapper, wait_for_processes_gone

logger = get_logger(__name__)


async def cleanup_process(
    proc: ProcessWrapper | None,
    name: str,
    context_id: str,
    kill_timeout: float = 2.0,
) -> bool:
    """Kill a sandboxed program's whole process tree and reap it.

    There is no SIGTERM phase: judged programs get no chance to linger.

    Args:
        proc: ProcessWrapper to kill (None safe - returns immediately)
        name: Process name for logging (e.g., "solution.py", "docker start")
        context_id: Context for logging (env_id)
        kill_timeout: Seconds to wait for the tree to exit after SIGKILL

    Returns:
        True if the tree is gone, False if issues occurred
    """
    if proc is None:
        return True

    try:
        children = await proc.descendants()

        # Even when the leader has exited, background members of its process
        # group may still be running: always signal the group.
        logger.debug(
            f"Killing {name} process tree",
            extra={"context_id": context_id, "pid": proc.pid, "returncode": proc.returncode},
        )
        await proc.kill_tree()

        try:
            await proc.wait_with_timeout(timeout=kill_timeout)
        except TimeoutError:
            logger.error(
                f"{name} didn't exit after SIGKILL",
                extra={"context_id": context_id, "kill_timeout": kill_timeout, "pid": proc.pid},
            )
            return False

        alive = await wait_for_processes_gone(children, timeout=kill_timeout)
        if alive:
            logger.error(
                f"{name} descendants survived SIGKILL",
                extra={"context_id": context_id, "pids": [p.pid for p in alive]},
            )
            return False

        return True

    except ProcessLookupError:
        logger.debug(f"{name} already dead (ProcessLookupError)", extra={"context_id": context_id})
        return True

    except Exception as e:
        logger.error(
            f"{name} cleanup error",
            extra={"context_id": context_id, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_workdir(
    workdir: Path | None,
    context_id: str,
) -> bool:
    """Remove a per-environment working directory and everything in it.

    Silently succeeds if the directory doesn't exist.

    Args:
        workdir: Directory to remove (None safe - returns immediately)
        context_id: Context for logging (env_id)

    Returns:
        True if the directory is gone, False if issues occurred
    """
    if workdir is None:
        return True

    try:
        if not await aiofiles.os.path.exists(workdir):
            return True
        await asyncio.to_thread(shutil.rmtree, workdir)
        logger.debug("workdir removed", extra={"context_id": context_id, "path": str(workdir)})
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            "workdir removal error",
            extra={"context_id": context_id, "path": str(workdir), "error": str(e), "error_type": type(e).__name__},
        )
        return False


async def cleanup_container(
    docker_binary: str,
    container_name: str | None,
    context_id: str,
    timeout: float = 10.0,
) -> bool:
    """Force-remove a container (kills every process inside it).

    Silently succeeds if the container doesn't exist.

    Args:
        docker_binary: docker CLI executable
        container_name: Container to remove (None safe - returns immediately)
        context_id: Context for logging (env_id)
        timeout: Seconds to wait for the docker CLI

    Returns:
        True if the container is gone, False if issues occurred
    """
    if container_name is None:
        return True

    try:
        proc = await asyncio.create_subprocess_exec(
            docker_binary,
            "rm",
            "--force",
            container_name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        async with asyncio.timeout(timeout):
            _, stderr = await proc.communicate()
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        logger.error("container removal timed out", extra={"context_id": context_id, "container": container_name})
        return False
    except OSError as e:
        logger.error(
            "container removal error",
            extra={"context_id": context_id, "container": container_name, "error": str(e)},
        )
        return False

    message = stderr.decode(errors="replace").strip()
    if proc.returncode != 0 and "No such container" not in message:
        logger.error(
            "container removal failed",
            extra={"context_id": context_id, "container": container_name, "stderr": message},
        )
        return False

    logger.debug("container removed", extra={"context_id": context_id, "container": container_name})
    return True
