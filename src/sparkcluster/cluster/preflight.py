"""
Connectivity checks run before touching any worker.
"""
import asyncio
from typing import Optional

from ..execution.runner import CommandRunner
from ..utils.exceptions import WorkerUnreachable
from ..utils.logging import get_logger
from .topology import Topology

logger = get_logger(__name__)


async def check_worker_connectivity(
    runner: CommandRunner,
    topology: Topology,
    timeout: Optional[float] = None
) -> None:
    """
    Verify passwordless SSH works to every worker.

    All workers are checked concurrently; the first unreachable worker in
    topology order is reported.

    Raises:
        WorkerUnreachable: If any worker cannot run a no-op command
    """
    if not topology.workers:
        return

    timeout = timeout or runner.ssh_config.preflight_timeout
    logger.info("Checking SSH connectivity to worker nodes...")

    results = await asyncio.gather(
        *(runner.run_remote(worker, ["true"], timeout=timeout) for worker in topology.workers)
    )

    for result in results:
        if not result.ok:
            logger.error(
                f"  SSH to {result.host} failed. Please ensure SSH keys are "
                "configured and the host is reachable."
            )
            raise WorkerUnreachable(result.host, result.describe_failure())
        logger.info(f"  SSH to {result.host}: OK")
