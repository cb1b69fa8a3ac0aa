"""
Readiness polling for a freshly launched cluster.
"""
import asyncio

from ..config.loader import ReadinessConfig
from ..utils.exceptions import ClusterStartTimeout
from ..utils.logging import get_logger
from .containers import ContainerRuntime

logger = get_logger(__name__)


async def wait_for_cluster(
    runtime: ContainerRuntime,
    head: str,
    config: ReadinessConfig
) -> int:
    """
    Poll the head's workload manager until it reports ready.

    After the first successful status call, waits the grace period so
    workers can finish joining the head.

    Returns:
        Number of attempts it took

    Raises:
        ClusterStartTimeout: If no attempt succeeded
    """
    logger.info("Waiting for cluster to be ready...")

    for attempt in range(1, config.attempts + 1):
        result = await runtime.workload_status(head, timeout=max(config.interval_seconds, 5))
        if result.ok:
            logger.info(f"Cluster head is responsive (attempt {attempt}/{config.attempts})")
            await asyncio.sleep(config.grace_seconds)
            return attempt

        if attempt % 5 == 0:
            logger.debug(f"Still waiting for cluster... ({attempt}/{config.attempts})")
        await asyncio.sleep(config.interval_seconds)

    raise ClusterStartTimeout(config.attempts, config.interval_seconds)
