"""
Cluster lifecycle orchestration.

Drives the start, stop, status and exec actions against a resolved topology.
No cluster state is kept between invocations: every action reads the hosts'
container lists again.

The start guard is check-then-act. Two operators starting the same cluster
at the same moment can both pass it.
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.loader import ClusterConfig, LifecycleAction
from ..execution.runner import CommandRunner
from ..network.interfaces import InterfaceSelection
from ..utils.exceptions import AlreadyRunning, CommandError
from ..utils.logging import get_logger
from ..utils.process_manager import CleanupGuard
from .containers import ContainerRuntime, Role
from .readiness import wait_for_cluster
from .topology import Topology


@dataclass
class HostStatus:
    """Observed state of one host's cluster process."""
    host: str
    role: Role
    running: bool
    workload_status: Optional[str] = None
    workload_error: Optional[str] = None


@dataclass
class StatusReport:
    """Observed state of the whole cluster."""
    container_name: str
    head: HostStatus
    workers: List[HostStatus] = field(default_factory=list)

    @property
    def hosts(self) -> List[HostStatus]:
        return [self.head] + list(self.workers)


def format_status(report: StatusReport) -> str:
    """Render a status report the way operators read it."""
    lines = []
    for status in report.hosts:
        label = "HEAD" if status.role == Role.HEAD else "WORKER"
        state = "RUNNING" if status.running else "NOT running"
        lines.append(f"[{label}] {status.host}: Container '{report.container_name}' is {state}.")
        if status.role == Role.HEAD and status.running:
            lines.append("--- Ray Status ---")
            if status.workload_error is not None:
                lines.append(f"Failed to get ray status: {status.workload_error}")
            else:
                lines.append((status.workload_status or "").rstrip())
            lines.append("------------------")
    return "\n".join(lines)


class ClusterOrchestrator:
    """
    Runs lifecycle actions for one cluster.

    The head is the local host and is driven with the local container
    runtime; workers are driven over SSH.
    """

    def __init__(
        self,
        config: ClusterConfig,
        topology: Topology,
        interfaces: Optional[InterfaceSelection] = None,
        runner: Optional[CommandRunner] = None
    ):
        """
        Args:
            config: Cluster configuration
            topology: Resolved head and workers
            interfaces: Interfaces passed to launched containers (start/exec)
            runner: Command runner (created from config.ssh if omitted)
        """
        self.config = config
        self.topology = topology
        self.interfaces = interfaces
        self.runner = runner or CommandRunner(config.ssh)
        self.runtime = ContainerRuntime(self.runner, config, local_host=topology.head)
        self.logger = get_logger(__name__)

    async def run(
        self,
        action: LifecycleAction,
        command: Optional[str] = None,
        daemon: bool = False
    ) -> int:
        """
        Run one lifecycle action.

        Returns:
            Process exit code for the invocation
        """
        if action == LifecycleAction.STOP:
            await self.stop()
            return 0
        if action == LifecycleAction.STATUS:
            report = await self.status()
            print(format_status(report))
            return 0
        if action == LifecycleAction.EXEC:
            if not command:
                raise ValueError("exec needs a command to run")
            return await self.exec(command)
        return await self.start(daemon=daemon)

    async def running_hosts(self) -> List[str]:
        """Hosts, head first, that already run a container with the cluster's name."""
        hosts = self.topology.hosts
        running = await asyncio.gather(*(self.runtime.is_running(host) for host in hosts))
        return [host for host, is_running in zip(hosts, running) if is_running]

    async def ensure_not_running(self):
        """
        Refuse to start over an existing cluster.

        Raises:
            AlreadyRunning: If any host runs a container with the cluster's name
        """
        running = await self.running_hosts()
        for host in running:
            role = "head" if host == self.topology.head else "worker"
            self.logger.warning(
                f"Container '{self.runtime.name}' is already running on {role} node ({host})"
            )
        if running:
            raise AlreadyRunning(self.runtime.name, running)

    async def launch(self):
        """
        Launch the head, then every worker.

        Worker launches run concurrently; every launch is awaited before the
        first failure is raised.

        Raises:
            CommandError: If any container failed to start
        """
        if self.interfaces is None:
            raise ValueError("Interfaces must be resolved before launching")

        head = self.topology.head
        self.logger.info(f"Starting Head Node on {head}...")
        await self.runtime.launch(head, Role.HEAD, self.interfaces)

        for worker in self.topology.workers:
            self.logger.info(f"Starting Worker Node on {worker}...")

        results = await asyncio.gather(
            *(
                self.runtime.launch(worker, Role.WORKER, self.interfaces, head_ip=head)
                for worker in self.topology.workers
            ),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, CommandError):
                raise failure
            self.logger.error(str(failure))
        if failures:
            raise failures[0]

    async def start_cluster(self, rollback: bool = False):
        """
        Guarded launch followed by the readiness wait.

        Args:
            rollback: Stop everything if a container fails to launch
        """
        await self.ensure_not_running()
        try:
            await self.launch()
        except CommandError:
            if rollback:
                await self.stop()
            raise
        await wait_for_cluster(self.runtime, self.topology.head, self.config.readiness)

    async def start(self, daemon: bool = False) -> int:
        """
        Start the cluster.

        In daemon mode the cluster outlives this process. Otherwise the head's
        output is streamed until it ends or the operator interrupts, and the
        cluster is stopped on the way out.
        """
        if daemon:
            await self.start_cluster(rollback=True)
            self.logger.info("Cluster started in background (Daemon mode).")
            return 0

        # The guard is armed only after the idempotency check so a refused
        # start never stops a cluster someone else is running.
        await self.ensure_not_running()

        async with CleanupGuard(self.stop) as guard:
            await self.launch()
            await wait_for_cluster(self.runtime, self.topology.head, self.config.readiness)
            self.logger.info("Cluster started. Tailing logs from head node...")
            self.logger.info("Press Ctrl+C to stop the cluster.")
            await self.runner.run_attached(self.runtime.logs_argv())

        if guard.interrupted_by is not None:
            self.logger.info(f"Cluster stopped after {guard.interrupted_by.name}.")
        return 0

    async def exec(self, command: str) -> int:
        """
        Start the cluster, run command in the head container, then stop it.

        With exec_reuse_running set, an already running head is used as is.

        Returns:
            The command's exit code, or 128+signal if interrupted
        """
        reuse = self.config.exec_reuse_running and await self.runtime.is_running(self.topology.head)
        if reuse:
            self.logger.info(f"Reusing running container '{self.runtime.name}' on head node")
        else:
            await self.ensure_not_running()

        returncode = 0
        async with CleanupGuard(self.stop) as guard:
            if not reuse:
                await self.launch()
                await wait_for_cluster(self.runtime, self.topology.head, self.config.readiness)
            self.logger.info(f"Executing command on head node: {command}")
            returncode = await self.runner.run_attached(self.runtime.exec_argv(command))
            if returncode != 0:
                self.logger.warning(f"Command exited with code {returncode}")

        if guard.exit_code is not None:
            return guard.exit_code
        return returncode

    async def stop(self):
        """
        Stop the cluster process on every host.

        Best-effort: every host is attempted and failures are only logged.
        """
        self.logger.info("Stopping cluster...")
        self.logger.info(f"Stopping head node ({self.topology.head})...")
        for worker in self.topology.workers:
            self.logger.info(f"Stopping worker node ({worker})...")

        results = await asyncio.gather(
            *(self.runtime.stop(host) for host in self.topology.hosts),
            return_exceptions=True,
        )

        for host, result in zip(self.topology.hosts, results):
            if isinstance(result, Exception):
                self.logger.warning(f"Failed to stop container on {host}: {result}")
            elif not result.ok:
                self.logger.warning(
                    f"Failed to stop container on {host}: {result.describe_failure()}"
                )

        self.logger.info("Cluster stopped.")

    async def status(self) -> StatusReport:
        """
        Observe the cluster without changing it.

        The head also reports the workload manager's own status; failing to
        get it is recorded in the report, not raised.
        """
        self.logger.info("Checking status...")
        head = self.topology.head

        head_running, *workers_running = await asyncio.gather(
            *(self.runtime.is_running(host) for host in self.topology.hosts)
        )

        head_status = HostStatus(head, Role.HEAD, head_running)
        if head_running:
            result = await self.runtime.workload_status(
                head, timeout=self.config.ssh.command_timeout
            )
            if result.ok:
                head_status.workload_status = result.stdout
            else:
                head_status.workload_error = result.describe_failure()

        workers = [
            HostStatus(worker, Role.WORKER, running)
            for worker, running in zip(self.topology.workers, workers_running)
        ]
        return StatusReport(self.runtime.name, head_status, workers)
