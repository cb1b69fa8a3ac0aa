"""
Container runtime commands for cluster processes.

A cluster process is the container named ``container_name`` on one host.
The head host is driven with the local docker CLI, every other host through
SSH. Nothing is cached: presence is always read back from ``docker ps``.
"""
from enum import Enum
from typing import List, Optional, Sequence

from ..config.loader import ClusterConfig
from ..execution.runner import CommandResult, CommandRunner
from ..network.interfaces import InterfaceSelection
from ..utils.exceptions import CommandError
from ..utils.logging import get_logger

DOCKER = "docker"


class Role(str, Enum):
    """Role argument understood by the container entrypoint."""
    HEAD = "head"
    WORKER = "node"


class ContainerRuntime:
    """Runs docker commands for one cluster against local or remote hosts."""

    def __init__(self, runner: CommandRunner, config: ClusterConfig, local_host: str):
        """
        Args:
            runner: Command runner for local and SSH commands
            config: Cluster configuration (image, name, docker args)
            local_host: Address of the host this process runs on
        """
        self.runner = runner
        self.config = config
        self.local_host = local_host
        self.logger = get_logger(__name__)

    @property
    def name(self) -> str:
        return self.config.container_name

    def is_local(self, host: str) -> bool:
        return host == self.local_host

    async def _docker(
        self,
        host: str,
        args: Sequence[str],
        timeout: Optional[float] = None
    ) -> CommandResult:
        argv = [DOCKER, *args]
        if self.is_local(host):
            return await self.runner.run(argv, timeout=timeout, host=host)
        return await self.runner.run_remote(host, argv, timeout=timeout)

    def launch_args(
        self,
        role: Role,
        host_ip: str,
        interfaces: InterfaceSelection,
        head_ip: Optional[str] = None
    ) -> List[str]:
        """docker arguments that start the cluster process for role on host_ip."""
        args = [
            "run", "-d", "--privileged", "--gpus", "all", "--rm",
            "--ipc=host", "--network", "host",
            "--name", self.name,
            *self.config.launch_docker_args(),
            self.config.image,
            *self.config.entrypoint,
            "--role", role.value,
            "--host-ip", host_ip,
            "--eth-if", interfaces.management_interface,
            "--ib-if", interfaces.ib_if,
        ]
        if role == Role.WORKER:
            if not head_ip:
                raise ValueError("Worker containers need the head IP")
            args += ["--head-ip", head_ip]
        return args

    async def is_running(self, host: str) -> bool:
        """Whether a container with the cluster's name is running on host."""
        result = await self._docker(
            host,
            ["ps", "--format", "{{.Names}}"],
            timeout=self.runner.ssh_config.command_timeout,
        )
        if not result.ok:
            self.logger.warning(
                f"Could not list containers on {host}: {result.describe_failure()}"
            )
            return False
        return self.name in {line.strip() for line in result.stdout.splitlines()}

    async def launch(
        self,
        host: str,
        role: Role,
        interfaces: InterfaceSelection,
        head_ip: Optional[str] = None
    ) -> CommandResult:
        """
        Start the cluster process on host.

        Raises:
            CommandError: If docker run fails
        """
        args = self.launch_args(role, host, interfaces, head_ip)
        result = await self._docker(host, args, timeout=self.runner.ssh_config.command_timeout)
        if not result.ok:
            raise CommandError(host, result.command, result.returncode, result.describe_failure())
        return result

    async def stop(self, host: str) -> CommandResult:
        """Stop the cluster process on host. Failures are returned, not raised."""
        return await self._docker(
            host,
            ["stop", self.name],
            timeout=self.runner.ssh_config.command_timeout,
        )

    async def workload_status(self, host: str, timeout: Optional[float] = None) -> CommandResult:
        """Ask the workload manager inside the container for its status."""
        return await self._docker(
            host,
            ["exec", self.name, *self.config.readiness.status_command],
            timeout=timeout,
        )

    def exec_argv(self, command: str) -> List[str]:
        """Local argv that runs command interactively in the head container."""
        return [DOCKER, "exec", "-it", self.name, "bash", "-i", "-c", command]

    def logs_argv(self) -> List[str]:
        """Local argv that follows the head container's output."""
        return [DOCKER, "logs", "-f", self.name]
