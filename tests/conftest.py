"""
Shared pytest fixtures and configuration for sparkcluster tests.

This module provides common fixtures used across all test suites including:
- Cluster configurations with fast readiness polling
- A scripted command runner that simulates docker and ssh on a set of hosts
- Fake psutil interface tables
"""
import shlex
import socket
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from sparkcluster.cluster.topology import Topology
from sparkcluster.config.loader import ClusterConfig, ReadinessConfig
from sparkcluster.execution.runner import LOCALHOST, CommandResult, CommandRunner
from sparkcluster.network.interfaces import InterfaceSelection


def inet(address: str, netmask: Optional[str] = None):
    """Stand-in for a psutil snicaddr IPv4 entry."""
    return SimpleNamespace(family=socket.AF_INET, address=address, netmask=netmask)


def inet6(address: str):
    """Stand-in for a psutil snicaddr IPv6 entry."""
    return SimpleNamespace(family=socket.AF_INET6, address=address, netmask=None)


class FakeHosts:
    """
    Docker state of a set of hosts.

    Answers the docker and ssh commands the orchestrator issues: container
    listing, run, stop, exec of the status command, and the ssh no-op.
    """

    def __init__(self, hosts: Sequence[str]):
        self.containers: Dict[str, Set[str]] = {host: set() for host in hosts}
        self.unreachable: Set[str] = set()
        self.failing_launch: Set[str] = set()
        self.ready_after = 1
        self.status_calls = 0

    def handle(self, host: str, argv: List[str]) -> CommandResult:
        if host in self.unreachable:
            return CommandResult(host, argv, 255, stderr="ssh: connect to host: No route to host")

        if argv == ["true"]:
            return CommandResult(host, argv, 0)
        if argv[0] != "docker":
            return CommandResult(host, argv, 127, stderr=f"{argv[0]}: command not found")

        running = self.containers.setdefault(host, set())
        verb = argv[1]

        if verb == "ps":
            return CommandResult(host, argv, 0, stdout="".join(f"{n}\n" for n in sorted(running)))

        if verb == "run":
            name = argv[argv.index("--name") + 1]
            if host in self.failing_launch:
                return CommandResult(host, argv, 125, stderr="docker: Error response from daemon")
            if name in running:
                return CommandResult(host, argv, 125, stderr="Conflict. The container name is already in use")
            running.add(name)
            return CommandResult(host, argv, 0, stdout="f00dcafe\n")

        if verb == "stop":
            name = argv[2]
            if name not in running:
                return CommandResult(host, argv, 1, stderr=f"Error: No such container: {name}")
            running.discard(name)
            return CommandResult(host, argv, 0, stdout=f"{name}\n")

        if verb == "exec":
            name = argv[2]
            if name not in running:
                return CommandResult(host, argv, 1, stderr=f"Error: No such container: {name}")
            self.status_calls += 1
            if self.status_calls >= self.ready_after:
                return CommandResult(host, argv, 0, stdout="Active:\n 2 node_0001\n")
            return CommandResult(host, argv, 1, stderr="ConnectionError: Could not find any running Ray instance")

        return CommandResult(host, argv, 1, stderr=f"unknown docker verb {verb}")


class ScriptedRunner(CommandRunner):
    """
    CommandRunner that never spawns processes.

    Local commands run on ``local_host``; ssh commands are unwrapped and run on
    their target host. Every call is recorded as (host, argv).
    """

    def __init__(self, fake_hosts: FakeHosts, local_host: str, attached_returncode: int = 0):
        super().__init__()
        self.fake_hosts = fake_hosts
        self.local_host = local_host
        self.attached_returncode = attached_returncode
        self.calls: List[Tuple[str, List[str]]] = []
        self.attached: List[List[str]] = []

    async def run(self, argv, timeout=None, host=LOCALHOST):
        argv = list(argv)
        if argv[0] == "ssh":
            target = argv[-2]
            remote = shlex.split(argv[-1])
        else:
            target = self.local_host if host == LOCALHOST else host
            remote = argv
        self.calls.append((target, remote))
        result = self.fake_hosts.handle(target, remote)
        result.argv = argv
        return result

    async def run_attached(self, argv):
        self.attached.append(list(argv))
        return self.attached_returncode

    def mutations(self) -> List[Tuple[str, List[str]]]:
        """Calls that change container state."""
        return [(h, a) for h, a in self.calls if a[:1] == ["docker"] and a[1] in ("run", "stop")]


@pytest.fixture
def head_ip() -> str:
    return "10.0.0.2"


@pytest.fixture
def worker_ips() -> List[str]:
    return ["10.0.0.1", "10.0.0.3"]


@pytest.fixture
def topology(head_ip, worker_ips) -> Topology:
    return Topology(head=head_ip, workers=list(worker_ips))


@pytest.fixture
def fake_hosts(head_ip, worker_ips) -> FakeHosts:
    return FakeHosts([head_ip] + list(worker_ips))


@pytest.fixture
def scripted_runner(fake_hosts, head_ip) -> ScriptedRunner:
    return ScriptedRunner(fake_hosts, local_host=head_ip)


@pytest.fixture
def cluster_config() -> ClusterConfig:
    """Configuration with instant readiness polling."""
    return ClusterConfig(
        container_name="x",
        docker_args=["-e", "NCCL_DEBUG=INFO"],
        readiness=ReadinessConfig(attempts=3, interval_seconds=0, grace_seconds=0),
    )


@pytest.fixture
def interfaces() -> InterfaceSelection:
    return InterfaceSelection("enp1s0f1np1", ["rocep1s0f1", "roceP2p1s0f1"])


@pytest.fixture
def ibdev2netdev_output() -> str:
    return (
        "rocep1s0f0 port 1 ==> enp1s0f0np0 (Down)\n"
        "rocep1s0f1 port 1 ==> enp1s0f1np1 (Up)\n"
        "roceP2p1s0f0 port 1 ==> enP2p1s0f0np0 (Down)\n"
        "roceP2p1s0f1 port 1 ==> enP2p1s0f1np1 (Up)\n"
    )
