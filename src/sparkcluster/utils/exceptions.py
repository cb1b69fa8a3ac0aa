"""
Custom exceptions for sparkcluster.
"""
from typing import Iterable


class SparkClusterError(Exception):
    """Base exception for all sparkcluster errors."""
    pass


class ConfigurationError(SparkClusterError):
    """The invocation cannot proceed with the given configuration."""
    pass


class ConfigError(ConfigurationError):
    """Configuration file errors."""
    pass


class DiscoveryToolMissing(ConfigurationError):
    """A host tool needed for auto-detection is not installed."""

    def __init__(self, tool: str, purpose: str = ""):
        self.tool = tool
        message = f"'{tool}' not found in PATH"
        if purpose:
            message += f". Cannot {purpose}"
        super().__init__(message)


class NodesRequired(ConfigurationError):
    """No nodes were given and none could be discovered."""

    def __init__(self):
        super().__init__(
            "Nodes argument (-n) is mandatory or could not be auto-detected"
        )


class DiscoveryError(SparkClusterError):
    """Base exception for interface and peer discovery failures."""
    pass


class NoActiveDataPlaneDevice(DiscoveryError):
    """No data-plane device reports link up."""

    def __init__(self):
        super().__init__("No active IB interfaces found")


class NoAddressedCandidate(DiscoveryError):
    """Link-up devices exist but none of their paired netdevs has an address."""

    def __init__(self):
        super().__init__("No active IB-associated interfaces have IP addresses")


class InterfaceHasNoAddress(DiscoveryError):
    """The management interface has no IPv4 address."""

    def __init__(self, interface: str):
        self.interface = interface
        super().__init__(f"Could not determine IP/CIDR for interface {interface}")


class SubnetTooLarge(DiscoveryError):
    """The management subnet is too large to probe address by address."""

    def __init__(self, network: str, size: int, limit: int):
        self.network = network
        self.size = size
        self.limit = limit
        super().__init__(
            f"Subnet {network} has {size} candidate addresses, more than the "
            f"probe limit of {limit}. Pass the nodes with -n or use --discovery mdns"
        )


class TopologyError(SparkClusterError):
    """Base exception for role resolution errors."""
    pass


class HeadNotLocal(TopologyError):
    """None of the nodes is bound to this host."""

    def __init__(self, nodes: Iterable[str]):
        self.nodes = list(nodes)
        super().__init__(
            "Could not determine Head IP. This command must be run on one of "
            f"the nodes: {', '.join(self.nodes)}"
        )


class AmbiguousHead(TopologyError):
    """More than one node is bound to this host."""

    def __init__(self, matches: Iterable[str]):
        self.matches = list(matches)
        super().__init__(
            f"Several nodes are local addresses of this host: {', '.join(self.matches)}"
        )


class ConnectivityError(SparkClusterError):
    """Base exception for remote connectivity errors."""
    pass


class WorkerUnreachable(ConnectivityError):
    """Passwordless SSH to a worker failed."""

    def __init__(self, host: str, reason: str = ""):
        self.host = host
        self.reason = reason
        message = f"Passwordless SSH to {host} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ConflictError(SparkClusterError):
    """Base exception for state conflicts on the hosts."""
    pass


class AlreadyRunning(ConflictError):
    """Cluster containers are already running on one or more hosts."""

    def __init__(self, container_name: str, hosts: Iterable[str]):
        self.container_name = container_name
        self.hosts = list(hosts)
        super().__init__(
            f"Container '{container_name}' is already running on "
            f"{', '.join(self.hosts)}. Please stop it first or use a different name"
        )


class ReadinessTimeoutError(SparkClusterError):
    """The cluster did not become ready within its polling budget."""
    pass


class ClusterStartTimeout(ReadinessTimeoutError):
    """The head never reported ready."""

    def __init__(self, attempts: int, interval: float):
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            f"Timeout waiting for cluster to start ({attempts} attempts, {interval:g}s apart)"
        )


class CommandError(SparkClusterError):
    """A command that changes host state failed."""

    def __init__(self, host: str, command: str, returncode: int, stderr: str = ""):
        self.host = host
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command on {host} failed with exit code {returncode}: {command}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)
