"""
Peer discovery on the management network.

Two strategies find the other hosts of a cluster:

- probe: connect to the SSH port of every address in the management
  interface's subnet and keep the hosts that accept.
- mdns: browse the SSH service announcements seen on the management
  interface with avahi-browse.

Both return the local address plus every peer, de-duplicated and sorted as
plain strings, so "10.0.0.10" sorts before "10.0.0.2".
"""
import asyncio
import ipaddress
from typing import Iterable, Iterator, List, Optional, Set

from ..config.loader import DiscoveryConfig, DiscoveryStrategy
from ..execution.runner import CommandRunner
from ..utils.exceptions import InterfaceHasNoAddress, SubnetTooLarge
from ..utils.logging import get_logger
from .interfaces import ipv4_interface, require_tool

logger = get_logger(__name__)

AVAHI_BROWSE = "avahi-browse"


def node_set(local_ip: str, peers: Iterable[str]) -> List[str]:
    """Local address plus peers, de-duplicated and sorted as strings."""
    return sorted(set(peers) | {local_ip})


def candidate_hosts(network: ipaddress.IPv4Interface) -> Iterator[str]:
    """Every host address of the interface's subnet except its own, lazily."""
    local_ip = str(network.ip)
    return (str(ip) for ip in network.network.hosts() if str(ip) != local_ip)


def scan_size(network: ipaddress.IPv4Interface) -> int:
    """Number of peer addresses a probe scan of the subnet would try."""
    hosts = network.network.num_addresses
    if network.network.prefixlen < 31:
        hosts -= 2
    return max(hosts - 1, 0)


async def probe_host(host: str, port: int, timeout: float) -> bool:
    """True if host accepts a TCP connection on port within timeout."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (asyncio.TimeoutError, OSError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def probe_scan(
    hosts: Iterable[str],
    port: int = 22,
    timeout: float = 1.0,
    max_concurrency: int = 256
) -> Set[str]:
    """
    Probe hosts concurrently and return those that accepted.

    A fixed pool of max_concurrency workers pulls addresses from hosts one
    at a time, so hosts may be a lazy iterator over a large subnet. Waits
    for every probe to finish or time out before returning.
    """
    pending = iter(hosts)
    found: Set[str] = set()

    async def worker():
        for host in pending:
            if await probe_host(host, port, timeout):
                logger.info(f"  Found peer: {host}")
                found.add(host)

    await asyncio.gather(*(worker() for _ in range(max_concurrency)))
    return found


def parse_avahi_records(output: str, interface: str) -> Set[str]:
    """
    Extract IPv4 addresses from resolved avahi-browse -p records.

    Resolved records look like
    ``=;eth0;IPv4;host;_ssh._tcp;local;host.local;192.168.1.5;22;""``.
    Only records received on interface are kept.
    """
    addresses: Set[str] = set()
    for line in output.splitlines():
        fields = line.split(";")
        if len(fields) < 9 or fields[0] != "=":
            continue
        if fields[1] != interface or fields[2] != "IPv4":
            continue
        try:
            addresses.add(str(ipaddress.IPv4Address(fields[7])))
        except ValueError:
            logger.debug(f"Ignoring announcement with bad address: {fields[7]!r}")
    return addresses


async def mdns_scan(
    runner: CommandRunner,
    interface: str,
    service_type: str = "_ssh._tcp",
    timeout: float = 15.0
) -> Set[str]:
    """Collect the addresses announcing service_type on interface."""
    require_tool(AVAHI_BROWSE, "discover peers via mDNS")

    result = await runner.run(
        [AVAHI_BROWSE, "-p", "-r", "-t", service_type],
        timeout=timeout,
    )
    if not result.ok:
        logger.warning(f"{AVAHI_BROWSE} failed: {result.describe_failure()}")

    peers = parse_avahi_records(result.stdout, interface)
    for peer in sorted(peers):
        logger.info(f"  Found peer: {peer}")
    return peers


async def discover_nodes(
    runner: CommandRunner,
    interface: str,
    config: Optional[DiscoveryConfig] = None
) -> List[str]:
    """
    Find the cluster nodes reachable on the management interface.

    Args:
        runner: Command runner for tool-based strategies
        interface: Management interface name
        config: Discovery settings

    Returns:
        Sorted, de-duplicated node list that includes the local address

    Raises:
        InterfaceHasNoAddress: The interface has no IPv4 address
        SubnetTooLarge: A probe scan would exceed config.max_scan_hosts
        DiscoveryToolMissing: The strategy's tool is not installed
    """
    config = config or DiscoveryConfig()

    logger.info("Auto-detecting nodes...")
    network = ipv4_interface(interface)
    if network is None:
        raise InterfaceHasNoAddress(interface)

    local_ip = str(network.ip)
    logger.info(f"  Detected Local IP: {local_ip} ({network.with_prefixlen})")

    if config.strategy == DiscoveryStrategy.MDNS:
        logger.info(f"  Browsing {config.service_type} announcements on {interface}...")
        peers = await mdns_scan(runner, interface, config.service_type)
    else:
        size = scan_size(network)
        if size > config.max_scan_hosts:
            raise SubnetTooLarge(str(network.network), size, config.max_scan_hosts)
        logger.info(f"  Scanning {size} addresses for SSH peers on {network.network}...")
        peers = await probe_scan(
            candidate_hosts(network),
            port=config.ssh_port,
            timeout=config.probe_timeout,
            max_concurrency=config.max_concurrent_probes,
        )

    nodes = node_set(local_ip, peers)
    logger.info(f"  Cluster Nodes: {','.join(nodes)}")
    return nodes
