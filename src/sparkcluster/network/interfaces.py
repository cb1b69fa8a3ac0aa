"""
Interface discovery for the data plane and the management network.

The data plane devices (RDMA NICs) are listed with ``ibdev2netdev``, which
also names the netdev each one is paired with. Paired netdevs that carry an
IPv4 address are candidates for the management interface.
"""
import ipaddress
import re
import shutil
import socket
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

import psutil

from ..execution.runner import CommandRunner
from ..utils.exceptions import (
    DiscoveryToolMissing,
    NoActiveDataPlaneDevice,
    NoAddressedCandidate,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

IBDEV2NETDEV = "ibdev2netdev"

# "rocep1s0f1 port 1 ==> enp1s0f1np1 (Up)"
_PAIR_LINE = re.compile(r"^(?P<ib>\S+)\s+port\s+\d+\s+==>\s+(?P<net>\S+)\s+\((?P<state>[^)]*)\)")


@dataclass
class InterfacePair:
    """A data-plane device and the netdev it is paired with."""
    data_plane_device: str
    control_plane_device: str
    has_address: bool = False


@dataclass
class InterfaceSelection:
    """Resolved interfaces handed to every cluster container."""
    management_interface: str
    data_plane_devices: List[str] = field(default_factory=list)
    pairs: List[InterfacePair] = field(default_factory=list)

    @property
    def ib_if(self) -> str:
        return ",".join(self.data_plane_devices)


def parse_device_pairs(output: str) -> List[InterfacePair]:
    """
    Parse ibdev2netdev output, keeping only link-up devices.

    Each data-plane device appears at most once; later lines for an already
    seen device are ignored.
    """
    pairs: List[InterfacePair] = []
    seen = set()
    for line in output.splitlines():
        match = _PAIR_LINE.match(line.strip())
        if not match or match.group("state") != "Up":
            continue
        ib_dev = match.group("ib")
        if ib_dev in seen:
            continue
        seen.add(ib_dev)
        pairs.append(InterfacePair(ib_dev, match.group("net")))
    return pairs


def ipv4_interface(device: str) -> Optional[ipaddress.IPv4Interface]:
    """First IPv4 address of device with its prefix, or None."""
    for addr in psutil.net_if_addrs().get(device, []):
        if addr.family != socket.AF_INET:
            continue
        if addr.netmask:
            return ipaddress.IPv4Interface(f"{addr.address}/{addr.netmask}")
        return ipaddress.IPv4Interface(addr.address)
    return None


def has_ipv4_address(device: str) -> bool:
    return ipv4_interface(device) is not None


def local_addresses() -> Set[str]:
    """All non-loopback IP addresses bound on this host."""
    addresses: Set[str] = set()
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            address = addr.address.split("%", 1)[0]
            try:
                if ipaddress.ip_address(address).is_loopback:
                    continue
            except ValueError:
                continue
            addresses.add(address)
    return addresses


def select_management_interface(candidates: Sequence[str]) -> str:
    """
    Pick the management interface among addressed candidates.

    Prefers the first name without a capital "P". On common data-center NICs
    the partitioned or virtual-function netdevs carry a "P" in their name
    (enP2p1s0f1np1) while the base port does not (enp1s0f1np1). This is a
    naming heuristic only. Falls back to the first candidate.

    Raises:
        NoAddressedCandidate: If candidates is empty
    """
    if not candidates:
        raise NoAddressedCandidate()
    for name in candidates:
        if "P" not in name:
            return name
    return candidates[0]


def require_tool(tool: str, purpose: str) -> str:
    path = shutil.which(tool)
    if not path:
        raise DiscoveryToolMissing(tool, purpose)
    return path


async def list_device_pairs(runner: CommandRunner) -> List[InterfacePair]:
    """Run ibdev2netdev and return link-up pairs with their address state."""
    require_tool(IBDEV2NETDEV, "auto-detect interfaces")

    result = await runner.run([IBDEV2NETDEV], timeout=10)
    if not result.ok:
        logger.warning(f"{IBDEV2NETDEV} failed: {result.describe_failure()}")

    pairs = parse_device_pairs(result.stdout)
    for pair in pairs:
        pair.has_address = has_ipv4_address(pair.control_plane_device)
    return pairs


async def discover_interfaces(
    runner: CommandRunner,
    eth_if: Optional[str] = None,
    ib_if: Optional[str] = None
) -> InterfaceSelection:
    """
    Resolve the management interface and the data-plane device list.

    Either value given by the caller is used as is; detection runs only for
    what is missing.

    Args:
        runner: Command runner used to call ibdev2netdev
        eth_if: Explicit management interface
        ib_if: Explicit comma-separated data-plane devices

    Returns:
        InterfaceSelection

    Raises:
        DiscoveryToolMissing: ibdev2netdev is not installed
        NoActiveDataPlaneDevice: No device reports link up
        NoAddressedCandidate: No paired netdev has an IPv4 address
    """
    explicit_ib = [dev.strip() for dev in ib_if.split(",") if dev.strip()] if ib_if else []

    if eth_if and explicit_ib:
        return InterfaceSelection(eth_if, explicit_ib)

    logger.info("Auto-detecting interfaces...")
    pairs = await list_device_pairs(runner)
    if not pairs:
        raise NoActiveDataPlaneDevice()

    data_plane = explicit_ib or [pair.data_plane_device for pair in pairs]
    if not explicit_ib:
        logger.info(f"  Detected IB_IF: {','.join(data_plane)}")

    management = eth_if
    if not management:
        candidates = [pair.control_plane_device for pair in pairs if pair.has_address]
        management = select_management_interface(candidates)
        logger.info(f"  Detected ETH_IF: {management}")

    return InterfaceSelection(management, data_plane, pairs)
