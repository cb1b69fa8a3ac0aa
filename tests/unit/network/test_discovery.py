"""
Unit tests for peer discovery.

Tests node ordering, subnet probing (fan-out, timeouts, idempotence),
avahi record parsing and strategy selection.
"""
import asyncio
import ipaddress
import socket

import pytest
from unittest.mock import AsyncMock, patch

from sparkcluster.config.loader import DiscoveryConfig, DiscoveryStrategy
from sparkcluster.execution.runner import CommandResult, CommandRunner
from sparkcluster.network.discovery import (
    candidate_hosts,
    discover_nodes,
    node_set,
    parse_avahi_records,
    probe_host,
    probe_scan,
    scan_size,
)
from sparkcluster.utils.exceptions import (
    DiscoveryToolMissing,
    InterfaceHasNoAddress,
    SubnetTooLarge,
)

MODULE = "sparkcluster.network.discovery"


def unused_port() -> int:
    """A local TCP port nobody listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestNodeSet:

    def test_sorted_as_strings(self):
        nodes = node_set("10.0.0.2", ["10.0.0.10", "10.0.0.1"])
        assert nodes == ["10.0.0.1", "10.0.0.10", "10.0.0.2"]

    def test_deduplicates_and_keeps_local(self):
        nodes = node_set("10.0.0.5", ["10.0.0.7", "10.0.0.7", "10.0.0.5"])
        assert nodes == ["10.0.0.5", "10.0.0.7"]

    def test_local_only(self):
        assert node_set("192.168.1.4", []) == ["192.168.1.4"]


def test_candidate_hosts_exclude_local_network_and_broadcast():
    iface = ipaddress.IPv4Interface("10.0.0.2/29")
    hosts = list(candidate_hosts(iface))

    assert hosts == ["10.0.0.1", "10.0.0.3", "10.0.0.4", "10.0.0.5", "10.0.0.6"]


@pytest.mark.parametrize("cidr,size", [
    ("10.0.0.2/29", 5),
    ("10.0.0.2/24", 253),
    ("10.0.0.2/16", 65533),
    ("10.0.0.2/31", 1),
    ("10.0.0.2/32", 0),
])
def test_scan_size_matches_candidates(cidr, size):
    iface = ipaddress.IPv4Interface(cidr)

    assert scan_size(iface) == size
    if 2 < size < 1000:
        assert len(list(candidate_hosts(iface))) == size


class TestProbe:

    @pytest.mark.asyncio
    async def test_probe_open_port(self):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            assert await probe_host("127.0.0.1", port, timeout=1.0) is True
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_probe_closed_port(self):
        assert await probe_host("127.0.0.1", unused_port(), timeout=1.0) is False

    @pytest.mark.asyncio
    async def test_probe_times_out(self):
        async def never_connects(*args, **kwargs):
            await asyncio.sleep(10)

        with patch(f"{MODULE}.asyncio.open_connection", side_effect=never_connects):
            assert await probe_host("10.255.255.1", 22, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_scan_waits_for_every_probe(self):
        reachable = {"10.0.0.3", "10.0.0.9"}
        probed = []

        async def fake_probe(host, port, timeout):
            probed.append(host)
            # Slow failures must not be cut short by fast successes
            await asyncio.sleep(0.01 if host in reachable else 0.05)
            return host in reachable

        hosts = [f"10.0.0.{i}" for i in range(1, 11)]
        with patch(f"{MODULE}.probe_host", side_effect=fake_probe):
            found = await probe_scan(hosts, port=22, timeout=1.0, max_concurrency=4)

        assert found == reachable
        assert sorted(probed) == sorted(hosts)

    @pytest.mark.asyncio
    async def test_scan_is_idempotent(self):
        reachable = {"10.0.0.3", "10.0.0.4"}

        async def fake_probe(host, port, timeout):
            return host in reachable

        hosts = [f"10.0.0.{i}" for i in range(1, 7)]
        with patch(f"{MODULE}.probe_host", side_effect=fake_probe):
            first = await probe_scan(hosts)
            second = await probe_scan(hosts)

        assert first == second == reachable

    @pytest.mark.asyncio
    async def test_scan_respects_concurrency_cap(self):
        active = 0
        peak = 0

        async def fake_probe(host, port, timeout):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return False

        with patch(f"{MODULE}.probe_host", side_effect=fake_probe):
            await probe_scan([f"10.0.1.{i}" for i in range(1, 21)], max_concurrency=3)

        assert peak <= 3

    @pytest.mark.asyncio
    async def test_scan_pulls_hosts_lazily(self):
        pulled = 0
        finished = 0
        outstanding = []

        def addresses():
            nonlocal pulled
            for i in range(1, 10_000):
                pulled += 1
                outstanding.append(pulled - finished)
                yield f"10.{i // 256}.{i % 256}.1"

        async def fake_probe(host, port, timeout):
            nonlocal finished
            await asyncio.sleep(0)
            finished += 1
            return host == "10.0.7.1"

        with patch(f"{MODULE}.probe_host", side_effect=fake_probe):
            found = await probe_scan(addresses(), max_concurrency=8)

        assert found == {"10.0.7.1"}
        assert pulled == 9_999
        # Addresses are taken only as workers free up
        assert max(outstanding) <= 8


def test_parse_avahi_records():
    output = "\n".join([
        "+;enp1s0f1np1;IPv4;spark-02;_ssh._tcp;local",
        "=;enp1s0f1np1;IPv4;spark-02;_ssh._tcp;local;spark-02.local;192.168.100.11;22;\"\"",
        "=;enp1s0f1np1;IPv6;spark-02;_ssh._tcp;local;spark-02.local;fe80::1;22;\"\"",
        "=;wlan0;IPv4;laptop;_ssh._tcp;local;laptop.local;192.168.1.40;22;\"\"",
        "=;enp1s0f1np1;IPv4;spark-03;_ssh._tcp;local;spark-03.local;192.168.100.12;22;\"\"",
        "=;enp1s0f1np1;IPv4;broken;_ssh._tcp;local;broken.local;not-an-ip;22;\"\"",
    ])

    assert parse_avahi_records(output, "enp1s0f1np1") == {"192.168.100.11", "192.168.100.12"}


class TestDiscoverNodes:

    @pytest.mark.asyncio
    async def test_interface_without_address(self):
        with patch(f"{MODULE}.ipv4_interface", return_value=None):
            with pytest.raises(InterfaceHasNoAddress) as exc_info:
                await discover_nodes(CommandRunner(), "enp1s0f1np1")

        assert exc_info.value.interface == "enp1s0f1np1"

    @pytest.mark.asyncio
    async def test_probe_strategy(self):
        iface = ipaddress.IPv4Interface("10.0.0.2/28")
        scan = AsyncMock(return_value={"10.0.0.10", "10.0.0.3"})

        with patch(f"{MODULE}.ipv4_interface", return_value=iface), \
             patch(f"{MODULE}.probe_scan", scan):
            nodes = await discover_nodes(CommandRunner(), "enp1s0f1np1")

        assert nodes == ["10.0.0.10", "10.0.0.2", "10.0.0.3"]
        hosts = list(scan.call_args.args[0])
        assert "10.0.0.2" not in hosts
        assert len(hosts) == 13
        assert scan.call_args.kwargs["port"] == 22
        assert scan.call_args.kwargs["timeout"] == 1.0

    @pytest.mark.asyncio
    async def test_oversized_subnet_is_refused_before_scanning(self):
        iface = ipaddress.IPv4Interface("10.1.2.3/8")
        scan = AsyncMock()

        with patch(f"{MODULE}.ipv4_interface", return_value=iface), \
             patch(f"{MODULE}.probe_scan", scan):
            with pytest.raises(SubnetTooLarge) as exc_info:
                await discover_nodes(CommandRunner(), "enp1s0f1np1")

        scan.assert_not_called()
        assert exc_info.value.network == "10.0.0.0/8"
        assert exc_info.value.size == 16_777_213
        assert "-n" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_scan_limit_is_configurable(self):
        iface = ipaddress.IPv4Interface("10.0.0.2/24")
        config = DiscoveryConfig(max_scan_hosts=100)

        with patch(f"{MODULE}.ipv4_interface", return_value=iface):
            with pytest.raises(SubnetTooLarge):
                await discover_nodes(CommandRunner(), "enp1s0f1np1", config)

    @pytest.mark.asyncio
    async def test_mdns_strategy(self):
        iface = ipaddress.IPv4Interface("192.168.100.10/24")
        runner = CommandRunner()
        runner.run = AsyncMock(return_value=CommandResult(
            "localhost",
            ["avahi-browse"],
            0,
            stdout="=;enp1s0f1np1;IPv4;b;_ssh._tcp;local;b.local;192.168.100.11;22;\"\"\n",
        ))
        config = DiscoveryConfig(strategy=DiscoveryStrategy.MDNS)

        with patch(f"{MODULE}.ipv4_interface", return_value=iface), \
             patch("sparkcluster.network.interfaces.shutil.which", return_value="/usr/bin/avahi-browse"):
            nodes = await discover_nodes(runner, "enp1s0f1np1", config)

        assert nodes == ["192.168.100.10", "192.168.100.11"]
        assert runner.run.call_args.args[0][:1] == ["avahi-browse"]

    @pytest.mark.asyncio
    async def test_mdns_tool_missing(self):
        iface = ipaddress.IPv4Interface("192.168.100.10/24")
        config = DiscoveryConfig(strategy=DiscoveryStrategy.MDNS)

        with patch(f"{MODULE}.ipv4_interface", return_value=iface), \
             patch("sparkcluster.network.interfaces.shutil.which", return_value=None):
            with pytest.raises(DiscoveryToolMissing):
                await discover_nodes(CommandRunner(), "enp1s0f1np1", config)
