"""
Network Discovery Module

Detects the local interfaces and the peers of a cluster.
"""
from .discovery import discover_nodes, node_set, probe_scan
from .interfaces import (
    InterfacePair,
    InterfaceSelection,
    discover_interfaces,
    local_addresses,
    select_management_interface,
)

__all__ = [
    "InterfacePair",
    "InterfaceSelection",
    "discover_interfaces",
    "discover_nodes",
    "local_addresses",
    "node_set",
    "probe_scan",
    "select_management_interface",
]
