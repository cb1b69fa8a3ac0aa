"""
Cluster Management Module

Resolves cluster roles and drives the cluster lifecycle across hosts.
"""
from .containers import ContainerRuntime, Role
from .orchestrator import ClusterOrchestrator, HostStatus, StatusReport, format_status
from .preflight import check_worker_connectivity
from .readiness import wait_for_cluster
from .topology import Topology, resolve_topology

__all__ = [
    "ClusterOrchestrator",
    "ContainerRuntime",
    "HostStatus",
    "Role",
    "StatusReport",
    "Topology",
    "check_worker_connectivity",
    "format_status",
    "resolve_topology",
    "wait_for_cluster",
]
