"""
Head and worker role resolution.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from ..utils.exceptions import AmbiguousHead, HeadNotLocal, NodesRequired


@dataclass
class Topology:
    """The cluster's head and workers."""
    head: str
    workers: List[str] = field(default_factory=list)

    @property
    def hosts(self) -> List[str]:
        """Head first, then workers in order."""
        return [self.head] + list(self.workers)


def resolve_topology(nodes: Sequence[str], local_addresses: Iterable[str]) -> Topology:
    """
    Split nodes into the local head and remote workers.

    Args:
        nodes: Node list, in the order workers should be reported
        local_addresses: Addresses bound on this host

    Returns:
        Topology with workers in node order

    Raises:
        NodesRequired: nodes is empty
        HeadNotLocal: No node is a local address
        AmbiguousHead: More than one node is a local address
    """
    if not nodes:
        raise NodesRequired()

    local = set(local_addresses)
    matches = [node for node in nodes if node in local]

    if not matches:
        raise HeadNotLocal(nodes)
    if len(matches) > 1:
        raise AmbiguousHead(matches)

    head = matches[0]
    return Topology(head=head, workers=[node for node in nodes if node != head])
