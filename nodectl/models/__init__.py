"""Data models for cluster nodes and status."""

from nodectl.models.cluster import NodeStatus, ProvisionOptions, StatusSnapshot
from nodectl.models.node import HostState, Node, NodeRole, NodeState, RuntimeState

__all__ = [
    "Node",
    "NodeRole",
    "NodeState",
    "HostState",
    "RuntimeState",
    "NodeStatus",
    "ProvisionOptions",
    "StatusSnapshot",
]
