"""Data models for node identity and lifecycle state."""

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from nodectl.exceptions import ProbeInconsistencyError


class NodeRole(str, Enum):
    """Role a node plays in its cluster."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"

    @property
    def label(self) -> str:
        return "Control Plane" if self is NodeRole.CONTROL_PLANE else "Worker"


class HostState(str, Enum):
    """Coarse state of the machine hosting a node."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    ABSENT = "Absent"


class RuntimeState(str, Enum):
    """Coarse state of the kubelet on a node."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    ABSENT = "Absent"


class NodeState(str, Enum):
    """Combined per-node lifecycle state.

    Host and runtime states are projections of this value, so a kubelet can
    never be recorded as running on a host that is not.
    """

    ABSENT = "Absent"
    DOWN = "Down"
    HOST_ONLY = "HostOnly"
    FULL = "Full"

    @property
    def host(self) -> HostState:
        if self is NodeState.ABSENT:
            return HostState.ABSENT
        if self is NodeState.DOWN:
            return HostState.STOPPED
        return HostState.RUNNING

    @property
    def runtime(self) -> RuntimeState:
        if self is NodeState.ABSENT:
            return RuntimeState.ABSENT
        if self is NodeState.FULL:
            return RuntimeState.RUNNING
        return RuntimeState.STOPPED

    @classmethod
    def from_layers(cls, host: HostState, runtime: RuntimeState) -> "NodeState":
        """Combine probed layer states.

        Raises:
            ProbeInconsistencyError: If the runtime reports running on a host that is not
        """
        if runtime is RuntimeState.RUNNING and host is not HostState.RUNNING:
            raise ProbeInconsistencyError(
                f"kubelet reported Running while host is {host.value}",
                "The runtime probe contradicts the host probe; treating the node as stopped",
            )
        if host is HostState.ABSENT:
            return cls.ABSENT
        if host is HostState.STOPPED:
            return cls.DOWN
        if runtime is RuntimeState.RUNNING:
            return cls.FULL
        return cls.HOST_ONLY


class Node(BaseModel):
    """A member machine of a cluster."""

    name: str
    machine_name: str
    ordinal: int = Field(ge=1)
    role: NodeRole
    state: NodeState = NodeState.ABSENT

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the node name follows the ordinal naming scheme."""
        if not re.match(r"^m\d{2,}$", v):
            raise ValueError(f"node name '{v}' must look like 'm01', 'm02', ...")
        return v

    @field_validator("machine_name")
    @classmethod
    def validate_machine_name(cls, v: str) -> str:
        """Validate machine name follows DNS naming conventions."""
        if not v:
            raise ValueError("machine_name cannot be empty")
        if len(v) > 63:
            raise ValueError("machine_name cannot exceed 63 characters")
        # RFC 1123 label
        if not re.match(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$", v, re.IGNORECASE):
            raise ValueError(
                f"machine_name '{v}' must contain only alphanumeric characters and hyphens, "
                "and cannot start or end with a hyphen"
            )
        return v

    @model_validator(mode="after")
    def validate_role_matches_ordinal(self) -> "Node":
        """The first node is the control plane, every other node is a worker."""
        expected = NodeRole.CONTROL_PLANE if self.ordinal == 1 else NodeRole.WORKER
        if self.role is not expected:
            raise ValueError(f"node {self.ordinal} must have role '{expected.value}'")
        return self

    @property
    def host_state(self) -> HostState:
        return self.state.host

    @property
    def runtime_state(self) -> RuntimeState:
        return self.state.runtime

    @property
    def is_control_plane(self) -> bool:
        return self.role is NodeRole.CONTROL_PLANE

    def to_store_dict(self) -> dict:
        """Convert to the persisted profile format."""
        return {
            "machine_name": self.machine_name,
            "ordinal": self.ordinal,
            "role": self.role.value,
            "state": self.state.value,
        }

    @classmethod
    def from_store_dict(cls, name: str, data: dict) -> "Node":
        """Parse from the persisted profile format."""
        return cls(
            name=name,
            machine_name=data["machine_name"],
            ordinal=data["ordinal"],
            role=data.get("role", NodeRole.WORKER.value),
            state=data.get("state", NodeState.ABSENT.value),
        )
