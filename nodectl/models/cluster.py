"""Data models for cluster options and status snapshots."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nodectl.models.node import HostState, NodeRole, RuntimeState

PROFILE_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$", re.IGNORECASE)


def validate_profile_name(v: str) -> str:
    """Validate a profile name can be used as a machine name prefix."""
    if not v:
        raise ValueError("profile name cannot be empty")
    # leave room for the "-mNN" worker suffix
    if len(v) > 56:
        raise ValueError("profile name cannot exceed 56 characters")
    if not PROFILE_NAME_PATTERN.match(v):
        raise ValueError(
            f"profile name '{v}' must contain only alphanumeric characters and hyphens, "
            "and cannot start or end with a hyphen"
        )
    return v


class ProvisionOptions(BaseModel):
    """Provisioning options shared by every node of a cluster."""

    driver: str = "simulated"
    kubernetes_version: str = "v1.30.0"
    cpus: int = Field(default=2, ge=1)
    memory_mb: int = Field(default=2200, ge=512)
    image: str = "kindest/node:v1.30.0"

    @field_validator("driver")
    @classmethod
    def validate_driver(cls, v: str) -> str:
        """Validate driver name is not empty."""
        if not v:
            raise ValueError("driver cannot be empty")
        return v

    @field_validator("kubernetes_version")
    @classmethod
    def validate_kubernetes_version(cls, v: str) -> str:
        """Validate kubernetes_version follows semantic versioning."""
        if not v:
            raise ValueError("kubernetes_version cannot be empty")
        version_pattern = re.compile(r"^v?\d+\.\d+\.\d+$")
        if not version_pattern.match(v):
            raise ValueError(
                f"kubernetes_version '{v}' must follow semantic versioning (e.g., v1.30.0)"
            )
        return v


class NodeStatus(BaseModel):
    """Probed state of one node at snapshot time."""

    model_config = ConfigDict(frozen=True)

    name: str
    machine_name: str
    ordinal: int
    role: NodeRole
    host: HostState
    runtime: RuntimeState
    error: str | None = None

    @property
    def is_full(self) -> bool:
        return self.host is HostState.RUNNING and self.runtime is RuntimeState.RUNNING


class StatusSnapshot(BaseModel):
    """Point-in-time read of every node in a profile."""

    model_config = ConfigDict(frozen=True)

    profile: str
    nodes: tuple[NodeStatus, ...] = ()
    taken_at: datetime = Field(default_factory=datetime.now)

    def count_host(self, state: HostState) -> int:
        return sum(1 for n in self.nodes if n.host is state)

    def count_runtime(self, state: RuntimeState) -> int:
        return sum(1 for n in self.nodes if n.runtime is state)

    @property
    def running_nodes(self) -> int:
        return sum(1 for n in self.nodes if n.is_full)
