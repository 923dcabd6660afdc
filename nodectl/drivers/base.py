"""Contracts for the host and runtime backends the orchestrator drives.

Implementations report terminal failures by raising DriverError. They may
retry transient errors internally.
"""

from abc import ABC, abstractmethod

from nodectl.models.node import HostState, Node, RuntimeState


class HostDriver(ABC):
    """Creates, starts, stops and destroys the machine behind a node."""

    name: str = "base"

    # Restarting a stopped machine races on some backends
    supports_restart: bool = True

    @abstractmethod
    def create(self, node: Node) -> None:
        """Create and boot the machine for a node."""

    @abstractmethod
    def start(self, node: Node) -> None:
        """Boot a stopped machine."""

    @abstractmethod
    def stop(self, node: Node) -> None:
        """Shut down a running machine."""

    @abstractmethod
    def destroy(self, node: Node) -> None:
        """Delete the machine and everything on it."""

    @abstractmethod
    def probe(self, node: Node) -> HostState:
        """Report the machine's current state."""


class RuntimeInstaller(ABC):
    """Installs and controls the kubelet on a running machine."""

    name: str = "base"

    @abstractmethod
    def install(self, node: Node) -> None:
        """Install the kubelet on the node's machine."""

    @abstractmethod
    def start(self, node: Node) -> None:
        """Start the kubelet."""

    @abstractmethod
    def stop(self, node: Node) -> None:
        """Stop the kubelet."""

    @abstractmethod
    def probe(self, node: Node) -> RuntimeState:
        """Report the kubelet's current state."""
