"""Node lifecycle orchestration.

The Orchestrator sequences host driver and runtime installer calls for every
cluster-level operation and keeps each profile's NodeStore in step with what
the backend actually did. Mutations of one profile are serialized through
the registry's per-profile lock; status queries take no lock and probe the
backend directly.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable

from nodectl.config import Settings
from nodectl.deadline import CancelToken, Deadline
from nodectl.drivers.base import HostDriver, RuntimeInstaller
from nodectl.exceptions import (
    BackendFailureError,
    DriverError,
    InvalidOperationError,
    NodectlError,
    NotFoundError,
    OperationCancelledError,
    OperationTimeoutError,
    ProbeInconsistencyError,
    UnreliableOperationError,
)
from nodectl.logging_config import get_logger
from nodectl.models.cluster import (
    NodeStatus,
    ProvisionOptions,
    StatusSnapshot,
    validate_profile_name,
)
from nodectl.models.node import HostState, Node, NodeState, RuntimeState
from nodectl.store import NodeStore, StoreRegistry

logger = get_logger(__name__)


class Orchestrator:
    """Cluster-level lifecycle operations over a host driver and runtime installer."""

    def __init__(
        self,
        registry: StoreRegistry,
        host: HostDriver,
        runtime: RuntimeInstaller,
        settings: Settings | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Registry holding every profile's NodeStore
            host: Backend that manages machines
            runtime: Backend that manages kubelets
            settings: Timeouts and defaults; library defaults when omitted
        """
        self.registry = registry
        self.host = host
        self.runtime = runtime
        self.settings = settings or Settings()
        self._executor = ThreadPoolExecutor(max_workers=32, thread_name_prefix="nodectl-step")

    def close(self) -> None:
        # Calls abandoned after a timeout may still be running
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # Cluster operations

    def create_cluster(
        self,
        profile: str,
        nodes: int = 1,
        options: ProvisionOptions | None = None,
        wait: bool = True,
        deadline: Deadline | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Node]:
        """Create a cluster with ``nodes`` nodes.

        The first node is the control plane. Nodes already started when a
        later node fails are left running and recorded.

        Raises:
            AlreadyExistsError: If the profile is active
            InvalidOperationError: If the node count or profile name is invalid
            BackendFailureError: If a node's host or kubelet fails to come up
            OperationTimeoutError: If the deadline is exceeded
            OperationCancelledError: If ``cancel`` is set mid-operation
        """
        if nodes < 1:
            raise InvalidOperationError(
                "A cluster needs at least one node", f"Requested node count: {nodes}"
            )
        try:
            validate_profile_name(profile)
        except ValueError as e:
            raise InvalidOperationError(str(e))

        options = options or self.settings.default_options
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            if self.registry.exists(profile):
                self._reconcile(self.registry.get(profile))
            store = self.registry.create(profile, options)
            logger.info(f"Creating profile '{profile}' with {nodes} node(s) on {self.host.name}")
            for _ in range(nodes):
                self._check_cancelled(store, cancel)
                node = store.allocate()
                store.save()
                self._provision(store, node, wait, deadline, cancel)
            logger.info(f"Profile '{profile}' is up with {nodes} node(s)")
            return store.nodes

    def add_node(
        self,
        profile: str,
        wait: bool = True,
        deadline: Deadline | None = None,
        cancel: CancelToken | None = None,
    ) -> Node:
        """Add a worker node using the cluster's original provisioning options.

        Raises:
            NotFoundError: If the profile does not exist or has been torn down
        """
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            store = self.registry.get(profile)
            if not store.active:
                self._reconcile(store)
            if not store.active:
                raise NotFoundError(
                    f"Profile '{profile}' has no nodes left",
                    f"Recreate it with: nodectl start -p {profile}",
                )
            node = store.allocate()
            store.save()
            logger.info(f"Adding node '{node.name}' to profile '{profile}'")
            self._provision(store, node, wait, deadline, cancel)
            return store.get(node.name)

    def stop_node(self, profile: str, name: str, deadline: Deadline | None = None) -> Node:
        """Stop a node's kubelet, then its host. Stopping a stopped node is a no-op.

        Raises:
            NotFoundError: If the node does not exist or has no machine
        """
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            store = self.registry.get(profile)
            node = store.get(name)
            current = self._current_state(node)

            if current is NodeState.ABSENT:
                store.set_state(node.name, NodeState.ABSENT)
                store.save()
                raise NotFoundError(
                    f"Node '{node.name}' has no machine",
                    f"Delete it with: nodectl node delete {node.name} -p {profile}",
                )
            if current is NodeState.DOWN:
                logger.info(f"Node '{node.name}' is already stopped")
                return self._record(store, node, NodeState.DOWN)

            logger.info(f"Stopping node '{node.name}' in profile '{profile}'")
            if current is NodeState.FULL:
                self._call(self.runtime.stop, node, "kubelet stop", deadline)
                node = self._record(store, node, NodeState.HOST_ONLY)
            self._call(self.host.stop, node, "host stop", deadline)
            return self._record(store, node, NodeState.DOWN)

    def start_node(
        self,
        profile: str,
        name: str,
        force: bool = False,
        wait: bool = True,
        deadline: Deadline | None = None,
    ) -> Node:
        """Start a stopped node's host, then its kubelet.

        Restarting is unreliable on some backends; those report it with
        UnreliableOperationError unless ``force`` is set. Backend failures on
        this path are marked retryable.

        Raises:
            NotFoundError: If the node name was never used in the profile
            InvalidOperationError: If the node was deleted or has no machine
            UnreliableOperationError: If the driver cannot restart reliably
        """
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            store = self.registry.get(profile)
            if store.is_retired(name):
                raise InvalidOperationError(
                    f"Node '{name}' was deleted and cannot be started",
                    f"Add a new node with: nodectl node add -p {profile}",
                )
            node = store.get(name)
            if node.state is NodeState.ABSENT:
                raise InvalidOperationError(
                    f"Node '{node.name}' has no machine and cannot be started",
                    f"Delete it and add a new node with: nodectl node add -p {profile}",
                )

            current = self._current_state(node)
            if current is NodeState.ABSENT:
                raise InvalidOperationError(
                    f"Machine for node '{node.name}' no longer exists",
                    f"Delete it and add a new node with: nodectl node add -p {profile}",
                )
            if current is NodeState.FULL:
                logger.info(f"Node '{node.name}' is already running")
                return self._record(store, node, NodeState.FULL)
            if current is NodeState.DOWN and not self.host.supports_restart and not force:
                raise UnreliableOperationError(
                    f"Restarting node '{node.name}' is unreliable with the {self.host.name} driver",
                    "Pass --force to try anyway, or delete the node and add a new one",
                )

            logger.info(f"Starting node '{node.name}' in profile '{profile}'")
            try:
                if current is NodeState.DOWN:
                    self._call(self.host.start, node, "host start", deadline)
                    node = self._record(store, node, NodeState.HOST_ONLY)
                    if wait:
                        self._wait_for(node, NodeState.HOST_ONLY, deadline)
                self._call(self.runtime.start, node, "kubelet start", deadline)
                node = self._record(store, node, NodeState.FULL)
                if wait:
                    self._wait_for(node, NodeState.FULL, deadline)
            except BackendFailureError as e:
                e.retryable = True
                raise
            return node

    def delete_node(self, profile: str, name: str, deadline: Deadline | None = None) -> None:
        """Tear down a worker node and retire its name.

        Raises:
            NotFoundError: If the node does not exist
            InvalidOperationError: If the node is the control plane
        """
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            store = self.registry.get(profile)
            node = store.get(name)
            if node.is_control_plane:
                raise InvalidOperationError(
                    f"Cannot delete control-plane node '{node.name}'",
                    f"To remove the whole cluster run: nodectl delete -p {profile}",
                )
            logger.info(f"Deleting node '{node.name}' from profile '{profile}'")
            self._teardown(store, node, deadline)

    def delete_cluster(
        self, profile: str, deadline: Deadline | None = None, cancel: CancelToken | None = None
    ) -> None:
        """Tear down every node, workers first, then forget the profile."""
        deadline = self._deadline(deadline)

        with self.registry.lock(profile):
            store = self.registry.get(profile)
            logger.info(f"Deleting profile '{profile}' ({len(store.nodes)} node(s))")
            for node in reversed(store.nodes):
                self._check_cancelled(store, cancel)
                self._teardown(store, node, deadline)
            self.registry.remove(profile)

    def list_nodes(self, profile: str) -> list[Node]:
        """Return the recorded nodes of a profile in creation order."""
        return self.registry.get(profile).nodes

    # Status

    def status(self, profile: str) -> StatusSnapshot:
        """Probe every node of a profile and return a fresh snapshot.

        A probe failure on one node is recorded on that node and never fails
        the query.

        Raises:
            NotFoundError: If the profile does not exist
        """
        store = self.registry.get(profile)
        nodes = store.nodes
        if not nodes:
            return StatusSnapshot(profile=profile)

        with ThreadPoolExecutor(max_workers=len(nodes), thread_name_prefix="nodectl-probe") as pool:
            statuses = list(pool.map(self.observe, nodes))

        # A node never known to have a machine is left out while none exists
        visible = [
            status
            for node, status in zip(nodes, statuses)
            if not (node.state is NodeState.ABSENT and status.host is HostState.ABSENT)
        ]
        return StatusSnapshot(
            profile=profile, nodes=tuple(sorted(visible, key=lambda s: s.ordinal))
        )

    def observe(self, node: Node) -> NodeStatus:
        """Probe both layers of one node.

        The result always satisfies the host/kubelet dependency: contradicting
        or failed probes are reported as stopped with the reason in ``error``.
        """
        deadline = Deadline(self.settings.probe_timeout)
        error = None

        try:
            host = self._call(self.host.probe, node, "host probe", deadline)
        except NodectlError as e:
            logger.warning(f"Probe of node '{node.name}' failed: {e.message}")
            return self._node_status(node, NodeState.DOWN, e.message)

        runtime = RuntimeState.ABSENT
        if host is not HostState.ABSENT:
            try:
                runtime = self._call(self.runtime.probe, node, "kubelet probe", deadline)
            except NodectlError as e:
                logger.warning(f"Probe of node '{node.name}' failed: {e.message}")
                runtime, error = RuntimeState.STOPPED, e.message

        try:
            state = NodeState.from_layers(host, runtime)
        except ProbeInconsistencyError as e:
            logger.warning(f"Node '{node.name}': {e.message}")
            return self._node_status(node, NodeState.DOWN, e.message)
        return self._node_status(node, state, error)

    # Internals

    @staticmethod
    def _node_status(node: Node, state: NodeState, error: str | None) -> NodeStatus:
        return NodeStatus(
            name=node.name,
            machine_name=node.machine_name,
            ordinal=node.ordinal,
            role=node.role,
            host=state.host,
            runtime=state.runtime,
            error=error,
        )

    def _deadline(self, deadline: Deadline | None) -> Deadline:
        return deadline or Deadline(self.settings.operation_timeout)

    def _call(self, fn: Callable[[Node], object], node: Node, step: str, deadline: Deadline):
        """Run one backend call for a node under the deadline.

        Raises:
            OperationTimeoutError: If the deadline passes first
            BackendFailureError: If the backend fails
        """
        remaining = deadline.remaining()
        if remaining is not None and remaining <= 0:
            raise OperationTimeoutError(
                node.name, step, "deadline exceeded before the step started"
            )

        logger.debug(f"{step} on node '{node.name}' ({node.machine_name})")
        future = self._executor.submit(fn, node)
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            future.cancel()
            logger.error(f"{step} on node '{node.name}' timed out after {deadline.seconds}s")
            raise OperationTimeoutError(
                node.name,
                step,
                f"no response within {deadline.seconds} seconds",
                "The backend may still finish this step; check with 'nodectl status'",
            )
        except DriverError as e:
            logger.error(f"{step} on node '{node.name}' failed: {e.message}")
            raise BackendFailureError(
                node.name, step, e.message, e.details, retryable=e.retryable
            ) from e
        except NodectlError:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error during {step} on node '{node.name}': {e}", exc_info=True
            )
            raise BackendFailureError(node.name, step, f"unexpected error: {e}") from e

    def _record(self, store: NodeStore, node: Node, state: NodeState) -> Node:
        updated = store.set_state(node.name, state)
        store.save()
        return updated

    def _current_state(self, node: Node) -> NodeState:
        """Live state of a node, falling back to the record when probing fails."""
        status = self.observe(node)
        if status.error is not None:
            logger.warning(
                f"Using recorded state {node.state.value} for node '{node.name}': {status.error}"
            )
            return node.state
        return NodeState.from_layers(status.host, status.runtime)

    def _provision(
        self,
        store: NodeStore,
        node: Node,
        wait: bool,
        deadline: Deadline,
        cancel: CancelToken | None,
    ) -> None:
        """Create the host, install and start the kubelet, recording each step.

        On timeout the node is re-probed and whatever the backend reached so
        far is recorded before the error propagates.
        """
        try:
            self._call(self.host.create, node, "host create", deadline)
            node = self._record(store, node, NodeState.HOST_ONLY)
            if wait:
                self._wait_for(node, NodeState.HOST_ONLY, deadline)

            self._check_cancelled(store, cancel)
            self._call(self.runtime.install, node, "kubelet install", deadline)

            self._check_cancelled(store, cancel)
            self._call(self.runtime.start, node, "kubelet start", deadline)
            node = self._record(store, node, NodeState.FULL)
            if wait:
                self._wait_for(node, NodeState.FULL, deadline)
        except OperationTimeoutError:
            self._reconcile(store, [node])
            raise
        logger.info(f"Node '{node.name}' ({node.machine_name}) is running")

    def _teardown(self, store: NodeStore, node: Node, deadline: Deadline) -> None:
        current = self._current_state(node)
        if current is NodeState.FULL:
            self._call(self.runtime.stop, node, "kubelet stop", deadline)
            node = self._record(store, node, NodeState.HOST_ONLY)
        self._call(self.host.destroy, node, "host destroy", deadline)
        store.set_state(node.name, NodeState.ABSENT)
        store.retire(node.name)
        store.save()

    def _wait_for(self, node: Node, target: NodeState, deadline: Deadline) -> None:
        """Poll until the node reaches ``target`` or the wait budget runs out."""
        layer = "host" if target is NodeState.HOST_ONLY else "kubelet"
        wait = Deadline(deadline.bounded(self.settings.wait_timeout))

        while True:
            status = self.observe(node)
            if status.error is None:
                if target is NodeState.HOST_ONLY and status.host is HostState.RUNNING:
                    return
                if target is NodeState.FULL and status.is_full:
                    return
            if wait.expired():
                raise OperationTimeoutError(
                    node.name,
                    f"{layer} wait",
                    f"{layer} did not reach Running within {wait.seconds:.0f} seconds",
                    status.error,
                )
            time.sleep(wait.bounded(self.settings.poll_interval))

    def _check_cancelled(self, store: NodeStore, cancel: CancelToken | None) -> None:
        """Stop between steps when cancelled, first recording what the backend really did."""
        if cancel is None or not cancel.cancelled:
            return

        logger.warning(f"Operation on profile '{store.profile}' cancelled, reconciling state")
        self._reconcile(store)
        raise OperationCancelledError(
            f"Operation on profile '{store.profile}' was cancelled",
            "Run 'nodectl status' to see which nodes were started",
        )

    def _reconcile(self, store: NodeStore, nodes: list[Node] | None = None) -> None:
        """Record the probed state of ``nodes``, every node by default.

        Nodes whose probe fails keep their recorded state.
        """
        for node in store.nodes if nodes is None else nodes:
            status = self.observe(node)
            if status.error is None:
                store.set_state(node.name, NodeState.from_layers(status.host, status.runtime))
        store.save()
