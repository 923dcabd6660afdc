"""In-memory backend that simulates machines and kubelets.

Useful for dry runs and tests. Machine state can be persisted to a YAML file
so that separate CLI invocations see the same simulated cluster. Faults can
be injected per step and machine.
"""

import threading
import time
from pathlib import Path

import yaml

from nodectl.drivers.base import HostDriver, RuntimeInstaller
from nodectl.exceptions import DriverError
from nodectl.logging_config import get_logger
from nodectl.models.node import HostState, Node, RuntimeState

logger = get_logger(__name__)


class SimulatedCloud:
    """Shared machine table behind the simulated host driver and runtime installer."""

    def __init__(self, path: Path | None = None, step_delay: float = 0.0):
        """Initialize the simulated cloud.

        Args:
            path: Optional YAML file to persist machine state to
            step_delay: Seconds every mutating call sleeps for
        """
        self.path = Path(path) if path else None
        self.step_delay = step_delay
        self.calls: list[tuple[str, str]] = []
        self._machines: dict[str, dict] = {}
        self._faults: dict[tuple[str, str], list] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        for machine, state in data.get("machines", {}).items():
            self._machines[machine] = {
                "host": HostState(state["host"]),
                "runtime": RuntimeState(state["runtime"]),
                "installed": bool(state.get("installed", False)),
            }

    def _save(self) -> None:
        if self.path is None:
            return
        data = {
            "machines": {
                machine: {
                    "host": state["host"].value,
                    "runtime": state["runtime"].value,
                    "installed": state["installed"],
                }
                for machine, state in self._machines.items()
            }
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)

    def inject_fault(
        self,
        step: str,
        machine: str,
        message: str = "injected failure",
        retryable: bool = False,
        times: int = 1,
        hang: float = 0.0,
    ) -> None:
        """Make the next ``times`` calls of ``step`` on ``machine`` fail or hang.

        Args:
            step: Step name such as ``host.create`` or ``runtime.start``
            machine: Machine name
            message: Error message raised
            retryable: Whether the raised DriverError is marked retryable
            times: Number of calls affected
            hang: Seconds to sleep before the call proceeds; no error is
                raised when this is set
        """
        with self._lock:
            self._faults.setdefault((step, machine), []).extend(
                [(message, retryable, hang)] * times
            )

    def crash(self, machine: str) -> None:
        """Stop a machine behind the orchestrator's back."""
        with self._lock:
            state = self._machines[machine]
            state["host"] = HostState.STOPPED
            state["runtime"] = RuntimeState.STOPPED
            self._save()

    def force_state(self, machine: str, host: HostState, runtime: RuntimeState) -> None:
        """Set raw layer states, including combinations real backends should never report."""
        with self._lock:
            state = self._machines.setdefault(
                machine, {"host": host, "runtime": runtime, "installed": True}
            )
            state["host"] = host
            state["runtime"] = runtime
            self._save()

    def machines(self) -> dict[str, tuple[HostState, RuntimeState]]:
        with self._lock:
            return {m: (s["host"], s["runtime"]) for m, s in self._machines.items()}

    def run(self, step: str, machine: str, action) -> object:
        """Record a call, apply any injected fault, then run ``action`` under the lock."""
        self.calls.append((step, machine))
        with self._lock:
            faults = self._faults.get((step, machine))
            fault = faults.pop(0) if faults else None

        if fault is not None:
            message, retryable, hang = fault
            if hang:
                time.sleep(hang)
            else:
                raise DriverError(message, retryable=retryable)

        if self.step_delay and not step.endswith(".probe"):
            time.sleep(self.step_delay)

        with self._lock:
            result = action(self._machines)
            if not step.endswith(".probe"):
                self._save()
            return result


class SimulatedHostDriver(HostDriver):
    """Host driver backed by a SimulatedCloud."""

    name = "simulated"

    def __init__(self, cloud: SimulatedCloud, supports_restart: bool = True):
        self.cloud = cloud
        self.supports_restart = supports_restart

    def create(self, node: Node) -> None:
        def action(machines):
            existing = machines.get(node.machine_name)
            if existing and existing["host"] is not HostState.ABSENT:
                raise DriverError(f"machine '{node.machine_name}' already exists")
            machines[node.machine_name] = {
                "host": HostState.RUNNING,
                "runtime": RuntimeState.ABSENT,
                "installed": False,
            }

        self.cloud.run("host.create", node.machine_name, action)
        logger.debug(f"Simulated machine '{node.machine_name}' created")

    def start(self, node: Node) -> None:
        def action(machines):
            state = self._existing(machines, node)
            state["host"] = HostState.RUNNING

        self.cloud.run("host.start", node.machine_name, action)

    def stop(self, node: Node) -> None:
        def action(machines):
            state = self._existing(machines, node)
            state["host"] = HostState.STOPPED
            if state["runtime"] is RuntimeState.RUNNING:
                state["runtime"] = RuntimeState.STOPPED

        self.cloud.run("host.stop", node.machine_name, action)

    def destroy(self, node: Node) -> None:
        def action(machines):
            machines.pop(node.machine_name, None)

        self.cloud.run("host.destroy", node.machine_name, action)

    def probe(self, node: Node) -> HostState:
        def action(machines):
            state = machines.get(node.machine_name)
            return state["host"] if state else HostState.ABSENT

        return self.cloud.run("host.probe", node.machine_name, action)

    @staticmethod
    def _existing(machines: dict, node: Node) -> dict:
        state = machines.get(node.machine_name)
        if state is None:
            raise DriverError(f"machine '{node.machine_name}' does not exist")
        return state


class SimulatedRuntimeInstaller(RuntimeInstaller):
    """Runtime installer backed by a SimulatedCloud."""

    name = "simulated"

    def __init__(self, cloud: SimulatedCloud):
        self.cloud = cloud

    def install(self, node: Node) -> None:
        def action(machines):
            state = self._running_host(machines, node)
            state["installed"] = True
            if state["runtime"] is RuntimeState.ABSENT:
                state["runtime"] = RuntimeState.STOPPED

        self.cloud.run("runtime.install", node.machine_name, action)

    def start(self, node: Node) -> None:
        def action(machines):
            state = self._running_host(machines, node)
            if not state["installed"]:
                raise DriverError(f"kubelet is not installed on '{node.machine_name}'")
            state["runtime"] = RuntimeState.RUNNING

        self.cloud.run("runtime.start", node.machine_name, action)

    def stop(self, node: Node) -> None:
        def action(machines):
            state = self._running_host(machines, node)
            if state["installed"]:
                state["runtime"] = RuntimeState.STOPPED

        self.cloud.run("runtime.stop", node.machine_name, action)

    def probe(self, node: Node) -> RuntimeState:
        def action(machines):
            state = machines.get(node.machine_name)
            return state["runtime"] if state else RuntimeState.ABSENT

        return self.cloud.run("runtime.probe", node.machine_name, action)

    @staticmethod
    def _running_host(machines: dict, node: Node) -> dict:
        state = machines.get(node.machine_name)
        if state is None or state["host"] is not HostState.RUNNING:
            raise DriverError(f"machine '{node.machine_name}' is not running")
        return state
