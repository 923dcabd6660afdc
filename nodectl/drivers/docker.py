"""Container-backed nodes driven through the ``docker`` CLI.

Each node is a privileged container built from a node image that ships a
systemd-managed kubelet (for example ``kindest/node``).
"""

import subprocess

from nodectl.drivers.base import HostDriver, RuntimeInstaller
from nodectl.exceptions import DriverError
from nodectl.logging_config import get_logger
from nodectl.models.cluster import ProvisionOptions
from nodectl.models.node import HostState, Node, RuntimeState

logger = get_logger(__name__)

PROFILE_LABEL = "io.nodectl.profile"
ROLE_LABEL = "io.nodectl.role"

_CONTAINER_STATES = {
    "running": HostState.RUNNING,
    "created": HostState.STOPPED,
    "exited": HostState.STOPPED,
    "paused": HostState.STOPPED,
    "dead": HostState.STOPPED,
    "restarting": HostState.STOPPED,
    "removing": HostState.STOPPED,
}


def run_docker(
    args: list[str], timeout: float = 120, check: bool = True
) -> subprocess.CompletedProcess:
    """Run a docker command.

    Raises:
        DriverError: If docker is missing, times out, or (with ``check``) exits non-zero
    """
    cmd = ["docker", *args]
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise DriverError(
            f"'{' '.join(cmd)}' timed out after {timeout} seconds",
            "Check that the docker daemon is responsive: docker info",
            retryable=True,
        )
    except FileNotFoundError:
        raise DriverError(
            "docker is not installed or not in PATH",
            "Install Docker from https://docs.docker.com/get-docker/",
        )

    if check and result.returncode != 0:
        raise DriverError(
            f"'{' '.join(cmd)}' failed with return code {result.returncode}",
            result.stderr.strip() or None,
        )
    return result


class DockerHostDriver(HostDriver):
    """Runs each node as a privileged container."""

    name = "docker"

    # Restarted node containers come back with stale network and kubelet
    # state, so restarts are reported as unreliable.
    supports_restart = False

    def __init__(self, profile: str, options: ProvisionOptions, timeout: float = 120):
        self.profile = profile
        self.options = options
        self.timeout = timeout

    def create(self, node: Node) -> None:
        run_docker(
            [
                "run",
                "--detach",
                "--privileged",
                "--tmpfs", "/run",
                "--tmpfs", "/tmp",
                "--name", node.machine_name,
                "--hostname", node.machine_name,
                "--label", f"{PROFILE_LABEL}={self.profile}",
                "--label", f"{ROLE_LABEL}={node.role.value}",
                "--cpus", str(self.options.cpus),
                "--memory", f"{self.options.memory_mb}m",
                self.options.image,
            ],
            timeout=self.timeout,
        )
        logger.info(f"Created container '{node.machine_name}' from {self.options.image}")

    def start(self, node: Node) -> None:
        run_docker(["start", node.machine_name], timeout=self.timeout)

    def stop(self, node: Node) -> None:
        run_docker(["stop", node.machine_name], timeout=self.timeout)

    def destroy(self, node: Node) -> None:
        result = run_docker(
            ["rm", "--force", "--volumes", node.machine_name], timeout=self.timeout, check=False
        )
        if result.returncode != 0 and "No such container" not in result.stderr:
            raise DriverError(
                f"Failed to remove container '{node.machine_name}'", result.stderr.strip() or None
            )

    def probe(self, node: Node) -> HostState:
        result = run_docker(
            ["inspect", "--format", "{{.State.Status}}", node.machine_name],
            timeout=self.timeout,
            check=False,
        )
        if result.returncode != 0:
            if "No such object" in result.stderr or "No such container" in result.stderr:
                return HostState.ABSENT
            raise DriverError(
                f"Failed to inspect container '{node.machine_name}'", result.stderr.strip() or None
            )
        status = result.stdout.strip()
        if status not in _CONTAINER_STATES:
            logger.warning(f"Unknown container status '{status}' for '{node.machine_name}'")
        return _CONTAINER_STATES.get(status, HostState.STOPPED)


class SystemdRuntimeInstaller(RuntimeInstaller):
    """Controls the kubelet systemd unit inside a node container."""

    name = "systemd"
    unit = "kubelet"

    def __init__(self, options: ProvisionOptions, timeout: float = 120):
        self.options = options
        self.timeout = timeout

    def _systemctl(self, node: Node, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return run_docker(
            ["exec", node.machine_name, "systemctl", *args], timeout=self.timeout, check=check
        )

    def install(self, node: Node) -> None:
        self._systemctl(node, "enable", self.unit)
        logger.info(
            f"Enabled {self.unit} {self.options.kubernetes_version} on '{node.machine_name}'"
        )

    def start(self, node: Node) -> None:
        self._systemctl(node, "start", self.unit)

    def stop(self, node: Node) -> None:
        self._systemctl(node, "stop", self.unit)

    def probe(self, node: Node) -> RuntimeState:
        inspect = run_docker(
            ["inspect", "--format", "{{.State.Running}}", node.machine_name],
            timeout=self.timeout,
            check=False,
        )
        if inspect.returncode != 0:
            return RuntimeState.ABSENT
        if inspect.stdout.strip() != "true":
            return RuntimeState.STOPPED

        # is-active exits non-zero for anything but "active"
        result = self._systemctl(node, "is-active", self.unit, check=False)
        status = result.stdout.strip()
        if status == "active":
            return RuntimeState.RUNNING
        if status in ("inactive", "failed", "activating", "deactivating"):
            return RuntimeState.STOPPED
        return RuntimeState.ABSENT
