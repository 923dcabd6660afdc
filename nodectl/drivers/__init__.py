"""Host and runtime backends."""

from pathlib import Path

from nodectl.drivers.base import HostDriver, RuntimeInstaller
from nodectl.drivers.docker import DockerHostDriver, SystemdRuntimeInstaller
from nodectl.drivers.simulated import SimulatedCloud, SimulatedHostDriver, SimulatedRuntimeInstaller
from nodectl.exceptions import ConfigurationError
from nodectl.models.cluster import ProvisionOptions

DRIVERS = ["simulated", "docker"]

__all__ = [
    "DRIVERS",
    "HostDriver",
    "RuntimeInstaller",
    "DockerHostDriver",
    "SystemdRuntimeInstaller",
    "SimulatedCloud",
    "SimulatedHostDriver",
    "SimulatedRuntimeInstaller",
    "get_backend",
]


def get_backend(
    profile: str, options: ProvisionOptions, home: Path | None = None, timeout: float = 120
) -> tuple[HostDriver, RuntimeInstaller]:
    """Build the host driver and runtime installer named by ``options.driver``.

    Raises:
        ConfigurationError: If the driver is unknown
    """
    if options.driver == "simulated":
        cloud = SimulatedCloud(home / "simulated.yml" if home else None)
        return SimulatedHostDriver(cloud), SimulatedRuntimeInstaller(cloud)
    if options.driver == "docker":
        return (
            DockerHostDriver(profile, options, timeout=timeout),
            SystemdRuntimeInstaller(options, timeout=timeout),
        )
    raise ConfigurationError(
        f"Unknown driver '{options.driver}'", f"Supported drivers: {', '.join(DRIVERS)}"
    )
