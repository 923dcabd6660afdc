"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from nodectl.config import Settings
from nodectl.drivers.simulated import SimulatedCloud, SimulatedHostDriver, SimulatedRuntimeInstaller
from nodectl.orchestrator import Orchestrator
from nodectl.status import StatusReporter
from nodectl.store import StoreRegistry

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal, deadline=None)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose, deadline=None)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose, deadline=None)

# Load the default profile
settings.load_profile("default")


def fast_settings(**overrides) -> Settings:
    """Settings with short timeouts suitable for the simulated backend."""
    values = {
        "state_dir": None,
        "operation_timeout": 10.0,
        "probe_timeout": 2.0,
        "wait_timeout": 2.0,
        "poll_interval": 0.01,
    }
    values.update(overrides)
    if values["state_dir"] is None:
        values.pop("state_dir")
    return Settings(**values)


def build_orchestrator(
    cloud: SimulatedCloud, state_dir=None, supports_restart: bool = True, **overrides
) -> Orchestrator:
    return Orchestrator(
        StoreRegistry(state_dir),
        SimulatedHostDriver(cloud, supports_restart=supports_restart),
        SimulatedRuntimeInstaller(cloud),
        fast_settings(**overrides),
    )


@pytest.fixture
def cloud():
    """A fresh simulated cloud."""
    return SimulatedCloud()


@pytest.fixture
def orchestrator(cloud, tmp_path):
    """Orchestrator over the simulated cloud, persisting profiles under tmp_path."""
    orch = build_orchestrator(cloud, state_dir=tmp_path / "profiles")
    yield orch
    orch.close()


@pytest.fixture
def reporter():
    return StatusReporter()


@pytest.fixture
def nodectl_home(tmp_path, monkeypatch):
    """Point NODECTL_HOME at a temporary directory with fast settings."""
    home = tmp_path / "home"
    home.mkdir()
    (home / "config.yml").write_text(
        "wait_timeout: 2\npoll_interval: 0.01\nprobe_timeout: 2\noperation_timeout: 10\n"
    )
    monkeypatch.setenv("NODECTL_HOME", str(home))
    return home
