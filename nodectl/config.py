"""Settings for nodectl, loaded from ``$NODECTL_HOME/config.yml``."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from nodectl.exceptions import ConfigurationError
from nodectl.logging_config import get_logger
from nodectl.models.cluster import ProvisionOptions

logger = get_logger(__name__)

DEFAULT_HOME = "~/.nodectl"
CONFIG_FILENAME = "config.yml"


class ExitCodes(BaseModel):
    """Process exit codes reported by ``nodectl status``.

    Automation distinguishes "some nodes down" from "everything down" using
    these values, so the defaults must not change between releases.
    """

    ok: int = Field(default=0, ge=0, le=255)
    degraded: int = Field(default=7, ge=1, le=255)
    unavailable: int = Field(default=8, ge=1, le=255)

    @model_validator(mode="after")
    def validate_distinct(self) -> "ExitCodes":
        """Validate every outcome maps to its own code."""
        codes = [self.ok, self.degraded, self.unavailable]
        if len(set(codes)) != len(codes):
            raise ValueError(f"exit codes must be distinct, got {codes}")
        return self


class Settings(BaseModel):
    """Application settings."""

    state_dir: Path = Path(DEFAULT_HOME).expanduser() / "profiles"
    driver: str = "simulated"
    operation_timeout: float = Field(default=900.0, gt=0)
    probe_timeout: float = Field(default=30.0, gt=0)
    wait_timeout: float = Field(default=360.0, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    exit_codes: ExitCodes = Field(default_factory=ExitCodes)
    default_options: ProvisionOptions = Field(default_factory=ProvisionOptions)

    def save(self, path: str | Path) -> None:
        """Save settings to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """Load settings from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**(data or {}))


def nodectl_home() -> Path:
    """Return the nodectl home directory, honouring ``NODECTL_HOME``."""
    return Path(os.environ.get("NODECTL_HOME", DEFAULT_HOME)).expanduser()


def load_settings(home: Path | None = None) -> Settings:
    """Load settings from the home directory, falling back to defaults.

    Raises:
        ConfigurationError: If the config file exists but is invalid
    """
    home = home or nodectl_home()
    config_path = home / CONFIG_FILENAME

    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return Settings(state_dir=home / "profiles")

    logger.debug(f"Loading settings from {config_path}")
    try:
        settings = Settings.load(config_path)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse config file: {config_path}",
            f"The file is not valid YAML: {e}",
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {config_path}", str(e))

    if "state_dir" not in settings.model_fields_set:
        settings = settings.model_copy(update={"state_dir": home / "profiles"})
    return settings
