"""Unit tests for settings loading."""

import pytest

from nodectl.config import Settings, load_settings
from nodectl.exceptions import ConfigurationError


def test_defaults_without_config_file(tmp_path):
    settings = load_settings(tmp_path)

    assert settings.state_dir == tmp_path / "profiles"
    assert settings.driver == "simulated"
    assert settings.exit_codes.ok == 0
    assert settings.exit_codes.degraded == 7
    assert settings.exit_codes.unavailable == 8


def test_load_config_file(tmp_path):
    (tmp_path / "config.yml").write_text(
        "wait_timeout: 30\n"
        "exit_codes:\n"
        "  degraded: 17\n"
        "default_options:\n"
        "  cpus: 4\n"
        "  kubernetes_version: v1.29.2\n"
    )

    settings = load_settings(tmp_path)

    assert settings.wait_timeout == 30
    assert settings.exit_codes.degraded == 17
    assert settings.exit_codes.unavailable == 8
    assert settings.default_options.cpus == 4
    assert settings.state_dir == tmp_path / "profiles"


def test_home_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("NODECTL_HOME", str(tmp_path))

    assert load_settings().state_dir == tmp_path / "profiles"


def test_invalid_yaml(tmp_path):
    (tmp_path / "config.yml").write_text("wait_timeout: [\n")

    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(tmp_path)
    assert "config.yml" in exc_info.value.message


def test_invalid_values(tmp_path):
    (tmp_path / "config.yml").write_text("exit_codes:\n  degraded: 8\n  unavailable: 8\n")

    with pytest.raises(ConfigurationError):
        load_settings(tmp_path)


def test_invalid_kubernetes_version(tmp_path):
    (tmp_path / "config.yml").write_text("default_options:\n  kubernetes_version: latest\n")

    with pytest.raises(ConfigurationError):
        load_settings(tmp_path)


def test_save_and_load(tmp_path):
    path = tmp_path / "config.yml"
    Settings(state_dir=tmp_path / "state", wait_timeout=12).save(path)

    loaded = Settings.load(path)

    assert loaded.wait_timeout == 12
    assert loaded.state_dir == tmp_path / "state"
