"""Tests for the Dynaconf-backed configuration service."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from usbportal.core.config import (
    ConfigError,
    ConfigService,
    ConfigSnapshot,
    LoggingSettings,
    PortalSettings,
    SimulatedDeviceSettings,
    SimulatorSettings,
)


def test_config_service_loads_snapshot(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.snapshot
    assert isinstance(snapshot, ConfigSnapshot)
    assert snapshot.portal.token_prefix == "lab"
    assert snapshot.portal.default_reason == "Flash the lab board"
    assert snapshot.simulator.policy == "grant"
    assert [device.id for device in snapshot.simulator.devices] == ["board", "keyboard"]
    assert snapshot.simulator.devices[0].attributes["name"] == "ST-Link"
    assert isinstance(snapshot.simulator.devices[0], SimulatedDeviceSettings)
    assert snapshot.logging.level == "DEBUG"


def test_secrets_file_is_layered_over_config(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.snapshot
    assert snapshot.portal.bus_name == "org.example.portal.Test"
    # Keys only present in config.yaml survive the merge.
    assert snapshot.portal.token_prefix == "lab"


def test_defaults_apply_without_config_dir() -> None:
    service = ConfigService()
    snapshot = service.snapshot
    assert service.config_dir is None
    assert snapshot.portal == PortalSettings()
    assert snapshot.portal.usb_interface == "org.freedesktop.portal.Usb"
    assert snapshot.simulator.policy == "grant"
    assert snapshot.logging.file is None


def test_missing_config_files_raise(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        ConfigService(config_dir=tmp_path)


def test_apply_changes_merges_without_touching_other_keys(
    sample_config_service: ConfigService,
) -> None:
    snapshot = sample_config_service.apply_changes({"simulator": {"policy": "deny"}})
    assert snapshot.simulator.policy == "deny"
    assert len(snapshot.simulator.devices) == 2
    assert snapshot.portal.token_prefix == "lab"
    assert sample_config_service.snapshot is snapshot


def test_apply_changes_rejects_invalid_values(sample_config_service: ConfigService) -> None:
    with pytest.raises(ConfigError):
        sample_config_service.apply_changes({"simulator": {"policy": "maybe"}})
    with pytest.raises(ConfigError):
        sample_config_service.apply_changes({"portal": {"token_prefix": "not a token"}})


def test_refresh_picks_up_file_changes(sample_config_dir: Path) -> None:
    service = ConfigService(config_dir=sample_config_dir)
    (sample_config_dir / "config.yaml").write_text(
        "portal:\n  token_prefix: \"refreshed\"\n", encoding="utf-8"
    )
    snapshot = service.refresh()
    assert snapshot.portal.token_prefix == "refreshed"


def test_environment_variables_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USBPORTAL_PORTAL__token_prefix", "fromenv")
    snapshot = ConfigService().snapshot
    assert snapshot.portal.token_prefix == "fromenv"


def test_path_prefixes_are_normalised() -> None:
    settings = PortalSettings(
        request_path_prefix="/org/example/request",
        session_path_prefix="/org/example/session/",
    )
    assert settings.request_path_prefix == "/org/example/request/"
    assert settings.session_path_prefix == "/org/example/session/"

    with pytest.raises(ValidationError):
        PortalSettings(request_path_prefix="relative/request")


def test_simulator_and_logging_settings_validation() -> None:
    with pytest.raises(ValidationError):
        SimulatorSettings(failure_code=1)
    assert LoggingSettings(level="warning").level == "WARNING"
