"""
Dynaconf-powered configuration loader with Pydantic validation.

The portal client works out of the box with the well-known desktop portal
names. ``ConfigService`` layers optional ``config.yaml``/``secrets.yaml`` files
and ``USBPORTAL_*`` environment variables on top of those defaults and
validates the result into a :class:`ConfigSnapshot`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries without mutating the originals."""
    result: dict[str, Any] = {**base}
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


class PortalSettings(BaseModel):
    """Bus names and object paths of the broker, plus client-side knobs."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    bus_name: str = Field(default="org.freedesktop.portal.Desktop")
    object_path: str = Field(default="/org/freedesktop/portal/desktop")
    usb_interface: str = Field(default="org.freedesktop.portal.Usb")
    request_interface: str = Field(default="org.freedesktop.portal.Request")
    session_interface: str = Field(default="org.freedesktop.portal.Session")
    request_path_prefix: str = Field(default="/org/freedesktop/portal/desktop/request/")
    session_path_prefix: str = Field(default="/org/freedesktop/portal/desktop/session/")
    token_prefix: str = Field(default="portal", pattern=r"^[A-Za-z0-9_]+$")
    default_reason: str | None = Field(default=None)
    bus_queue_size: int = Field(default=256, ge=0)

    @field_validator("request_path_prefix", "session_path_prefix")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path prefixes must be absolute object paths")
        return value if value.endswith("/") else f"{value}/"


class SimulatedDeviceSettings(BaseModel):
    """A device the broker simulator offers when a session is granted."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    attributes: dict[str, Any] = Field(default_factory=dict)


class SimulatorSettings(BaseModel):
    """Behaviour of the in-process broker simulator."""

    model_config = ConfigDict(extra="ignore")

    policy: Literal["grant", "deny", "fail", "silent"] = Field(default="grant")
    failure_code: int = Field(default=2, ge=2)
    devices: list[SimulatedDeviceSettings] = Field(default_factory=list)


class LoggingSettings(BaseModel):
    """Logging preferences used by the demo entrypoint."""

    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO")
    file: Path | None = Field(default=None)
    max_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=3, ge=0)

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


class ConfigSnapshot(BaseModel):
    """Validated view over every configuration section."""

    model_config = ConfigDict(extra="ignore")

    portal: PortalSettings = Field(default_factory=PortalSettings)
    simulator: SimulatorSettings = Field(default_factory=SimulatorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigService:
    """
    Runtime facade for loading and validating configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        existing_files: list[str] = []
        if config_dir is not None:
            self._config_dir: Path | None = Path(config_dir)
            settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
            existing_files = [str(path) for path in settings_files if path.exists()]
            if not existing_files:
                raise ConfigError(
                    f"No configuration files found in {self._config_dir}. "
                    "Expected at least config.yaml."
                )
        else:
            self._config_dir = None

        self._settings = settings or Dynaconf(
            envvar_prefix="USBPORTAL",
            settings_files=existing_files,
            load_dotenv=False,
            environments=False,
        )
        self._snapshot = self._build_snapshot()

    @property
    def config_dir(self) -> Path | None:
        return self._config_dir

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def refresh(self) -> ConfigSnapshot:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def apply_changes(self, changes: dict[str, Any]) -> ConfigSnapshot:
        """
        Merge the provided changes into the current configuration snapshot.

        This does not persist the changes to disk.
        """
        raw = self._settings.as_dict()
        # Dynaconf stores top-level keys upper-cased.
        merged = _deep_merge(raw, {key.upper(): value for key, value in changes.items()})
        self._snapshot = self._build_snapshot(merged)
        return self._snapshot

    def _build_snapshot(self, raw: dict[str, Any] | None = None) -> ConfigSnapshot:
        data = self._extract_snapshot_data(raw if raw is not None else self._settings.as_dict())
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError("Configuration validation failed") from exc

    def _extract_snapshot_data(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "portal": _section(raw, "portal"),
            "simulator": _section(raw, "simulator"),
            "logging": _section(raw, "logging"),
        }


__all__ = [
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "LoggingSettings",
    "PortalSettings",
    "SimulatedDeviceSettings",
    "SimulatorSettings",
]
