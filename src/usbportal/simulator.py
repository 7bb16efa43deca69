"""
In-process broker simulator.

The module serves the broker side of the USB portal on a :class:`LocalBus` so
the client can be exercised without a desktop portal: it answers
``CreateSession`` with a configurable policy, records every call it receives
and lets tests (or the demo entrypoint) plug and unplug devices or close
sessions from the broker side.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .core.config import PortalSettings, SimulatorSettings
from .core.contracts import BaseModule, HealthStatus, ModuleConfig, Variant
from .portal import sender_from_unique_name

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """Strip ``Variant`` tags recursively."""
    if isinstance(value, Variant):
        return _plain(value.value)
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


@dataclass
class CreateSessionRecord:
    """A ``CreateSession`` call as seen by the simulated broker."""

    parent_handle: str
    options: dict[str, Any]
    request_path: str
    session_handle: str
    answered: bool = False


@dataclass
class SimulatedDevice:
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def matches(self, candidates: list[dict[str, Any]]) -> bool:
        vendor = self.attributes.get("vendor_id")
        product = self.attributes.get("product_id")
        return any(
            candidate.get("vendor_id") == vendor and candidate.get("product_id") == product
            for candidate in candidates
        )


class BrokerSimulator(BaseModule):
    """Serves ``Usb``, ``Request`` and ``Session`` methods on a local bus."""

    name = "usbportal.simulator"

    def __init__(
        self,
        *,
        settings: PortalSettings | None = None,
        policy: str = "grant",
        failure_code: int = 2,
        devices: Iterable[tuple[str, Mapping[str, Any]]] = (),
    ) -> None:
        super().__init__()
        self._settings = settings or PortalSettings()
        self._policy = policy
        self._failure_code = failure_code
        self._devices = [SimulatedDevice(device_id, dict(attrs)) for device_id, attrs in devices]
        self._pending: dict[str, CreateSessionRecord] = {}
        self._sessions: list[str] = []
        self.create_calls: list[CreateSessionRecord] = []
        self.request_closes: list[str] = []
        self.session_closes: list[str] = []

    @property
    def policy(self) -> str:
        return self._policy

    @policy.setter
    def policy(self, value: str) -> None:
        SimulatorSettings(policy=value)
        self._policy = value

    @property
    def sessions(self) -> tuple[str, ...]:
        return tuple(self._sessions)

    @property
    def pending_requests(self) -> tuple[str, ...]:
        return tuple(self._pending)

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = SimulatorSettings.model_validate(config.options)
        # Only keys that are present override constructor arguments.
        if "policy" in config.options:
            self._policy = options.policy
        if "failure_code" in config.options:
            self._failure_code = options.failure_code
        if "devices" in config.options:
            self._devices = [
                SimulatedDevice(device.id, dict(device.attributes)) for device in options.devices
            ]

    async def start(self) -> None:
        settings = self._settings
        self.bus.export_method(settings.usb_interface, "CreateSession", self._on_create_session)
        self.bus.export_method(settings.request_interface, "Close", self._on_request_close)
        self.bus.export_method(settings.session_interface, "Close", self._on_session_close)
        logger.info(
            "BrokerSimulator serving %s with policy %s and %d devices",
            settings.usb_interface,
            self._policy,
            len(self._devices),
        )

    async def stop(self) -> None:
        settings = self._settings
        self.bus.unexport_method(settings.usb_interface, "CreateSession")
        self.bus.unexport_method(settings.request_interface, "Close")
        self.bus.unexport_method(settings.session_interface, "Close")
        logger.info("BrokerSimulator stopped")

    async def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy" if self._bus is not None else "degraded",
            details={
                "policy": self._policy,
                "sessions": len(self._sessions),
                "pending_requests": len(self._pending),
                "devices": len(self._devices),
            },
        )

    async def respond(
        self,
        request_path: str,
        code: int = 0,
        results: Mapping[str, Any] | None = None,
    ) -> None:
        """Emit ``Response`` for a request that is still pending."""
        record = self._pending.pop(request_path, None)
        if record is None:
            raise KeyError(f"No pending request at {request_path}")
        if results is None:
            results = {"available_devices": self._offered_devices(record)} if code == 0 else {}
        if code == 0:
            self._sessions.append(record.session_handle)
        record.answered = True
        logger.debug("Responding %d to %s", code, request_path)
        await self.bus.emit_signal(
            request_path, self._settings.request_interface, "Response", (code, dict(results))
        )

    async def plug(self, device_id: str, attributes: Mapping[str, Any] | None = None) -> None:
        device = SimulatedDevice(device_id, dict(attributes or {}))
        self._devices.append(device)
        for handle in self._sessions:
            await self.emit_device_events(handle, [("add", device.id, device.attributes)])

    async def unplug(self, device_id: str) -> None:
        self._devices = [device for device in self._devices if device.id != device_id]
        for handle in self._sessions:
            await self.emit_device_events(handle, [("remove", device_id, {})])

    async def emit_device_events(
        self, session_handle: str, events: list[tuple[Any, ...]] | list[Any]
    ) -> None:
        """Emit one raw ``DeviceEvents`` batch at ``session_handle``."""
        await self.bus.emit_signal(
            session_handle,
            self._settings.usb_interface,
            "DeviceEvents",
            (session_handle, list(events)),
        )

    async def close_session(self, session_handle: str) -> None:
        """Close a session from the broker side."""
        if session_handle in self._sessions:
            self._sessions.remove(session_handle)
        await self.bus.emit_signal(
            session_handle, self._settings.session_interface, "Closed", ({},)
        )

    def _offered_devices(self, record: CreateSessionRecord) -> list[tuple[str, dict[str, Any]]]:
        candidates = record.options.get("devices")
        devices = self._devices
        if record.options.get("access_mode") == "listed-devices" and candidates:
            devices = [device for device in devices if device.matches(candidates)]
        return [(device.id, dict(device.attributes)) for device in devices]

    async def _on_create_session(self, path: str, args: tuple[Any, ...]) -> str:
        parent_handle, options = args
        plain_options = _plain(options)
        sender = sender_from_unique_name(self.bus.unique_name)
        request_path = (
            f"{self._settings.request_path_prefix}{sender}/{plain_options['handle_token']}"
        )
        session_handle = (
            f"{self._settings.session_path_prefix}{sender}/"
            f"{plain_options['session_handle_token']}"
        )
        record = CreateSessionRecord(
            parent_handle=parent_handle,
            options=plain_options,
            request_path=request_path,
            session_handle=session_handle,
        )
        self.create_calls.append(record)
        self._pending[request_path] = record
        logger.debug("CreateSession from %s (parent=%r)", sender, parent_handle)

        if self._policy == "grant":
            await self.respond(request_path, 0)
        elif self._policy == "deny":
            await self.respond(request_path, 1)
        elif self._policy == "fail":
            await self.respond(request_path, self._failure_code)
        return request_path

    async def _on_request_close(self, path: str, args: tuple[Any, ...]) -> None:
        self.request_closes.append(path)
        self._pending.pop(path, None)
        logger.debug("Request %s closed by client", path)

    async def _on_session_close(self, path: str, args: tuple[Any, ...]) -> None:
        self.session_closes.append(path)
        if path in self._sessions:
            self._sessions.remove(path)
        logger.debug("Session %s closed by client", path)


__all__ = ["BrokerSimulator", "CreateSessionRecord"]
