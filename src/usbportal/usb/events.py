"""
Translate ``DeviceEvents`` signals into registry mutations.

Each signal carries ``(session_handle, events)`` where ``events`` is a list of
``(event, id, attributes)`` triples. Triples are applied strictly in delivery
order. A malformed triple, an unknown event kind or a remove for an id that is
not present only affects that one triple.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from ..core.config import PortalSettings
from ..core.contracts import DeviceEvent, Subscription, Transport
from .device import Device
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)

DEVICE_EVENTS_SIGNAL = "DeviceEvents"


class DeviceEventSubscriber:
    """Keeps one session's registry in step with the broker's event stream."""

    def __init__(
        self,
        transport: Transport,
        settings: PortalSettings,
        session_handle: str,
        registry: DeviceRegistry,
    ) -> None:
        self._transport = transport
        self._session_handle = session_handle
        self._registry = registry
        self._subscription: Subscription | None = transport.subscribe(
            session_handle, settings.usb_interface, DEVICE_EVENTS_SIGNAL, self._on_device_events
        )

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def release(self) -> None:
        """Stop listening. Batches already in flight are dropped."""
        if self._subscription is None:
            return
        self._transport.unsubscribe(self._subscription)
        self._subscription = None
        logger.debug("Released device event subscription for %s", self._session_handle)

    def _on_device_events(self, path: str, args: tuple[Any, ...]) -> None:
        if self._subscription is None:
            return
        if len(args) < 2 or not isinstance(args[1], (list, tuple)):
            logger.warning("Ignoring malformed DeviceEvents payload for %s", self._session_handle)
            return
        for raw in args[1]:
            # A registry observer may close the session mid-batch.
            if self._subscription is None:
                logger.debug("Dropping rest of DeviceEvents batch for %s", self._session_handle)
                return
            self.apply(raw)

    def apply(self, raw: Any) -> None:
        """Apply a single ``(event, id, attributes)`` triple to the registry."""
        try:
            event = DeviceEvent.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed device event for %s: %s", self._session_handle, exc
            )
            return

        logger.debug("[usb] (DeviceEvents): event: %s, id: %s", event.event, event.id)
        if event.event == "add":
            self._registry.apply_add(Device(event.id, event.attributes))
        elif event.event == "remove":
            self._registry.apply_remove(event.id)
        else:
            logger.debug("Ignoring unknown device event kind %r", event.event)


__all__ = ["DEVICE_EVENTS_SIGNAL", "DeviceEventSubscriber"]
