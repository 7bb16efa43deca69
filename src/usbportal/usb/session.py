"""
Live USB session handed to the application after a granted request.

The session owns its device registry, the ``DeviceEvents`` subscriber feeding
it and the underlying portal session. It moves from ``ACTIVE`` to ``CLOSED``
exactly once, either through :meth:`UsbSession.close` or because the broker
closed it; after that the registry is empty and nothing mutates it again.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from ..session import PortalSession
from .device import Device
from .events import DeviceEventSubscriber
from .registry import DeviceRegistry

if TYPE_CHECKING:
    from ..portal import Portal

logger = logging.getLogger(__name__)

ClosedCallback = Callable[["UsbSession"], None]


class SessionState(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class UsbSession:
    """A granted USB access session."""

    def __init__(self, portal: Portal, handle: str, devices: Iterable[Device] = ()) -> None:
        logger.debug("Creating USB session from handle %s", handle)
        self._handle = handle
        self._state = SessionState.ACTIVE
        self._closed_callbacks: list[ClosedCallback] = []
        self._closed_event = asyncio.Event()
        self._registry = DeviceRegistry()
        self._registry.load(devices)
        self._portal_session = PortalSession(
            portal, handle, on_remote_closed=self._on_remote_closed
        )
        try:
            self._events = DeviceEventSubscriber(
                portal.transport, portal.settings, handle, self._registry
            )
        except Exception:
            self._portal_session.release()
            raise

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def devices(self) -> tuple[Device, ...]:
        """Point-in-time snapshot of the available devices."""
        return self._registry.snapshot()

    def on_closed(self, callback: ClosedCallback) -> Callable[[], None]:
        """
        Run ``callback(session)`` once the session closes.

        Returns a function that removes the callback again. Registering on an
        already closed session does nothing.
        """
        if self._state is SessionState.CLOSED:
            return lambda: None
        self._closed_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._closed_callbacks:
                self._closed_callbacks.remove(callback)

        return _remove

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def close(self) -> None:
        """Close the session. Calling it again has no further effect."""
        if self._state is SessionState.CLOSED:
            return
        logger.info("Closing USB session %s", self._handle)
        self._teardown()
        self._portal_session.close()
        self._emit_closed()

    async def __aenter__(self) -> UsbSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"UsbSession(handle={self._handle!r}, state={self._state.value}, "
            f"devices={len(self._registry)})"
        )

    def _teardown(self) -> None:
        self._state = SessionState.CLOSED
        self._events.release()
        self._registry.seal()

    def _on_remote_closed(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        logger.info("USB session %s closed by the broker", self._handle)
        self._teardown()
        self._emit_closed()

    def _emit_closed(self) -> None:
        self._closed_event.set()
        callbacks, self._closed_callbacks = self._closed_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Closed callback %s failed for %s", callback, self._handle)


__all__ = ["ClosedCallback", "SessionState", "UsbSession"]
