"""
Generic portal session handle.

Every portal session lives at an object path on the broker side. The broker
announces remote closure with a ``Session.Closed`` signal on that path, and a
client ends a session by calling ``Session.Close`` on it. Specialised sessions
(such as :class:`usbportal.usb.session.UsbSession`) wrap one of these.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .core.contracts import Subscription

if TYPE_CHECKING:
    from .portal import Portal

logger = logging.getLogger(__name__)

CLOSED_SIGNAL = "Closed"


class PortalSession:
    """Tracks one broker-side session object until it is closed."""

    def __init__(
        self,
        portal: Portal,
        handle: str,
        *,
        on_remote_closed: Callable[[], None] | None = None,
    ) -> None:
        self._portal = portal
        self._handle = handle
        self._on_remote_closed = on_remote_closed
        self._closed = False
        self._subscription: Subscription | None = portal.transport.subscribe(
            handle, portal.settings.session_interface, CLOSED_SIGNAL, self._on_closed_signal
        )

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the subscription and ask the broker to close the session."""
        if self._closed:
            return
        self.release()
        logger.debug("Closing portal session %s", self._handle)
        self._portal.call_in_background(
            self._handle, self._portal.settings.session_interface, "Close"
        )

    def release(self) -> None:
        """Stop tracking the session without telling the broker."""
        self._closed = True
        if self._subscription is not None:
            self._portal.transport.unsubscribe(self._subscription)
            self._subscription = None

    def _on_closed_signal(self, path: str, args: tuple[Any, ...]) -> None:
        if self._closed:
            return
        logger.info("Portal session %s closed by the broker", self._handle)
        self.release()
        if self._on_remote_closed is not None:
            self._on_remote_closed()


__all__ = ["CLOSED_SIGNAL", "PortalSession"]
