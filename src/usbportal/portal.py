"""
Entry object of the portal client.

A :class:`Portal` binds a transport to the broker's names and paths, mints the
per-call correlation tokens and keeps track of fire-and-forget calls (such as
``Request.Close``) so they are neither garbage collected mid-flight nor lost
silently when they fail.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .core.cancellable import Cancellable
from .core.config import PortalSettings
from .core.contracts import Transport

if TYPE_CHECKING:
    from .parent import Parent
    from .usb.candidate import DeviceCandidate
    from .usb.request import AccessMode
    from .usb.session import UsbSession

logger = logging.getLogger(__name__)


def sender_from_unique_name(unique_name: str) -> str:
    """``":1.42"`` -> ``"1_42"``, the form the broker uses in object paths."""
    return unique_name.lstrip(":").replace(".", "_")


class Portal:
    """Client-side handle on the broker."""

    def __init__(self, transport: Transport, *, settings: PortalSettings | None = None) -> None:
        self._transport = transport
        self._settings = settings or PortalSettings()
        self._sender = sender_from_unique_name(transport.unique_name)
        self._token_counter = itertools.count(1)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def settings(self) -> PortalSettings:
        return self._settings

    @property
    def sender(self) -> str:
        return self._sender

    def new_token(self) -> str:
        """Counter plus random suffix; unique for every outstanding call."""
        return f"{self._settings.token_prefix}{next(self._token_counter)}_{secrets.token_hex(4)}"

    def request_path(self, token: str) -> str:
        return f"{self._settings.request_path_prefix}{self._sender}/{token}"

    def session_path(self, token: str) -> str:
        return f"{self._settings.session_path_prefix}{self._sender}/{token}"

    def call_in_background(
        self, path: str, interface: str, method: str, args: tuple[Any, ...] = ()
    ) -> asyncio.Task[Any] | None:
        """Issue a call whose outcome nobody awaits. Failures are logged."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping %s.%s on %s", interface, method, path)
            return None

        task = loop.create_task(
            self._transport.call(path, interface, method, args),
            name=f"usbportal-{method}",
        )
        self._background_tasks.add(task)

        def _on_done(t: asyncio.Task[Any]) -> None:
            self._background_tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning("Background %s.%s on %s failed: %s", interface, method, path, exc)

        task.add_done_callback(_on_done)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding background call to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def create_usb_session(
        self,
        access_mode: AccessMode,
        candidates: Sequence[DeviceCandidate] | None = None,
        *,
        parent: Parent | None = None,
        cancellable: Cancellable | None = None,
        reason: str | None = None,
    ) -> UsbSession:
        """See :func:`usbportal.usb.request.create_usb_session`."""
        from .usb.request import create_usb_session

        return await create_usb_session(
            self,
            access_mode,
            candidates,
            parent=parent,
            cancellable=cancellable,
            reason=reason,
        )


__all__ = ["Portal", "sender_from_unique_name"]
