"""
Asynchronous ``Usb.CreateSession`` handshake.

A request goes through four states:

``AWAITING_PARENT_HANDLE``
    The parent window (if any) is exported to obtain the handle string sent to
    the broker. Without a parent the handle is ``""``.
``DISPATCHING``
    Two correlation tokens are minted, the ``Response`` signal at the reserved
    request path is subscribed, the caller's cancellable is connected and the
    ``CreateSession`` call is issued.
``AWAITING_RESPONSE``
    Either the broker's ``Response`` arrives (``0`` granted, ``1`` denied,
    anything else failed) or the caller cancels first, in which case a
    fire-and-forget ``Request.Close`` is sent for the request path.
``RESOLVED``
    Exactly one outcome has been delivered and every per-call resource has
    been released.

All per-call state lives in :class:`PendingCreateCall`, an async context
manager whose teardown runs once on every exit path.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..core.cancellable import Cancellable
from ..core.contracts import CreateSessionOptions, ResponseSignal, Subscription
from ..core.errors import (
    BrokerFailure,
    CallerCancelled,
    Denied,
    MalformedResponse,
    PortalError,
    TransportError,
)
from .candidate import DeviceCandidate
from .device import Device
from .session import UsbSession

if TYPE_CHECKING:
    from ..parent import Parent
    from ..portal import Portal

logger = logging.getLogger(__name__)

RESPONSE_SIGNAL = "Response"


class AccessMode(str, enum.Enum):
    """Which devices the application asks to be offered."""

    LISTED_DEVICES = "listed-devices"
    ALL = "all"


class CallState(str, enum.Enum):
    AWAITING_PARENT_HANDLE = "awaiting-parent-handle"
    DISPATCHING = "dispatching"
    AWAITING_RESPONSE = "awaiting-response"
    RESOLVED = "resolved"


class PendingCreateCall:
    """Ephemeral state of one ``CreateSession`` request."""

    def __init__(
        self,
        portal: Portal,
        access_mode: AccessMode | str,
        candidates: Sequence[DeviceCandidate] | None = None,
        *,
        parent: Parent | None = None,
        cancellable: Cancellable | None = None,
        reason: str | None = None,
    ) -> None:
        if candidates is not None:
            if len(candidates) == 0:
                raise ValueError("candidates must be non-empty when given")
            self._candidates: list[DeviceCandidate] | None = [
                candidate.copy_owned() for candidate in candidates
            ]
        else:
            self._candidates = None
        self._portal = portal
        self._access_mode = AccessMode(access_mode)
        self._reason = reason if reason is not None else portal.settings.default_reason
        self._parent = parent
        self._parent_exported = False
        self._cancellable = cancellable
        self._cancel_handler_id: int | None = None
        self._response_subscription: Subscription | None = None
        self._result: asyncio.Future[UsbSession] | None = None
        self._close_sent = False
        self._torn_down = False
        self.state = CallState.AWAITING_PARENT_HANDLE
        self.request_path: str | None = None
        self.session_handle: str | None = None

    @property
    def candidates(self) -> tuple[DeviceCandidate, ...]:
        return tuple(self._candidates or ())

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    async def __aenter__(self) -> PendingCreateCall:
        self._result = asyncio.get_running_loop().create_future()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.teardown()

    async def run(self) -> UsbSession:
        """Drive the handshake and return the granted session."""
        if self._result is None:
            raise RuntimeError("PendingCreateCall.run() must be used inside 'async with'")
        if self._cancellable is not None and self._cancellable.cancelled:
            self._resolve_state()
            raise CallerCancelled("CreateUsbSession call canceled by caller")

        parent_handle = await self._export_parent()
        if self._cancellable is not None and self._cancellable.cancelled:
            self._resolve_state()
            raise CallerCancelled("CreateUsbSession call canceled by caller")

        try:
            await self._dispatch(parent_handle)
            if not self._result.done():
                self.state = CallState.AWAITING_RESPONSE
            session = await self._result
        except asyncio.CancelledError:
            self._abandon()
            raise
        finally:
            self._resolve_state()
        logger.info(
            "USB session %s granted with %d devices", session.handle, len(session.registry)
        )
        return session

    def teardown(self) -> None:
        """Release every per-call resource. Safe to call more than once."""
        if self._torn_down:
            return
        self._torn_down = True
        if self._response_subscription is not None:
            self._portal.transport.unsubscribe(self._response_subscription)
            self._response_subscription = None
        self._disconnect_cancellable()
        if self._parent is not None and self._parent_exported:
            self._parent.unexport()
            self._parent_exported = False
        if self._result is not None and not self._result.done():
            self._result.cancel()
        self._candidates = None
        self._resolve_state()
        logger.debug("Released CreateSession call state for %s", self.request_path)

    async def _export_parent(self) -> str:
        if self._parent is None:
            return ""
        export = asyncio.ensure_future(self._parent.export())
        if self._cancellable is None:
            handle = await export
            self._parent_exported = True
            return handle

        cancelled = asyncio.ensure_future(self._cancellable.wait())
        try:
            done, _pending = await asyncio.wait(
                {export, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            if not export.done():
                export.cancel()
        if export in done and not export.cancelled():
            handle = export.result()
            self._parent_exported = True
            return handle
        self._resolve_state()
        raise CallerCancelled("Parent window export canceled by caller")

    async def _dispatch(self, parent_handle: str) -> None:
        self.state = CallState.DISPATCHING
        portal = self._portal
        settings = portal.settings
        token = portal.new_token()
        session_token = portal.new_token()
        self.request_path = portal.request_path(token)
        self.session_handle = portal.session_path(session_token)

        try:
            self._response_subscription = portal.transport.subscribe(
                self.request_path, settings.request_interface, RESPONSE_SIGNAL, self._on_response
            )
        except Exception as exc:
            error = TransportError(f"Could not subscribe to {self.request_path}: {exc}")
            error.__cause__ = exc
            self._deliver_error(error)
            return
        if self._cancellable is not None:
            self._cancel_handler_id = self._cancellable.connect(self._on_cancelled)

        options = CreateSessionOptions(
            handle_token=token,
            session_handle_token=session_token,
            access_mode=self._access_mode.value,
            reason=self._reason,
            devices=(
                [candidate.to_wire() for candidate in self._candidates]
                if self._candidates is not None
                else None
            ),
        )
        logger.debug(
            "Calling USB CreateSession (request=%s, session=%s, mode=%s, candidates=%s)",
            self.request_path,
            self.session_handle,
            self._access_mode.value,
            [str(candidate) for candidate in self._candidates or ()],
        )
        try:
            await portal.transport.call(
                settings.object_path,
                settings.usb_interface,
                "CreateSession",
                (parent_handle, options.to_vardict()),
            )
        except Exception as exc:
            error = TransportError(f"CreateSession call failed: {exc}")
            error.__cause__ = exc
            self._deliver_error(error)

    def _on_response(self, path: str, args: tuple[Any, ...]) -> None:
        if self._result is None or self._result.done():
            return
        self._disconnect_cancellable()

        try:
            response = ResponseSignal.from_args(args)
        except ValueError as exc:
            error = MalformedResponse(f"Undecodable Response signal: {exc}")
            error.__cause__ = exc
            self._deliver_error(error)
            return

        logger.debug("Response %d received for %s", response.response, path)
        if response.response == 0:
            self._deliver_session(response)
        elif response.response == 1:
            self._deliver_error(Denied("USB permission request canceled"))
        else:
            self._deliver_error(
                BrokerFailure(
                    "USB permission request failed", response_code=response.response
                )
            )

    def _deliver_session(self, response: ResponseSignal) -> None:
        try:
            records = response.available_devices()
        except ValidationError as exc:
            error = MalformedResponse(
                "available_devices could not be decoded",
                details={"errors": exc.errors(include_url=False)},
            )
            error.__cause__ = exc
            self._deliver_error(error)
            return
        devices = [Device.from_record(record) for record in records or ()]
        assert self._result is not None and self.session_handle is not None
        try:
            session = UsbSession(self._portal, self.session_handle, devices)
        except Exception as exc:
            error = TransportError(
                f"Could not subscribe to session {self.session_handle}: {exc}"
            )
            error.__cause__ = exc
            self._deliver_error(error)
            return
        self._result.set_result(session)

    def _on_cancelled(self) -> None:
        if self._result is None or self._result.done():
            return
        self._send_close()
        self._deliver_error(CallerCancelled("CreateUsbSession call canceled by caller"))

    def _abandon(self) -> None:
        """The awaiting task itself was cancelled."""
        result = self._result
        assert result is not None
        if not result.done():
            result.cancel()
        if result.cancelled():
            self._send_close()
        elif result.exception() is None:
            # Granted but never handed over.
            result.result().close()

    def _send_close(self) -> None:
        if self._close_sent or self.request_path is None:
            return
        self._close_sent = True
        logger.debug("Calling Close on %s", self.request_path)
        self._portal.call_in_background(
            self.request_path, self._portal.settings.request_interface, "Close"
        )

    def _deliver_error(self, error: PortalError) -> None:
        if self._result is None or self._result.done():
            return
        logger.info("CreateSession %s resolved with %s: %s", self.request_path, error.code, error)
        self._result.set_exception(error)

    def _disconnect_cancellable(self) -> None:
        if self._cancellable is not None and self._cancel_handler_id is not None:
            self._cancellable.disconnect(self._cancel_handler_id)
            self._cancel_handler_id = None

    def _resolve_state(self) -> None:
        self.state = CallState.RESOLVED


async def create_usb_session(
    portal: Portal,
    access_mode: AccessMode | str,
    candidates: Sequence[DeviceCandidate] | None = None,
    *,
    parent: Parent | None = None,
    cancellable: Cancellable | None = None,
    reason: str | None = None,
) -> UsbSession:
    """
    Ask the broker for a USB session.

    Returns the granted :class:`UsbSession` or raises one of
    :class:`~usbportal.core.errors.Denied`,
    :class:`~usbportal.core.errors.BrokerFailure`,
    :class:`~usbportal.core.errors.CallerCancelled`,
    :class:`~usbportal.core.errors.TransportError` or
    :class:`~usbportal.core.errors.MalformedResponse`.
    """
    call = PendingCreateCall(
        portal,
        access_mode,
        candidates,
        parent=parent,
        cancellable=cancellable,
        reason=reason,
    )
    async with call:
        return await call.run()


__all__ = [
    "RESPONSE_SIGNAL",
    "AccessMode",
    "CallState",
    "PendingCreateCall",
    "create_usb_session",
]
