"""
Error taxonomy surfaced by the portal client.

Every failure of a session request is delivered to the caller exactly once as
one of the :class:`PortalError` subclasses below. ``code`` is a stable,
machine-readable identifier suitable for CLI exit mapping or logging.
"""

from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base class for expected operational errors."""

    code: str = "unknown"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class Denied(PortalError):
    """The broker answered the request with response code 1."""

    code = "denied"


class BrokerFailure(PortalError):
    """The broker answered with a response code other than 0 or 1."""

    code = "broker_failure"

    def __init__(self, message: str, *, response_code: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.response_code = response_code


class CallerCancelled(PortalError):
    """The caller's cancellable fired before the broker responded."""

    code = "cancelled"


class TransportError(PortalError):
    """The outbound call could not be delivered by the transport."""

    code = "transport_error"


class MalformedResponse(PortalError):
    """A successful response carried a device list that could not be decoded."""

    code = "malformed_response"


class BusError(PortalError):
    """Raised by the local bus for unknown methods or use after shutdown."""

    code = "bus_error"


__all__ = [
    "BrokerFailure",
    "BusError",
    "CallerCancelled",
    "Denied",
    "MalformedResponse",
    "PortalError",
    "TransportError",
]
