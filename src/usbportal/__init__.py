"""
usbportal - USB device access through a desktop portal broker

A sandboxed application asks the broker for a USB session, receives a grant or
denial asynchronously, and then follows the live set of devices it may use.
"""

__version__ = "0.1.0"

from usbportal.core.cancellable import Cancellable
from usbportal.core.errors import (
    BrokerFailure,
    CallerCancelled,
    Denied,
    MalformedResponse,
    PortalError,
    TransportError,
)
from usbportal.parent import Parent, StaticParent
from usbportal.portal import Portal
from usbportal.usb import (
    AccessMode,
    Device,
    DeviceCandidate,
    DeviceRegistry,
    SessionState,
    UsbSession,
    create_usb_session,
)

__all__ = [
    "AccessMode",
    "BrokerFailure",
    "CallerCancelled",
    "Cancellable",
    "Denied",
    "Device",
    "DeviceCandidate",
    "DeviceRegistry",
    "MalformedResponse",
    "Parent",
    "Portal",
    "PortalError",
    "SessionState",
    "StaticParent",
    "TransportError",
    "UsbSession",
    "create_usb_session",
]
