"""USB session negotiation and live device tracking."""

from .candidate import DeviceCandidate
from .device import AttributeBag, Device
from .events import DeviceEventSubscriber
from .registry import DeviceRegistry, RegistryChange
from .request import AccessMode, CallState, PendingCreateCall, create_usb_session
from .session import SessionState, UsbSession

__all__ = [
    "AccessMode",
    "AttributeBag",
    "CallState",
    "Device",
    "DeviceCandidate",
    "DeviceEventSubscriber",
    "DeviceRegistry",
    "PendingCreateCall",
    "RegistryChange",
    "SessionState",
    "UsbSession",
    "create_usb_session",
]
