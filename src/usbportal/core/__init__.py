"""
Core infrastructure shared by the portal client.

This package exposes the in-process bus, the wire contracts, configuration,
cancellation tokens and the error taxonomy.
"""

from .bus import LocalBus
from .cancellable import Cancellable
from .config import ConfigError, ConfigService, ConfigSnapshot, PortalSettings
from .contracts import (
    BaseModule,
    BasePayload,
    HealthStatus,
    ModuleConfig,
    Subscription,
    Transport,
    Variant,
)
from .errors import PortalError

__all__ = [
    "BaseModule",
    "BasePayload",
    "Cancellable",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "HealthStatus",
    "LocalBus",
    "ModuleConfig",
    "PortalError",
    "PortalSettings",
    "Subscription",
    "Transport",
    "Variant",
]
