"""
Contracts and payload schemas shared by the portal client and its transports.

The broker speaks in method calls and named signals carrying positional
argument tuples. The models below are the decoding layer between those raw
tuples and the typed objects the rest of the package works with, together with
the ``Transport`` protocol every bus binding has to satisfy.
"""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UINT16_MAX = 0xFFFF

# Signal handlers run on the bus dispatcher; they must not wait for queue space.
SignalHandler = Callable[[str, tuple[Any, ...]], Awaitable[None] | None]
MethodHandler = Callable[[str, tuple[Any, ...]], Awaitable[Any] | Any]


class Variant(BaseModel):
    """A value tagged with its wire type signature (``s``, ``b``, ``q``, ...)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    signature: str = Field(min_length=1)
    value: Any = None

    @classmethod
    def infer(cls, value: Any) -> Variant:
        """Tag a plain Python value with the signature it would carry on the wire."""
        if isinstance(value, Variant):
            return value
        # bool is an int subclass, check it first
        if isinstance(value, bool):
            return cls(signature="b", value=value)
        if isinstance(value, str):
            return cls(signature="s", value=value)
        if isinstance(value, int):
            if 0 <= value <= UINT16_MAX:
                return cls(signature="q", value=value)
            return cls(signature="t" if value >= 0 else "x", value=value)
        if isinstance(value, float):
            return cls(signature="d", value=value)
        if isinstance(value, Mapping):
            return cls(signature="a{sv}", value=dict(value))
        if isinstance(value, (list, tuple)):
            return cls(signature="av", value=list(value))
        raise TypeError(f"Cannot infer a wire signature for {type(value).__name__}")


def to_vardict(values: Mapping[str, Any]) -> dict[str, Variant]:
    """Coerce a mapping of plain or tagged values into a ``a{sv}``-style dictionary."""
    if not isinstance(values, Mapping):
        raise TypeError("attributes must be a mapping")
    result: dict[str, Variant] = {}
    for key, value in values.items():
        if not isinstance(key, str):
            raise TypeError("attribute keys must be strings")
        if isinstance(value, Mapping) and set(value) == {"signature", "value"}:
            result[key] = Variant.model_validate(value)
        else:
            result[key] = Variant.infer(value)
    return result


class BasePayload(BaseModel):
    """Base class for all decoded wire payloads."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class DeviceRecord(BasePayload):
    """A ``(id, attributes)`` pair as listed in ``available_devices``."""

    id: str = Field(min_length=1)
    attributes: dict[str, Variant] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("device records are (id, attributes) pairs")
            return {"id": data[0], "attributes": data[1]}
        return data

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, value: Any) -> dict[str, Variant]:
        if value is None:
            return {}
        try:
            return to_vardict(value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc


class DeviceEvent(BasePayload):
    """A single ``(event, id, attributes)`` triple from a ``DeviceEvents`` batch."""

    event: str
    id: str = Field(min_length=1)
    attributes: dict[str, Variant] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_triple(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            if len(data) not in (2, 3):
                raise ValueError("device events are (event, id, attributes) triples")
            event, device_id, *rest = data
            return {"event": event, "id": device_id, "attributes": rest[0] if rest else {}}
        return data

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, value: Any) -> dict[str, Variant]:
        if value is None:
            return {}
        try:
            return to_vardict(value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc


class ResponseSignal(BasePayload):
    """Arguments of ``Request.Response``: ``(response_code, results)``."""

    response: int = Field(ge=0)
    results: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_args(cls, args: Sequence[Any]) -> ResponseSignal:
        response, *rest = args
        return cls(response=response, results=rest[0] if rest else {})

    def available_devices(self) -> list[DeviceRecord] | None:
        """
        Decode ``results["available_devices"]``.

        Returns ``None`` when the key is absent. Raises ``pydantic.ValidationError``
        when it is present but cannot be decoded.
        """
        raw = self.results.get("available_devices")
        if raw is None:
            return None
        if isinstance(raw, Variant):
            raw = raw.value
        return AvailableDevices.model_validate({"devices": raw}).devices


class AvailableDevices(BaseModel):
    """Validation wrapper for the ``available_devices`` list."""

    devices: list[DeviceRecord]


class CreateSessionOptions(BasePayload):
    """The ``a{sv}`` options dictionary of ``Usb.CreateSession``."""

    handle_token: str = Field(min_length=1)
    session_handle_token: str = Field(min_length=1)
    access_mode: Literal["listed-devices", "all"]
    reason: str | None = Field(default=None)
    devices: list[dict[str, Variant]] | None = Field(default=None)

    def to_vardict(self) -> dict[str, Variant]:
        options: dict[str, Variant] = {
            "handle_token": Variant(signature="s", value=self.handle_token),
            "session_handle_token": Variant(signature="s", value=self.session_handle_token),
            "access_mode": Variant(signature="s", value=self.access_mode),
        }
        if self.reason is not None:
            options["reason"] = Variant(signature="s", value=self.reason)
        if self.devices is not None:
            options["devices"] = Variant(signature="aa{sv}", value=list(self.devices))
        return options


class BusStatus(BasePayload):
    """Telemetry snapshot of the local bus."""

    queue_depth: int = Field(ge=0, description="Current number of queued signals.")
    queue_capacity: int = Field(ge=0, description="Maximum queue capacity (0 = unbounded).")
    subscriber_count: int = Field(ge=0, description="Total registered signal handlers.")
    method_count: int = Field(ge=0, description="Exported methods.")
    emitted_total: int = Field(ge=0, description="Cumulative emitted signals.")
    dispatched_total: int = Field(ge=0, description="Cumulative dispatched signals.")
    dropped_total: int = Field(ge=0, description="Signals dropped at shutdown.")
    calls_total: int = Field(ge=0, description="Cumulative method calls.")


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to bus-attached modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


@dataclass(frozen=True)
class Subscription:
    """Handle for a signal subscription."""

    path: str
    interface: str
    member: str
    handler: SignalHandler


@runtime_checkable
class Transport(Protocol):
    """
    The bus connection the portal client is written against.

    Signals are delivered in order per subscription. ``call`` raises on
    delivery failure; its return value is the method's reply.
    """

    @property
    def unique_name(self) -> str: ...

    def subscribe(
        self, path: str, interface: str, member: str, handler: SignalHandler
    ) -> Subscription: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...

    async def call(
        self, path: str, interface: str, method: str, args: tuple[Any, ...] = ()
    ) -> Any: ...


if TYPE_CHECKING:
    from .bus import LocalBus


class BaseModule(abc.ABC):
    """
    Abstract base class for components that live on a :class:`LocalBus`.

    Modules receive a bus instance and are responsible for exporting methods
    and subscribing to signals during ``start``.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()
        self._bus: LocalBus | None = None

    @property
    def bus(self) -> LocalBus:
        if self._bus is None:
            raise RuntimeError(f"{self.__class__.__name__} has not been attached to a LocalBus.")
        return self._bus

    def set_bus(self, bus: LocalBus) -> None:
        """Attach the shared bus instance to the module."""
        self._bus = bus

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin processing by exporting methods or subscribing to signals."""

    async def stop(self) -> None:
        """Optional hook to release resources."""
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})


__all__ = [
    "UINT16_MAX",
    "AvailableDevices",
    "BaseModule",
    "BasePayload",
    "BusStatus",
    "CreateSessionOptions",
    "DeviceEvent",
    "DeviceRecord",
    "HealthStatus",
    "MethodHandler",
    "ModuleConfig",
    "ResponseSignal",
    "SignalHandler",
    "Subscription",
    "Transport",
    "Variant",
    "to_vardict",
]
