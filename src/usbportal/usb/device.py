"""
USB devices as reported by the broker.

A device is an opaque, broker-assigned id plus a bag of typed attributes
(``vendor``, ``product``, ``writable``, ...). The bag keeps the wire type tag of
every value; callers only see statically typed accessors. Reading an attribute
under the wrong type is a caller error and raises ``TypeError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from ..core.contracts import DeviceRecord, Variant, to_vardict

logger = logging.getLogger(__name__)

_STRING_SIGNATURES = frozenset({"s", "o", "g"})


class AttributeBag(Mapping[str, Variant]):
    """Read-only ``key -> Variant`` map with typed lookups."""

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values = MappingProxyType(to_vardict(values or {}))

    def __getitem__(self, key: str) -> Variant:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"AttributeBag({dict(self.plain())!r})"

    def plain(self) -> dict[str, Any]:
        """Untagged copy of the bag, handy for logging and JSON output."""
        return {key: variant.value for key, variant in self._values.items()}

    def _lookup(self, key: str, signatures: frozenset[str], kind: str) -> Any | None:
        variant = self._values.get(key)
        if variant is None:
            return None
        if variant.signature not in signatures:
            raise TypeError(
                f"Attribute {key!r} holds a {variant.signature!r} value, not a {kind}"
            )
        return variant.value

    def get_string(self, key: str) -> str | None:
        return self._lookup(key, _STRING_SIGNATURES, "string")

    def get_boolean(self, key: str) -> bool:
        return bool(self._lookup(key, frozenset({"b"}), "boolean"))

    def get_uint16(self, key: str) -> int | None:
        return self._lookup(key, frozenset({"q"}), "uint16")


class Device:
    """
    An immutable USB device entry.

    Two devices compare equal when their ids match. Ids are only unique within
    one session's registry at a given instant.
    """

    __slots__ = ("_id", "_attributes")

    def __init__(self, device_id: str, attributes: Mapping[str, Any] | None = None) -> None:
        if not device_id:
            raise ValueError("device id must be a non-empty string")
        self._id = device_id
        self._attributes = (
            attributes if isinstance(attributes, AttributeBag) else AttributeBag(attributes)
        )

    @classmethod
    def from_record(cls, record: DeviceRecord) -> Device:
        device = cls(record.id, record.attributes)
        logger.debug("Decoded device %s with %d attributes", device.id, len(device.attributes))
        return device

    @property
    def id(self) -> str:
        return self._id

    @property
    def attributes(self) -> AttributeBag:
        return self._attributes

    def get_string(self, key: str) -> str | None:
        return self._attributes.get_string(key)

    def get_boolean(self, key: str) -> bool:
        return self._attributes.get_boolean(key)

    def get_uint16(self, key: str) -> int | None:
        return self._attributes.get_uint16(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Device(id={self._id!r})"


__all__ = ["AttributeBag", "Device"]
