"""
Ordered device registry owned by a single USB session.

The registry is only ever mutated through :meth:`DeviceRegistry.load`,
:meth:`DeviceRegistry.apply_add`, :meth:`DeviceRegistry.apply_remove` and
:meth:`DeviceRegistry.clear`. Once :meth:`DeviceRegistry.seal` has run, the
registry stays empty and mutations are ignored. Observers receive a :class:`RegistryChange`
after every mutation that actually changed the contents.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from .device import Device

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryChange:
    """``removed`` entries starting at ``position`` were replaced by ``added``."""

    position: int
    removed: int
    added: int


RegistryObserver = Callable[[RegistryChange], None]


class DeviceRegistry:
    """Insertion-ordered sequence of :class:`Device` entries."""

    def __init__(self) -> None:
        self._devices: list[Device] = []
        self._observers: list[RegistryObserver] = []
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def load(self, initial: Iterable[Device]) -> None:
        """Replace the current contents with ``initial``."""
        if self._refuse("load"):
            return
        removed = len(self._devices)
        self._devices = list(initial)
        self._notify(RegistryChange(position=0, removed=removed, added=len(self._devices)))

    def apply_add(self, device: Device) -> None:
        """Append ``device``. Entries sharing its id are left in place."""
        if self._refuse("add"):
            return
        self._devices.append(device)
        self._notify(RegistryChange(position=len(self._devices) - 1, removed=0, added=1))

    def apply_remove(self, device_id: str) -> Device | None:
        """Remove the earliest entry whose id is ``device_id``; no-op when absent."""
        if self._refuse("remove"):
            return None
        for position, device in enumerate(self._devices):
            if device.id == device_id:
                del self._devices[position]
                self._notify(RegistryChange(position=position, removed=1, added=0))
                return device
        logger.debug("Remove for unknown device %s ignored", device_id)
        return None

    def clear(self) -> None:
        removed = len(self._devices)
        self._devices = []
        self._notify(RegistryChange(position=0, removed=removed, added=0))

    def seal(self) -> None:
        """Empty the registry for good; later mutations are ignored."""
        self._sealed = True
        self.clear()

    def snapshot(self) -> tuple[Device, ...]:
        """Point-in-time copy of the entries, in order."""
        return tuple(self._devices)

    def subscribe(self, observer: RegistryObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: RegistryObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(self.snapshot())

    def _refuse(self, operation: str) -> bool:
        if self._sealed:
            logger.debug("Ignoring %s on a sealed registry", operation)
        return self._sealed

    def _notify(self, change: RegistryChange) -> None:
        if change.removed == 0 and change.added == 0:
            return
        for observer in list(self._observers):
            try:
                observer(change)
            except Exception:
                logger.exception("Registry observer %s failed", observer)


__all__ = ["DeviceRegistry", "RegistryChange", "RegistryObserver"]
