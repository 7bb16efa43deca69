"""Tests for the per-session device registry."""

from __future__ import annotations

from usbportal.usb.device import Device
from usbportal.usb.registry import DeviceRegistry, RegistryChange


def _ids(registry: DeviceRegistry) -> list[str]:
    return [device.id for device in registry.snapshot()]


def test_load_replaces_contents_in_order() -> None:
    registry = DeviceRegistry()
    registry.load([Device("A"), Device("B")])
    assert _ids(registry) == ["A", "B"]
    registry.load([Device("C")])
    assert _ids(registry) == ["C"]


def test_add_appends_even_when_id_is_already_present() -> None:
    registry = DeviceRegistry()
    registry.load([Device("A")])
    registry.apply_add(Device("B"))
    registry.apply_add(Device("A", {"name": "second"}))
    assert _ids(registry) == ["A", "B", "A"]


def test_remove_drops_only_the_earliest_match() -> None:
    registry = DeviceRegistry()
    registry.load([Device("A", {"name": "first"}), Device("B"), Device("A", {"name": "second"})])

    removed = registry.apply_remove("A")

    assert removed is not None and removed.get_string("name") == "first"
    assert _ids(registry) == ["B", "A"]
    assert registry.snapshot()[1].get_string("name") == "second"


def test_remove_of_unknown_id_is_a_no_op() -> None:
    registry = DeviceRegistry()
    registry.load([Device("A")])
    assert registry.apply_remove("Z") is None
    assert _ids(registry) == ["A"]


def test_snapshot_is_stable_across_later_mutations() -> None:
    registry = DeviceRegistry()
    registry.load([Device("A"), Device("B")])
    before = registry.snapshot()
    registry.apply_remove("A")
    registry.apply_add(Device("C"))
    assert [device.id for device in before] == ["A", "B"]
    assert _ids(registry) == ["B", "C"]


def test_batches_match_one_at_a_time_application() -> None:
    events = [("add", "C"), ("remove", "A"), ("add", "A"), ("remove", "B"), ("remove", "Q")]

    batched = DeviceRegistry()
    batched.load([Device("A"), Device("B")])
    for kind, device_id in events:
        if kind == "add":
            batched.apply_add(Device(device_id))
        else:
            batched.apply_remove(device_id)

    stepwise = DeviceRegistry()
    stepwise.load([Device("A"), Device("B")])
    for kind, device_id in events:
        # A fresh snapshot between steps must not change the outcome.
        stepwise.snapshot()
        if kind == "add":
            stepwise.apply_add(Device(device_id))
        else:
            stepwise.apply_remove(device_id)

    assert _ids(batched) == _ids(stepwise) == ["C", "A"]


def test_observers_see_each_effective_change() -> None:
    registry = DeviceRegistry()
    changes: list[RegistryChange] = []
    registry.subscribe(changes.append)

    registry.load([Device("A"), Device("B")])
    registry.apply_add(Device("C"))
    registry.apply_remove("B")
    registry.apply_remove("missing")
    registry.clear()
    registry.clear()

    assert changes == [
        RegistryChange(position=0, removed=0, added=2),
        RegistryChange(position=2, removed=0, added=1),
        RegistryChange(position=1, removed=1, added=0),
        RegistryChange(position=0, removed=2, added=0),
    ]


def test_failing_observer_does_not_block_others_or_the_mutation() -> None:
    registry = DeviceRegistry()
    seen: list[RegistryChange] = []

    def broken(change: RegistryChange) -> None:
        raise RuntimeError("observer failure")

    registry.subscribe(broken)
    registry.subscribe(seen.append)
    registry.apply_add(Device("A"))
    registry.unsubscribe(broken)
    registry.apply_add(Device("B"))

    assert len(seen) == 2
    assert len(registry) == 2
    assert [device.id for device in registry] == ["A", "B"]


def test_sealed_registry_stays_empty() -> None:
    registry = DeviceRegistry()
    changes: list[RegistryChange] = []
    registry.subscribe(changes.append)
    registry.load([Device("A"), Device("B")])

    registry.seal()
    registry.apply_add(Device("C"))
    registry.load([Device("D")])
    removed = registry.apply_remove("A")

    assert registry.sealed
    assert removed is None
    assert registry.snapshot() == ()
    assert changes[-1] == RegistryChange(position=0, removed=2, added=0)
    assert len(changes) == 2
