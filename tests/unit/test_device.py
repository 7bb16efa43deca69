"""Tests for devices, their attribute bags and candidate filters."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from usbportal.core.contracts import DeviceRecord, Variant, to_vardict
from usbportal.usb.candidate import DeviceCandidate
from usbportal.usb.device import AttributeBag, Device


def test_candidate_rejects_out_of_range_ids() -> None:
    with pytest.raises(ValidationError):
        DeviceCandidate(vendor_id=-1, product_id=0)
    with pytest.raises(ValidationError):
        DeviceCandidate(vendor_id=0, product_id=0x10000)
    candidate = DeviceCandidate(vendor_id=0xFFFF, product_id=0)
    assert str(candidate) == "ffff:0000"


def test_candidate_wire_form_uses_uint16_tags() -> None:
    candidate = DeviceCandidate(vendor_id=0x046D, product_id=0xC52B)
    wire = candidate.to_wire()
    assert wire == {
        "vendor_id": Variant(signature="q", value=0x046D),
        "product_id": Variant(signature="q", value=0xC52B),
    }


def test_candidate_copy_is_independent_and_frozen() -> None:
    candidate = DeviceCandidate(vendor_id=1, product_id=2)
    copy = candidate.copy_owned()
    assert copy == candidate
    assert copy is not candidate
    with pytest.raises(ValidationError):
        candidate.vendor_id = 3  # type: ignore[misc]


def test_typed_accessors_read_tagged_values() -> None:
    device = Device(
        "dev-1",
        {
            "name": "receiver",
            "writable": True,
            "vendor_id": 0x046D,
            "path": Variant(signature="o", value="/dev/bus/usb/001/004"),
        },
    )
    assert device.get_string("name") == "receiver"
    assert device.get_string("path") == "/dev/bus/usb/001/004"
    assert device.get_boolean("writable") is True
    assert device.get_uint16("vendor_id") == 0x046D


def test_missing_attributes_read_as_absent() -> None:
    device = Device("dev-1")
    assert device.get_string("name") is None
    assert device.get_boolean("writable") is False
    assert device.get_uint16("vendor_id") is None
    assert len(device.attributes) == 0


def test_reading_under_the_wrong_type_raises() -> None:
    device = Device("dev-1", {"name": "receiver", "writable": True})
    with pytest.raises(TypeError):
        device.get_boolean("name")
    with pytest.raises(TypeError):
        device.get_string("writable")
    with pytest.raises(TypeError):
        device.get_uint16("name")


def test_devices_compare_by_id() -> None:
    first = Device("same", {"name": "a"})
    second = Device("same", {"name": "b"})
    other = Device("other", {"name": "a"})
    assert first == second
    assert first != other
    assert len({first, second, other}) == 2


def test_empty_device_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        Device("")


def test_attribute_bag_is_read_only() -> None:
    bag = AttributeBag({"name": "receiver"})
    assert bag.plain() == {"name": "receiver"}
    with pytest.raises(TypeError):
        bag._values["name"] = Variant.infer("x")  # type: ignore[index]


def test_device_from_record_keeps_wire_tags() -> None:
    record = DeviceRecord.model_validate(
        ("dev-9", {"bus": {"signature": "y", "value": 1}, "name": "hub"})
    )
    device = Device.from_record(record)
    assert device.id == "dev-9"
    assert device.attributes["bus"].signature == "y"
    assert device.get_string("name") == "hub"


def test_record_rejects_non_mapping_attributes() -> None:
    with pytest.raises(ValidationError):
        DeviceRecord.model_validate(("dev-1", ["not", "a", "mapping"]))
    with pytest.raises(ValidationError):
        DeviceRecord.model_validate(("dev-1",))


def test_variant_inference() -> None:
    assert Variant.infer(True).signature == "b"
    assert Variant.infer(7).signature == "q"
    assert Variant.infer(70000).signature == "t"
    assert Variant.infer(-1).signature == "x"
    assert Variant.infer(1.5).signature == "d"
    assert Variant.infer({"a": 1}).signature == "a{sv}"
    with pytest.raises(TypeError):
        Variant.infer(object())
    with pytest.raises(TypeError):
        to_vardict({1: "x"})  # type: ignore[dict-item]
