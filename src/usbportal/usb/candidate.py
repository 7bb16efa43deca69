"""Vendor/product filter hints sent along with a session request."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..core.contracts import UINT16_MAX, Variant


class DeviceCandidate(BaseModel):
    """A vendor/product id pair the caller would like to be offered."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    vendor_id: int = Field(ge=0, le=UINT16_MAX)
    product_id: int = Field(ge=0, le=UINT16_MAX)

    def copy_owned(self) -> DeviceCandidate:
        return self.model_copy()

    def to_wire(self) -> dict[str, Variant]:
        return {
            "vendor_id": Variant(signature="q", value=self.vendor_id),
            "product_id": Variant(signature="q", value=self.product_id),
        }

    def __str__(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"


__all__ = ["DeviceCandidate"]
