from datetime import date
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator


MovementType = Literal[
    "inbound",
    "outbound",
    "transfer",
    "adjustment",
    "return",
    "damaged",
    "expired",
    "cycle_count",
]
QualityStatus = Literal["good", "damaged", "expired", "quarantine", "returned"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class InventoryLocationFields(BaseModel):
    min_quantity: Optional[int] = None
    zone: Optional[str] = None
    aisle: Optional[str] = None
    shelf: Optional[str] = None
    bin: Optional[str] = None
    batch: Optional[str] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    unit_cost: Optional[float] = None
    quality_status: Optional[QualityStatus] = None

    @field_validator("zone", "aisle", "shelf", "bin", "batch", "lot_number")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @field_validator("min_quantity")
    @classmethod
    def _min_quantity(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("min_quantity must be >= 0")
        return v

    @field_validator("unit_cost")
    @classmethod
    def _unit_cost(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("unit_cost must be >= 0")
        return v


class InventoryItemCreate(InventoryLocationFields):
    product_id: UUID
    warehouse_id: UUID
    quantity: int = 0

    @field_validator("quantity")
    @classmethod
    def _quantity(cls, v: int) -> int:
        if v < 0:
            raise ValueError("quantity must be >= 0")
        return v


class InventoryItemUpdate(InventoryLocationFields):
    is_active: Optional[bool] = None


class InventoryAdjustRequest(BaseModel):
    id: UUID
    change: int
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class StockMovementCreate(BaseModel):
    product_id: UUID
    type: MovementType
    quantity: int
    reason: Optional[str] = None
    from_warehouse_id: Optional[UUID] = None
    to_warehouse_id: Optional[UUID] = None
    notes: Optional[str] = None
    batch: Optional[str] = None
    lot_number: Optional[str] = None
    unit_cost: Optional[float] = None

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v

    @field_validator("reason", "notes", "batch", "lot_number")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _transfer_needs_both_sides(self):
        if self.type == "transfer":
            if not self.from_warehouse_id or not self.to_warehouse_id:
                raise ValueError("transfer requires from_warehouse_id and to_warehouse_id")
            if self.from_warehouse_id == self.to_warehouse_id:
                raise ValueError("transfer requires two different warehouses")
        return self
