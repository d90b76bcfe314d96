from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


def _clean(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class ProductSupplierLink(BaseModel):
    supplier_id: UUID
    supplier_sku: Optional[str] = None
    cost: Optional[float] = None
    lead_time_days: Optional[int] = None
    minimum_order_quantity: Optional[int] = None
    is_preferred: bool = False

    @field_validator("cost")
    @classmethod
    def _cost_non_negative(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("cost must be >= 0")
        return v


class ProductBase(BaseModel):
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None
    cost: Optional[float] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    min_stock: Optional[int] = None
    reorder_point: Optional[int] = None
    reorder_quantity: Optional[int] = None

    @field_validator("description", "category", "brand", "barcode")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v)

    @field_validator("cost", "price")
    @classmethod
    def _money_non_negative(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("price and cost must be >= 0")
        return v

    @field_validator("min_stock", "reorder_point", "reorder_quantity")
    @classmethod
    def _count_non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("stock levels must be >= 0")
        return v

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        v = _clean(v)
        if v is None:
            return None
        v = v.upper()
        if len(v) != 3:
            raise ValueError("currency must be a 3-letter code (e.g. USD)")
        return v


class ProductCreate(ProductBase):
    # Checked in the handler so a missing value answers "Name and SKU are required".
    name: Optional[str] = None
    sku: Optional[str] = None
    suppliers: List[ProductSupplierLink] = []


class ProductUpdate(ProductBase):
    name: Optional[str] = None
    sku: Optional[str] = None
    is_active: Optional[bool] = None


class ProductRead(BaseModel):
    id: UUID
    sku: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None
    cost: Optional[float] = None
    price: Optional[float] = None
    currency: str
    margin: float
    min_stock: int
    reorder_point: int
    reorder_quantity: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
