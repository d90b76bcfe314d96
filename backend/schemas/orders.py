from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator


class OrderLineCreate(BaseModel):
    product_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("quantity must be > 0")
        return v


class OrderCreate(BaseModel):
    type: Literal["sales", "purchase"] = "sales"
    items: List[OrderLineCreate] = []
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    supplier_id: Optional[UUID] = None
    warehouse_id: Optional[UUID] = None
    # Fraction of the subtotal, e.g. 0.08 for 8%.
    tax_rate: float = 0.0
    shipping: Optional[float] = None
    notes: Optional[str] = None
    status: Literal["pending", "confirmed"] = "pending"

    @field_validator("tax_rate")
    @classmethod
    def _tax_rate(cls, v: float) -> float:
        if v < 0 or v > 1:
            raise ValueError("tax_rate must be between 0 and 1")
        return v

    @field_validator("shipping")
    @classmethod
    def _shipping(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("shipping must be >= 0")
        return v


class OrderUpdate(BaseModel):
    # Unknown keys (e.g. "items") are rejected: lines cannot change after creation.
    model_config = ConfigDict(extra="forbid")

    status: Optional[Literal["pending", "confirmed"]] = None
    status_note: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    notes: Optional[str] = None


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = None


class OrderItemRead(BaseModel):
    id: UUID
    product_id: UUID
    product_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float
    reserved_quantity: int = 0


class OrderRead(BaseModel):
    id: UUID
    number: str
    type: str
    status: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    supplier_id: Optional[UUID] = None
    supplier_name: Optional[str] = None
    warehouse_id: Optional[UUID] = None
    warehouse_name: Optional[str] = None
    subtotal: float
    tax: float
    shipping: float
    total: float
    currency: str
    notes: Optional[str] = None
    status_history: List[dict] = []
    created_by_user_id: Optional[UUID] = None
    fulfilled_by_user_id: Optional[UUID] = None
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemRead]
