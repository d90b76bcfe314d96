from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class CompanyRead(BaseModel):
    id: UUID
    name: str
    slug: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    currency: str
    timezone: str
    low_stock_threshold: int
    plan: str
    subscription_status: str
    is_active: bool


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    low_stock_threshold: Optional[int] = None

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        if len(v) != 3:
            raise ValueError("currency must be a 3-letter code (e.g. USD)")
        return v

    @field_validator("low_stock_threshold")
    @classmethod
    def _threshold(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("low_stock_threshold must be >= 0")
        return v
