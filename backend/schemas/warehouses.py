from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel


WarehouseType = Literal["warehouse", "store", "distribution_center", "factory", "other"]


class WarehouseRead(BaseModel):
    id: UUID
    name: str
    code: str
    description: Optional[str] = None
    type: str
    address: Optional[str] = None
    is_active: bool
    is_default: bool


class WarehouseCreate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    type: WarehouseType = "warehouse"
    address: Optional[str] = None
    is_default: bool = False


class WarehouseUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    type: Optional[WarehouseType] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
