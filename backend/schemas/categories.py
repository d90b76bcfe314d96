from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CategoryRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    product_count: int = 0
    created_at: Optional[datetime] = None


class CategoryWrite(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
