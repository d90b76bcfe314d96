from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, EmailStr, field_validator


Role = Literal["admin", "manager", "operator", "viewer"]


class UserRead(schemas.BaseUser[UUID]):
    name: Optional[str] = None
    role: str = "operator"
    company_id: Optional[UUID] = None


class UserCreate(schemas.BaseUserCreate):
    name: Optional[str] = None
    role: Role = "operator"
    company_id: Optional[UUID] = None


class UserUpdate(schemas.BaseUserUpdate):
    name: Optional[str] = None


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    name: Optional[str] = None
    initials: str = ""
    role: str
    company_id: Optional[UUID] = None
    is_active: bool
    is_verified: bool
    has_pin: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserSelfUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v


class CompanyUserCreate(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    role: Role = "operator"


class CompanyUserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = None
