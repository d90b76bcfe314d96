from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator


class SignupRequest(BaseModel):
    company_name: str
    name: str
    email: EmailStr
    password: str

    @field_validator("company_name", "name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class EmailRequest(BaseModel):
    email: EmailStr


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    code: str

    @field_validator("code")
    @classmethod
    def _strip_code(cls, v: str) -> str:
        return (v or "").strip()


class MagicLinkVerifyRequest(BaseModel):
    token: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PinRequest(BaseModel):
    # Optional so a missing PIN answers "Missing PIN" instead of a schema error.
    pin: Optional[str] = None


class PinForgotRequest(BaseModel):
    email: Optional[EmailStr] = None


class PinResetRequest(BaseModel):
    email: EmailStr
    token: str
    pin: Optional[str] = None


class PinSessionOut(BaseModel):
    ok: bool = True
    session_token: str
    expires_at: datetime
