"""
Inventory PIN: a 6-digit secondary factor in front of the inventory routes.

A correct PIN opens an InventorySession (cookie `inventory_session`, or the
`X-Inventory-Session` header for API clients) that `require_inventory_session`
checks on every inventory request.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core import mailer
from core.auth import current_active_user, fastapi_users
from core.config import settings
from core.permissions import current_company_user
from core.rate_limit import InMemoryRateLimiter, client_ip
from core.tokens import hash_secret, hash_token, is_valid_pin, new_token, verify_secret
from db import AuditLog as AuditLogModel, InventorySession as InventorySessionModel, get_async_session, utcnow
from db.users import User
from schemas.auth import PinForgotRequest, PinRequest, PinResetRequest

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_COOKIE = "inventory_session"
SESSION_HEADER = "X-Inventory-Session"

pin_limiter = InMemoryRateLimiter(settings.pin_max_attempts, settings.pin_window_seconds)

optional_user = fastapi_users.current_user(active=True, optional=True)


def _session_token(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE) or request.headers.get(SESSION_HEADER)


def _audit(db: AsyncSession, action: str, user: User, ip: str, **meta) -> None:
    db.add(AuditLogModel(company_id=user.company_id, user_id=user.id, action=action, ip=ip, meta=meta or None))


async def _live_session(db: AsyncSession, token: Optional[str], user: User) -> Optional[InventorySessionModel]:
    if not token:
        return None
    res = await db.execute(
        select(InventorySessionModel).where(
            InventorySessionModel.token_hash == hash_token(token),
            InventorySessionModel.user_id == user.id,
            InventorySessionModel.expires_at > utcnow(),
        )
    )
    return res.scalar_one_or_none()


async def require_inventory_session(
    request: Request,
    user: User = Depends(current_company_user),
    db: AsyncSession = Depends(get_async_session),
) -> InventorySessionModel:
    session = await _live_session(db, _session_token(request), user)
    if session is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="PIN verification required")
    return session


@router.get("/setup")
async def pin_setup_status(user: User = Depends(current_active_user)):
    return {"has_pin": bool(user.hashed_pin)}


@router.post("/setup")
async def setup_pin(
    payload: PinRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    pin = (payload.pin or "").strip()
    if not pin:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing PIN")
    if not is_valid_pin(pin):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="PIN must be exactly 6 digits")

    user.hashed_pin = hash_secret(pin)
    await db.commit()
    logger.info("User %s set an inventory PIN", user.id)
    return {"ok": True, "message": "PIN saved"}


@router.post("/validate")
async def validate_pin(
    payload: PinRequest,
    request: Request,
    response: Response,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    ip = client_ip(request)
    # A missing PIN and a missing setup are answered before the limiter counts an attempt.
    pin = (payload.pin or "").strip()
    if not pin:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing PIN")

    if not user.hashed_pin:
        _audit(db, "pin_needs_setup", user, ip)
        await db.commit()
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": "PIN not set", "needs_setup": True},
        )

    if not pin_limiter.hit(ip):
        _audit(db, "pin_rate_limited", user, ip)
        await db.commit()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many attempts. Try later.")

    if not verify_secret(pin, user.hashed_pin):
        _audit(db, "pin_invalid", user, ip, remaining=pin_limiter.remaining(ip))
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid PIN")

    token = new_token()
    expires_at = utcnow() + timedelta(hours=settings.inventory_session_hours)
    db.add(
        InventorySessionModel(
            token_hash=hash_token(token),
            user_id=user.id,
            company_id=user.company_id,
            expires_at=expires_at,
        )
    )
    _audit(db, "pin_valid", user, ip)
    await db.commit()

    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.inventory_session_hours * 3600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return {"ok": True, "session_token": token, "expires_at": expires_at}


@router.get("/status")
async def pin_status(
    request: Request,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    session = await _live_session(db, _session_token(request), user)
    if session is None:
        return {"verified": False, "verified_at": None, "expires_at": None}
    return {"verified": True, "verified_at": session.created_at, "expires_at": session.expires_at}


@router.post("/logout")
async def pin_logout(
    request: Request,
    response: Response,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    token = _session_token(request)
    if token:
        await db.execute(
            delete(InventorySessionModel).where(
                InventorySessionModel.token_hash == hash_token(token),
                InventorySessionModel.user_id == user.id,
            )
        )
        await db.commit()
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@router.post("/forgot")
async def forgot_pin(
    payload: PinForgotRequest,
    user: Optional[User] = Depends(optional_user),
    db: AsyncSession = Depends(get_async_session),
):
    if user is None:
        if not payload.email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")
        res = await db.execute(select(User).where(func.lower(User.email) == payload.email.lower()))
        user = res.unique().scalar_one_or_none()
        if user is None or not user.is_active:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    token = new_token()
    user.pin_reset_token_hash = hash_token(token)
    user.pin_reset_expires_at = utcnow() + timedelta(minutes=settings.pin_reset_ttl_minutes)
    await db.commit()

    link = f"{settings.frontend_url}/pin/reset?token={token}&email={user.email}"
    await mailer.send_pin_reset(user.email, link)

    out = {"ok": True, "message": "PIN reset link sent"}
    if settings.mail_suppress_send:
        # Development: mail is not delivered, hand the link back directly.
        out["reset_link"] = link
    return out


@router.post("/reset")
async def reset_pin(payload: PinResetRequest, db: AsyncSession = Depends(get_async_session)):
    invalid = HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    res = await db.execute(select(User).where(func.lower(User.email) == payload.email.lower()))
    user = res.unique().scalar_one_or_none()
    if (
        user is None
        or not user.pin_reset_token_hash
        or user.pin_reset_token_hash != hash_token(payload.token or "")
        or user.pin_reset_expires_at is None
        or user.pin_reset_expires_at <= utcnow()
    ):
        raise invalid

    pin = (payload.pin or "").strip()
    if not pin:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing PIN")
    if not is_valid_pin(pin):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="PIN must be exactly 6 digits")

    user.hashed_pin = hash_secret(pin)
    user.pin_reset_token_hash = None
    user.pin_reset_expires_at = None
    # Sessions opened with the old PIN end here.
    await db.execute(delete(InventorySessionModel).where(InventorySessionModel.user_id == user.id))
    await db.commit()
    logger.info("User %s reset their inventory PIN", user.id)
    return {"ok": True, "message": "PIN updated"}
