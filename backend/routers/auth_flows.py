"""
Sign-up and passwordless login.

Password login, logout and password reset are the fastapi-users routers
mounted in main.py; this module adds company sign-up plus e-mailed OTP
codes and magic links, both of which end in a regular JWT bearer token.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi_users import InvalidPasswordException
from fastapi_users.exceptions import UserAlreadyExists
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core import mailer
from core.auth import UserManager, get_user_manager, issue_access_token, unique_company_slug
from core.config import settings
from core.tokens import hash_secret, hash_token, new_numeric_code, new_token, verify_secret
from db import Company as CompanyModel, LoginCode as LoginCodeModel, MagicLink as MagicLinkModel, get_async_session, utcnow
from db.company import slugify
from db.users import User
from schemas.auth import EmailRequest, MagicLinkVerifyRequest, OtpVerifyRequest, SignupRequest, TokenResponse
from schemas.users import UserCreate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _user_by_email(db: AsyncSession, email: str):
    res = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return res.unique().scalar_one_or_none()


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    """Create a company and its first (admin) user, and sign the user in."""
    if await _user_by_email(db, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A user with this email already exists")

    existing = await db.execute(
        select(CompanyModel).where(
            (func.lower(CompanyModel.name) == payload.company_name.lower())
            | (CompanyModel.slug == slugify(payload.company_name))
        )
    )
    if existing.scalars().first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Company already exists")

    try:
        company = CompanyModel(
            name=payload.company_name,
            slug=await unique_company_slug(db, payload.company_name),
            email=payload.email,
        )
        db.add(company)
        await db.flush()

        # user_db.create commits the company together with the user.
        user = await user_manager.create(
            UserCreate(
                email=payload.email,
                password=payload.password,
                name=payload.name,
                role="admin",
                company_id=company.id,
            ),
            safe=False,
        )
    except UserAlreadyExists:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A user with this email already exists")
    except InvalidPasswordException as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    except Exception:
        await db.rollback()
        logger.exception("signup failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create account")

    token = await issue_access_token(user)
    return {"user": user.to_schema, "company": company.to_schema, **token}


@router.post("/otp/request", status_code=status.HTTP_202_ACCEPTED)
async def request_login_code(payload: EmailRequest, db: AsyncSession = Depends(get_async_session)):
    user = await _user_by_email(db, payload.email)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    now = utcnow()
    # Only the newest code is ever valid.
    await db.execute(
        update(LoginCodeModel)
        .where(LoginCodeModel.user_id == user.id, LoginCodeModel.used_at.is_(None))
        .values(used_at=now)
    )
    code = new_numeric_code()
    db.add(
        LoginCodeModel(
            user_id=user.id,
            code_hash=hash_secret(code),
            expires_at=now + timedelta(minutes=settings.otp_ttl_minutes),
        )
    )
    await db.commit()

    await mailer.send_login_code(user.email, code)
    return {"ok": True}


@router.post("/otp/verify", response_model=TokenResponse)
async def verify_login_code(payload: OtpVerifyRequest, db: AsyncSession = Depends(get_async_session)):
    invalid = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired code")

    user = await _user_by_email(db, payload.email)
    if not user or not user.is_active:
        raise invalid

    now = utcnow()
    res = await db.execute(
        select(LoginCodeModel)
        .where(
            LoginCodeModel.user_id == user.id,
            LoginCodeModel.used_at.is_(None),
            LoginCodeModel.expires_at > now,
        )
        .order_by(LoginCodeModel.created_at.desc())
        .limit(1)
    )
    login_code = res.scalar_one_or_none()
    if not login_code or login_code.attempts >= settings.otp_max_attempts:
        raise invalid

    if not verify_secret(payload.code, login_code.code_hash):
        login_code.attempts = int(login_code.attempts) + 1
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid code")

    login_code.used_at = now
    user.last_login_at = now
    await db.commit()
    logger.info("User %s signed in with a login code", user.id)
    return await issue_access_token(user)


@router.post("/magic-link/request", status_code=status.HTTP_202_ACCEPTED)
async def request_magic_link(payload: EmailRequest, db: AsyncSession = Depends(get_async_session)):
    user = await _user_by_email(db, payload.email)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    token = new_token()
    db.add(
        MagicLinkModel(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=utcnow() + timedelta(minutes=settings.magic_link_ttl_minutes),
        )
    )
    await db.commit()

    await mailer.send_magic_link(user.email, f"{settings.frontend_url}/auth/magic?token={token}")
    return {"ok": True}


@router.post("/magic-link/verify", response_model=TokenResponse)
async def verify_magic_link(payload: MagicLinkVerifyRequest, db: AsyncSession = Depends(get_async_session)):
    invalid = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired link")

    res = await db.execute(select(MagicLinkModel).where(MagicLinkModel.token_hash == hash_token(payload.token or "")))
    link = res.scalar_one_or_none()
    now = utcnow()
    if not link or link.used_at is not None or link.expires_at <= now:
        raise invalid

    res = await db.execute(select(User).where(User.id == link.user_id))
    user = res.unique().scalar_one_or_none()
    if not user or not user.is_active:
        raise invalid

    link.used_at = now
    user.last_login_at = now
    await db.commit()
    logger.info("User %s signed in with a magic link", user.id)
    return await issue_access_token(user)
