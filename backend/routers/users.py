import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi_users import InvalidPasswordException
from fastapi_users.exceptions import UserAlreadyExists
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import UserManager, current_active_user, get_user_manager
from core.permissions import require_permission
from db import (
    Company as CompanyModel,
    InventorySession as InventorySessionModel,
    LoginCode as LoginCodeModel,
    MagicLink as MagicLinkModel,
    get_async_session,
)
from db.users import ROLES, OAuthAccount, User
from schemas.users import CompanyUserCreate, CompanyUserUpdate, UserCreate, UserOut, UserSelfUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _set_password(user_manager: UserManager, user: User, password: str) -> None:
    try:
        await user_manager.validate_password(password, user)
    except InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    user.hashed_password = user_manager.password_helper.hash(password)


async def _get_company_user(db: AsyncSession, company_id: UUID, user_id: UUID) -> User:
    res = await db.execute(select(User).where(User.id == user_id, User.company_id == company_id))
    u = res.unique().scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return u


@router.get("/me")
async def read_me(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    out = UserOut(**user.to_schema).model_dump()
    company = None
    if user.company_id:
        res = await db.execute(select(CompanyModel).where(CompanyModel.id == user.company_id))
        c = res.scalar_one_or_none()
        company = c.to_schema if c else None
    out["company"] = company
    return out


@router.patch("/me", response_model=UserOut)
async def update_me(
    payload: UserSelfUpdate,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    data = payload.model_dump(exclude_unset=True)
    if data.get("name"):
        user.name = data["name"]
    if data.get("password"):
        await _set_password(user_manager, user, data["password"])
    await db.commit()
    return UserOut(**user.to_schema)


@router.get("/", response_model=List[UserOut])
async def list_users(
    user: User = Depends(require_permission("users.read")),
    db: AsyncSession = Depends(get_async_session),
):
    res = await db.execute(select(User).where(User.company_id == user.company_id).order_by(User.email.asc()))
    return [UserOut(**u.to_schema) for u in res.unique().scalars().all()]


@router.post("/", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: CompanyUserCreate,
    user: User = Depends(require_permission("users.write")),
    user_manager: UserManager = Depends(get_user_manager),
):
    try:
        created = await user_manager.create(
            UserCreate(
                email=payload.email,
                password=payload.password,
                name=payload.name,
                role=payload.role,
                company_id=user.company_id,
            ),
            safe=False,
        )
    except UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    except InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    logger.info("User %s added %s to company %s", user.id, created.id, user.company_id)
    return UserOut(**created.to_schema)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: UUID,
    user: User = Depends(require_permission("users.read")),
    db: AsyncSession = Depends(get_async_session),
):
    return UserOut(**(await _get_company_user(db, user.company_id, user_id)).to_schema)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: UUID,
    payload: CompanyUserUpdate,
    user: User = Depends(require_permission("users.write")),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    target = await _get_company_user(db, user.company_id, user_id)
    data = payload.model_dump(exclude_unset=True)

    if "role" in data and data["role"] is not None:
        if data["role"] not in ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid role. Must be one of: {', '.join(ROLES)}",
            )
        if target.id == user.id and data["role"] != user.role:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot change your own role")
        target.role = data["role"]
    if data.get("name") is not None:
        target.name = data["name"].strip() or target.name
    if data.get("is_active") is not None:
        if target.id == user.id and not data["is_active"]:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
        target.is_active = data["is_active"]
    if data.get("password"):
        await _set_password(user_manager, target, data["password"])

    await db.commit()
    return UserOut(**target.to_schema)


@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    user: User = Depends(require_permission("users.write")),
    db: AsyncSession = Depends(get_async_session),
):
    if user_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")
    target = await _get_company_user(db, user.company_id, user_id)

    for model in (OAuthAccount, LoginCodeModel, MagicLinkModel, InventorySessionModel):
        await db.execute(delete(model).where(model.user_id == target.id))
    await db.execute(delete(User).where(User.id == target.id))
    await db.commit()
    logger.info("User %s removed %s from company %s", user.id, user_id, user.company_id)
    return {"ok": True}
