from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.permissions import current_company_user, require_permission
from db import Company as CompanyModel, get_async_session
from db.users import User
from schemas.company import CompanyRead, CompanyUpdate

router = APIRouter()


async def _get_company(db: AsyncSession, company_id) -> CompanyModel:
    res = await db.execute(select(CompanyModel).where(CompanyModel.id == company_id))
    c = res.scalar_one_or_none()
    if not c:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return c


@router.get("/", response_model=CompanyRead)
async def get_company(
    user: User = Depends(current_company_user),
    db: AsyncSession = Depends(get_async_session),
):
    return CompanyRead(**(await _get_company(db, user.company_id)).to_schema)


@router.patch("/", response_model=CompanyRead)
async def update_company(
    payload: CompanyUpdate,
    user: User = Depends(require_permission("settings.write")),
    db: AsyncSession = Depends(get_async_session),
):
    c = await _get_company(db, user.company_id)
    data = payload.model_dump(exclude_unset=True)

    if "name" in data and data["name"] is not None:
        name = data["name"].strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        c.name = name
    for field in ("email", "phone", "website", "timezone"):
        if field in data and data[field] is not None:
            setattr(c, field, data[field])
    if data.get("currency"):
        c.currency = data["currency"]
    if data.get("low_stock_threshold") is not None:
        c.low_stock_threshold = data["low_stock_threshold"]

    await db.commit()
    await db.refresh(c)
    return CompanyRead(**c.to_schema)
