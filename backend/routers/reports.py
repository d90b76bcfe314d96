from datetime import date
from typing import Dict, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.permissions import current_company_user, require_permission
from db import Company as CompanyModel, get_async_session
from db.users import User
from services import reports

router = APIRouter()
search_router = APIRouter()


async def _company(db: AsyncSession, user: User) -> CompanyModel:
    res = await db.execute(select(CompanyModel).where(CompanyModel.id == user.company_id))
    c = res.scalar_one_or_none()
    if not c:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return c


@router.get("/inventory-summary")
async def inventory_summary(
    warehouse_id: Optional[UUID] = None,
    category: Optional[str] = None,
    format: Literal["json", "csv"] = "json",
    user: User = Depends(require_permission("reports.read")),
    db: AsyncSession = Depends(get_async_session),
):
    report = await reports.inventory_summary(db, await _company(db, user), warehouse_id, category)
    if format == "csv":
        return Response(
            content=reports.inventory_summary_csv(report),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=inventory_summary_report.csv"},
        )
    return {"data": report}


@router.get("/sales-summary", response_model=Dict)
async def sales_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(require_permission("reports.read")),
    db: AsyncSession = Depends(get_async_session),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date must be before end_date")
    return {"data": await reports.sales_summary(db, user.company_id, start_date, end_date)}


@router.get("/stats", response_model=Dict)
async def stats(
    period: Literal["day", "week", "month", "year"] = "month",
    user: User = Depends(current_company_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Dashboard numbers. Managers and admins get value and order figures, admins also get user counts."""
    return {"data": await reports.stats(db, user, await _company(db, user), period)}


@search_router.get("/", response_model=Dict)
async def search(
    q: str = Query("", max_length=100),
    user: User = Depends(current_company_user),
    db: AsyncSession = Depends(get_async_session),
):
    if len(q.strip()) < 2:
        return {"products": [], "suppliers": [], "warehouses": []}
    return await reports.search(db, user.company_id, q)
