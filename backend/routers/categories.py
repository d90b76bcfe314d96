import logging
from typing import Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.permissions import require_permission
from db import Category as CategoryModel, Product as ProductModel, get_async_session, utcnow
from db.users import User
from schemas.categories import CategoryRead, CategoryWrite

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_category(db: AsyncSession, company_id: UUID, category_id: UUID) -> CategoryModel:
    res = await db.execute(
        select(CategoryModel).where(CategoryModel.id == category_id, CategoryModel.company_id == company_id)
    )
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return m


def _clean_name(payload: CategoryWrite) -> str:
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category name is required")
    return name


async def _ensure_unique(db: AsyncSession, company_id: UUID, name: str, exclude_id: UUID = None) -> None:
    stmt = select(CategoryModel.id).where(
        CategoryModel.company_id == company_id, func.lower(CategoryModel.name) == name.lower()
    )
    if exclude_id:
        stmt = stmt.where(CategoryModel.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists")


async def _product_count(db: AsyncSession, company_id: UUID, name: str) -> int:
    return int(
        (
            await db.execute(
                select(func.count(ProductModel.id)).where(
                    ProductModel.company_id == company_id, func.lower(ProductModel.category) == name.lower()
                )
            )
        ).scalar_one()
    )


@router.get("/", response_model=List[CategoryRead])
async def list_categories(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("categories.read")),
):
    res = await db.execute(
        select(CategoryModel).where(CategoryModel.company_id == user.company_id).order_by(CategoryModel.name.asc())
    )
    categories = res.scalars().all()
    counts = dict(
        (
            await db.execute(
                select(func.lower(ProductModel.category), func.count(ProductModel.id))
                .where(ProductModel.company_id == user.company_id, ProductModel.category.is_not(None))
                .group_by(func.lower(ProductModel.category))
            )
        ).all()
    )
    return [
        CategoryRead(**c.to_schema, product_count=int(counts.get(c.name.lower(), 0))) for c in categories
    ]


@router.post("/", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryWrite,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("categories.write")),
):
    name = _clean_name(payload)
    await _ensure_unique(db, user.company_id, name)

    m = CategoryModel(company_id=user.company_id, name=name, description=payload.description)
    db.add(m)
    await db.commit()
    await db.refresh(m)
    logger.info("Created category %s for company %s", m.name, user.company_id)
    return CategoryRead(**m.to_schema, product_count=await _product_count(db, user.company_id, m.name))


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("categories.read")),
):
    m = await _get_category(db, user.company_id, category_id)
    return CategoryRead(**m.to_schema, product_count=await _product_count(db, user.company_id, m.name))


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: UUID,
    payload: CategoryWrite,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("categories.write")),
):
    m = await _get_category(db, user.company_id, category_id)
    name = _clean_name(payload)
    await _ensure_unique(db, user.company_id, name, exclude_id=m.id)

    old_name = m.name
    try:
        if name != old_name:
            # Products carry the category by name: rename them along with it.
            await db.execute(
                update(ProductModel)
                .where(
                    ProductModel.company_id == user.company_id,
                    func.lower(ProductModel.category) == old_name.lower(),
                )
                .values(category=name, updated_at=utcnow())
            )
        m.name = name
        m.description = payload.description
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Failed to update category %s", category_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update category")

    await db.refresh(m)
    return CategoryRead(**m.to_schema, product_count=await _product_count(db, user.company_id, m.name))


@router.delete("/{category_id}", response_model=Dict)
async def delete_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("categories.write")),
):
    m = await _get_category(db, user.company_id, category_id)
    in_use = await _product_count(db, user.company_id, m.name)
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete category: it is used by {in_use} product(s)",
        )
    await db.delete(m)
    await db.commit()
    return {"ok": True}
