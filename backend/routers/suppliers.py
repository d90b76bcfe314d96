from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional
from uuid import UUID

from core.permissions import require_permission
from db import (
    Order as OrderModel,
    ProductSupplier as ProductSupplierModel,
    Supplier as SupplierModel,
    get_async_session,
)
from db.users import User
from schemas.suppliers import SupplierRead, SupplierCreate, SupplierUpdate

router = APIRouter()


async def _get_supplier(db: AsyncSession, company_id: UUID, supplier_id: UUID) -> SupplierModel:
    res = await db.execute(
        select(SupplierModel).where(SupplierModel.id == supplier_id, SupplierModel.company_id == company_id)
    )
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return m


async def _name_taken(db: AsyncSession, company_id: UUID, name: str, exclude_id: Optional[UUID] = None) -> bool:
    stmt = select(SupplierModel.id).where(
        SupplierModel.company_id == company_id,
        func.lower(SupplierModel.name) == name.lower(),
    )
    if exclude_id:
        stmt = stmt.where(SupplierModel.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


@router.get("/", response_model=List[SupplierRead])
async def list_suppliers(
    q: Optional[str] = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("suppliers.read")),
):
    stmt = select(SupplierModel).where(SupplierModel.company_id == user.company_id)
    if not include_inactive:
        stmt = stmt.where(SupplierModel.is_active.is_(True))
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(SupplierModel.name).like(qq),
                func.lower(func.coalesce(SupplierModel.code, "")).like(qq),
                func.lower(func.coalesce(SupplierModel.contact_name, "")).like(qq),
                func.lower(func.coalesce(SupplierModel.email, "")).like(qq),
            )
        )
    res = await db.execute(stmt.order_by(func.lower(SupplierModel.name).asc()))
    return [SupplierRead(**s.to_schema) for s in res.scalars().all()]


@router.post("/", response_model=SupplierRead, status_code=status.HTTP_201_CREATED)
async def create_supplier(
    payload: SupplierCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("suppliers.write")),
):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    if await _name_taken(db, user.company_id, name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier already exists")

    m = SupplierModel(
        company_id=user.company_id,
        name=name,
        code=payload.code,
        contact_name=payload.contact_name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
        notes=payload.notes,
    )
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return SupplierRead(**m.to_schema)


@router.get("/{supplier_id}", response_model=Dict)
async def get_supplier(
    supplier_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("suppliers.read")),
):
    m = await _get_supplier(db, user.company_id, supplier_id)
    links = await db.execute(select(ProductSupplierModel).where(ProductSupplierModel.supplier_id == m.id))
    order_count = (
        await db.execute(select(func.count(OrderModel.id)).where(OrderModel.supplier_id == m.id))
    ).scalar_one()
    out = m.to_schema
    out["products"] = [
        {"product_id": link.product_id, **link.to_schema} for link in links.scalars().all()
    ]
    out["order_count"] = int(order_count)
    return out


@router.patch("/{supplier_id}", response_model=SupplierRead)
async def update_supplier(
    supplier_id: UUID,
    payload: SupplierUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("suppliers.write")),
):
    m = await _get_supplier(db, user.company_id, supplier_id)

    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is not None:
        name = data["name"].strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        if name.lower() != m.name.lower() and await _name_taken(db, user.company_id, name, exclude_id=m.id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier already exists")
        m.name = name
    for field in ("code", "contact_name", "email", "phone", "address", "notes"):
        if field in data:
            setattr(m, field, data[field])
    if data.get("is_active") is not None:
        m.is_active = data["is_active"]

    await db.commit()
    await db.refresh(m)
    return SupplierRead(**m.to_schema)


@router.delete("/{supplier_id}", response_model=Dict)
async def delete_supplier(
    supplier_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("suppliers.write")),
):
    m = await _get_supplier(db, user.company_id, supplier_id)
    has_orders = (await db.execute(select(OrderModel.id).where(OrderModel.supplier_id == m.id).limit(1))).first()
    if has_orders:
        # Purchase history keeps pointing at the supplier.
        m.is_active = False
        await db.commit()
        return {"ok": True, "deactivated": True}

    await db.execute(delete(ProductSupplierModel).where(ProductSupplierModel.supplier_id == m.id))
    await db.execute(delete(SupplierModel).where(SupplierModel.id == m.id))
    await db.commit()
    return {"ok": True, "deactivated": False}
