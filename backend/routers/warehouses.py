from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List
from uuid import UUID

from core.permissions import current_company_user, require_permission
from db import (
    InventoryItem as InventoryItemModel,
    Product as ProductModel,
    Warehouse as WarehouseModel,
    get_async_session,
)
from db.users import User
from schemas.warehouses import WarehouseCreate, WarehouseRead, WarehouseUpdate

router = APIRouter()


async def _get_warehouse(db: AsyncSession, company_id: UUID, warehouse_id: UUID) -> WarehouseModel:
    res = await db.execute(
        select(WarehouseModel).where(WarehouseModel.id == warehouse_id, WarehouseModel.company_id == company_id)
    )
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Warehouse not found")
    return m


async def _clear_default(db: AsyncSession, company_id: UUID) -> None:
    await db.execute(
        update(WarehouseModel)
        .where(WarehouseModel.company_id == company_id, WarehouseModel.is_default.is_(True))
        .values(is_default=False)
    )


@router.get("/", response_model=List[WarehouseRead])
async def list_warehouses(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_company_user),
):
    stmt = select(WarehouseModel).where(WarehouseModel.company_id == user.company_id)
    if not include_inactive:
        stmt = stmt.where(WarehouseModel.is_active.is_(True))
    res = await db.execute(stmt.order_by(WarehouseModel.is_default.desc(), WarehouseModel.name.asc()))
    return [WarehouseRead(**w.to_schema) for w in res.scalars().all()]


@router.post("/", response_model=WarehouseRead, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    payload: WarehouseCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("settings.write")),
):
    name = (payload.name or "").strip()
    code = (payload.code or "").strip().upper()
    if not name or not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and code are required")

    existing = await db.execute(
        select(WarehouseModel.id).where(WarehouseModel.company_id == user.company_id, WarehouseModel.code == code)
    )
    if existing.first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A warehouse with this code already exists")

    count = (
        await db.execute(select(func.count(WarehouseModel.id)).where(WarehouseModel.company_id == user.company_id))
    ).scalar_one()
    # The company's first warehouse is always the default one.
    is_default = bool(payload.is_default) or int(count) == 0
    if is_default:
        await _clear_default(db, user.company_id)

    m = WarehouseModel(
        company_id=user.company_id,
        name=name,
        code=code,
        description=payload.description,
        type=payload.type,
        address=payload.address,
        is_default=is_default,
    )
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return WarehouseRead(**m.to_schema)


@router.get("/{warehouse_id}", response_model=Dict)
async def get_warehouse(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_company_user),
):
    m = await _get_warehouse(db, user.company_id, warehouse_id)
    items, quantity = (
        await db.execute(
            select(func.count(InventoryItemModel.id), func.coalesce(func.sum(InventoryItemModel.quantity), 0)).where(
                InventoryItemModel.warehouse_id == m.id
            )
        )
    ).one()
    out = m.to_schema
    out["inventory_items"] = int(items)
    out["total_quantity"] = int(quantity)
    return out


@router.patch("/{warehouse_id}", response_model=WarehouseRead)
async def update_warehouse(
    warehouse_id: UUID,
    payload: WarehouseUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("settings.write")),
):
    m = await _get_warehouse(db, user.company_id, warehouse_id)
    data = payload.model_dump(exclude_unset=True)

    if "name" in data and data["name"] is not None:
        name = data["name"].strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        m.name = name
    if "code" in data and data["code"] is not None:
        code = data["code"].strip().upper()
        if not code:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Code is required")
        if code != m.code:
            taken = await db.execute(
                select(WarehouseModel.id).where(
                    WarehouseModel.company_id == user.company_id,
                    WarehouseModel.code == code,
                    WarehouseModel.id != m.id,
                )
            )
            if taken.first():
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT, detail="A warehouse with this code already exists"
                )
        m.code = code
    for field in ("description", "address"):
        if field in data:
            setattr(m, field, data[field])
    if data.get("type"):
        m.type = data["type"]
    if data.get("is_active") is not None:
        m.is_active = data["is_active"]
    if data.get("is_default") is True and not m.is_default:
        await _clear_default(db, user.company_id)
        m.is_default = True
    elif data.get("is_default") is False:
        m.is_default = False

    await db.commit()
    await db.refresh(m)
    return WarehouseRead(**m.to_schema)


@router.delete("/{warehouse_id}", response_model=Dict)
async def delete_warehouse(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("settings.write")),
):
    m = await _get_warehouse(db, user.company_id, warehouse_id)
    on_hand = (
        await db.execute(
            select(func.coalesce(func.sum(InventoryItemModel.quantity), 0)).where(InventoryItemModel.warehouse_id == m.id)
        )
    ).scalar_one()
    if int(on_hand) > 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete a warehouse that holds stock")

    await db.execute(delete(InventoryItemModel).where(InventoryItemModel.warehouse_id == m.id))
    await db.execute(delete(WarehouseModel).where(WarehouseModel.id == m.id))
    await db.commit()
    return {"ok": True}


@router.get("/{warehouse_id}/inventory", response_model=List[Dict])
async def warehouse_inventory(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("inventory.read")),
):
    m = await _get_warehouse(db, user.company_id, warehouse_id)
    res = await db.execute(
        select(InventoryItemModel, ProductModel)
        .join(ProductModel, ProductModel.id == InventoryItemModel.product_id)
        .where(InventoryItemModel.warehouse_id == m.id)
        .order_by(ProductModel.name.asc())
    )
    out = []
    for item, product in res.all():
        row = item.to_schema
        row["product_name"] = product.name
        row["sku"] = product.sku
        out.append(row)
    return out
