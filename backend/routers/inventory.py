import logging
from datetime import date, datetime, time
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ServiceError, http_error
from core.pagination import paginate
from core.permissions import require_permission
from db import (
    Company as CompanyModel,
    InventoryItem as InventoryItemModel,
    Product as ProductModel,
    StockMovement as StockMovementModel,
    Warehouse as WarehouseModel,
    get_async_session,
    utcnow,
)
from db.users import User
from routers.pin import require_inventory_session
from schemas.inventory import (
    InventoryAdjustRequest,
    InventoryItemCreate,
    InventoryItemUpdate,
    StockMovementCreate,
)
from services import stock

logger = logging.getLogger(__name__)

# Every inventory route sits behind the PIN session.
router = APIRouter(dependencies=[Depends(require_inventory_session)])
movements_router = APIRouter(dependencies=[Depends(require_inventory_session)])


def _minor_from_price(price: Optional[float]) -> Optional[int]:
    if price is None:
        return None
    return int(round(float(price) * 100))


async def _company_threshold(db: AsyncSession, company_id: UUID) -> int:
    res = await db.execute(select(CompanyModel.low_stock_threshold).where(CompanyModel.id == company_id))
    value = res.scalar_one_or_none()
    return int(value) if value is not None else 10


def _serialize(item: InventoryItemModel, product: ProductModel, warehouse: WarehouseModel, company_threshold: int) -> dict:
    out = item.to_schema
    threshold = stock.effective_threshold(item, product, company_threshold)
    out.update(
        {
            "product_name": product.name,
            "sku": product.sku,
            "category": product.category,
            "warehouse_name": warehouse.name,
            "warehouse_code": warehouse.code,
            "threshold": threshold,
            "is_low_stock": int(item.quantity) <= threshold,
        }
    )
    return out


async def _load_row(db: AsyncSession, company_id: UUID, item_id: UUID):
    res = await db.execute(
        select(InventoryItemModel, ProductModel, WarehouseModel)
        .join(ProductModel, ProductModel.id == InventoryItemModel.product_id)
        .join(WarehouseModel, WarehouseModel.id == InventoryItemModel.warehouse_id)
        .where(InventoryItemModel.id == item_id, InventoryItemModel.company_id == company_id)
    )
    row = res.first()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")
    return row


@router.get("/", response_model=Dict)
async def list_inventory(
    warehouse_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    low_stock: bool = False,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_permission("inventory.read")),
    db: AsyncSession = Depends(get_async_session),
):
    company_threshold = await _company_threshold(db, user.company_id)
    stmt = (
        select(InventoryItemModel, ProductModel, WarehouseModel)
        .join(ProductModel, ProductModel.id == InventoryItemModel.product_id)
        .join(WarehouseModel, WarehouseModel.id == InventoryItemModel.warehouse_id)
        .where(InventoryItemModel.company_id == user.company_id)
    )
    if warehouse_id:
        stmt = stmt.where(InventoryItemModel.warehouse_id == warehouse_id)
    if product_id:
        stmt = stmt.where(InventoryItemModel.product_id == product_id)
    if low_stock:
        stmt = stmt.where(InventoryItemModel.quantity <= stock.threshold_expr(company_threshold))
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(ProductModel.name).like(qq), func.lower(ProductModel.sku).like(qq)))
    stmt = stmt.order_by(ProductModel.name.asc(), WarehouseModel.name.asc())

    rows, pagination = await paginate(db, stmt, page, limit, scalars=False)
    return {
        "data": [_serialize(item, product, wh, company_threshold) for item, product, wh in rows],
        "pagination": pagination,
    }


@router.post("/", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: InventoryItemCreate,
    user: User = Depends(require_permission("inventory.write")),
    db: AsyncSession = Depends(get_async_session),
):
    product = (
        await db.execute(
            select(ProductModel).where(
                ProductModel.id == payload.product_id, ProductModel.company_id == user.company_id
            )
        )
    ).scalar_one_or_none()
    warehouse = (
        await db.execute(
            select(WarehouseModel).where(
                WarehouseModel.id == payload.warehouse_id, WarehouseModel.company_id == user.company_id
            )
        )
    ).scalar_one_or_none()
    if not product or not warehouse:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product or warehouse not found")

    existing = await db.execute(
        select(InventoryItemModel.id).where(
            InventoryItemModel.company_id == user.company_id,
            InventoryItemModel.product_id == product.id,
            InventoryItemModel.warehouse_id == warehouse.id,
        )
    )
    if existing.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Inventory item already exists for this product and warehouse",
        )

    try:
        item = InventoryItemModel(
            company_id=user.company_id,
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity=0,
            reserved_quantity=0,
            min_quantity=payload.min_quantity,
            zone=payload.zone,
            aisle=payload.aisle,
            shelf=payload.shelf,
            bin=payload.bin,
            batch=payload.batch,
            lot_number=payload.lot_number,
            expiry_date=payload.expiry_date,
            unit_cost_minor=_minor_from_price(payload.unit_cost),
            quality_status=payload.quality_status or "good",
            last_updated_by_user_id=user.id,
        )
        db.add(item)
        await db.flush()
        if payload.quantity > 0:
            # Opening stock goes through the movement log like any other receipt.
            await stock.record_movement(
                db,
                user=user,
                product_id=product.id,
                type="inbound",
                quantity=payload.quantity,
                reason="Initial stock",
                to_warehouse_id=warehouse.id,
                unit_cost_minor=item.unit_cost_minor,
                batch=payload.batch,
                lot_number=payload.lot_number,
                reference_type="inventory_item",
                reference_id=item.id,
            )
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("create_inventory_item failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create inventory item")

    await db.refresh(item)
    return _serialize(item, product, warehouse, await _company_threshold(db, user.company_id))


@router.post("/adjust", response_model=Dict)
async def adjust_inventory(
    payload: InventoryAdjustRequest,
    user: User = Depends(require_permission("inventory.write")),
    db: AsyncSession = Depends(get_async_session),
):
    try:
        result = await stock.adjust_quantity(
            db, user=user, item_id=payload.id, change=payload.change, reason=payload.reason
        )
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("adjust_inventory failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to adjust inventory")

    item, product, warehouse = await _load_row(db, user.company_id, result["item"].id)
    return {
        "item": _serialize(item, product, warehouse, await _company_threshold(db, user.company_id)),
        "movement": result["movement"].to_schema,
    }


@router.get("/low-stock", response_model=List[Dict])
async def low_stock_items(
    warehouse_id: Optional[UUID] = None,
    user: User = Depends(require_permission("inventory.read")),
    db: AsyncSession = Depends(get_async_session),
):
    company_threshold = await _company_threshold(db, user.company_id)
    stmt = (
        select(InventoryItemModel, ProductModel, WarehouseModel)
        .join(ProductModel, ProductModel.id == InventoryItemModel.product_id)
        .join(WarehouseModel, WarehouseModel.id == InventoryItemModel.warehouse_id)
        .where(
            InventoryItemModel.company_id == user.company_id,
            InventoryItemModel.is_active.is_(True),
            InventoryItemModel.quantity <= stock.threshold_expr(company_threshold),
        )
        .order_by(InventoryItemModel.quantity.asc(), ProductModel.name.asc())
    )
    if warehouse_id:
        stmt = stmt.where(InventoryItemModel.warehouse_id == warehouse_id)
    res = await db.execute(stmt)
    return [_serialize(item, product, wh, company_threshold) for item, product, wh in res.all()]


@router.get("/{item_id}", response_model=Dict)
async def get_inventory_item(
    item_id: UUID,
    user: User = Depends(require_permission("inventory.read")),
    db: AsyncSession = Depends(get_async_session),
):
    item, product, warehouse = await _load_row(db, user.company_id, item_id)
    return _serialize(item, product, warehouse, await _company_threshold(db, user.company_id))


@router.patch("/{item_id}", response_model=Dict)
async def update_inventory_item(
    item_id: UUID,
    payload: InventoryItemUpdate,
    user: User = Depends(require_permission("inventory.write")),
    db: AsyncSession = Depends(get_async_session),
):
    """Update location, batch and threshold fields. Quantities only change through /adjust and movements."""
    item, product, warehouse = await _load_row(db, user.company_id, item_id)
    data = payload.model_dump(exclude_unset=True)

    for field in ("min_quantity", "zone", "aisle", "shelf", "bin", "batch", "lot_number", "expiry_date"):
        if field in data:
            setattr(item, field, data[field])
    if "unit_cost" in data:
        item.unit_cost_minor = _minor_from_price(data["unit_cost"])
    if data.get("quality_status"):
        item.quality_status = data["quality_status"]
    if data.get("is_active") is not None:
        item.is_active = data["is_active"]
    item.last_updated_by_user_id = user.id
    item.updated_at = utcnow()

    await db.commit()
    await db.refresh(item)
    return _serialize(item, product, warehouse, await _company_threshold(db, user.company_id))


@router.delete("/{item_id}", response_model=Dict)
async def delete_inventory_item(
    item_id: UUID,
    user: User = Depends(require_permission("inventory.write")),
    db: AsyncSession = Depends(get_async_session),
):
    item, _, _ = await _load_row(db, user.company_id, item_id)
    if int(item.reserved_quantity) > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete an inventory item with reserved stock",
        )
    await db.delete(item)
    await db.commit()
    return {"ok": True}


@movements_router.get("/", response_model=Dict)
async def list_stock_movements(
    product_id: Optional[UUID] = None,
    warehouse_id: Optional[UUID] = None,
    type: Optional[str] = None,
    reason: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_permission("inventory.read")),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(StockMovementModel).where(StockMovementModel.company_id == user.company_id)
    if product_id:
        stmt = stmt.where(StockMovementModel.product_id == product_id)
    if warehouse_id:
        stmt = stmt.where(
            or_(
                StockMovementModel.from_warehouse_id == warehouse_id,
                StockMovementModel.to_warehouse_id == warehouse_id,
            )
        )
    if type:
        stmt = stmt.where(StockMovementModel.type == type)
    if reason:
        stmt = stmt.where(func.lower(StockMovementModel.reason).like(f"%{reason.strip().lower()}%"))
    if start_date:
        stmt = stmt.where(StockMovementModel.processed_at >= datetime.combine(start_date, time.min))
    if end_date:
        stmt = stmt.where(StockMovementModel.processed_at <= datetime.combine(end_date, time.max))
    stmt = stmt.order_by(StockMovementModel.processed_at.desc(), StockMovementModel.id.desc())

    movements, pagination = await paginate(db, stmt, page, limit)
    return {"data": [m.to_schema for m in movements], "pagination": pagination}


@movements_router.post("/", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_stock_movement(
    payload: StockMovementCreate,
    user: User = Depends(require_permission("inventory.write")),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Record a stock movement.

    The whole movement is one transaction: source decrement, destination
    increment (creating the destination row if needed) and the movement row
    are committed together or not at all.
    """
    try:
        result = await stock.record_movement(
            db,
            user=user,
            product_id=payload.product_id,
            type=payload.type,
            quantity=payload.quantity,
            reason=payload.reason,
            from_warehouse_id=payload.from_warehouse_id,
            to_warehouse_id=payload.to_warehouse_id,
            notes=payload.notes,
            batch=payload.batch,
            lot_number=payload.lot_number,
            unit_cost_minor=_minor_from_price(payload.unit_cost),
            reference_type="manual",
        )
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("create_stock_movement failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create stock movement")

    def _side(row, before, after):
        if row is None:
            return None
        return {
            "inventory_id": row.id,
            "warehouse_id": row.warehouse_id,
            "before_quantity": before,
            "after_quantity": after,
            "reserved_quantity": int(row.reserved_quantity),
        }

    return {
        "movement": result["movement"].to_schema,
        "source": _side(result["source"], result["source_before"], result["source_after"]),
        "destination": _side(result["destination"], result["destination_before"], result["destination_after"]),
    }
