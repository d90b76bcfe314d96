import logging
from typing import Dict, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.pagination import paginate
from core.permissions import current_company_user, require_permission
from db import (
    InventoryItem as InventoryItemModel,
    OrderItem as OrderItemModel,
    Product as ProductModel,
    ProductSupplier as ProductSupplierModel,
    StockMovement as StockMovementModel,
    Supplier as SupplierModel,
    Warehouse as WarehouseModel,
    get_async_session,
    utcnow,
)
from db.users import User
from schemas.products import ProductCreate, ProductRead, ProductSupplierLink, ProductUpdate

logger = logging.getLogger(__name__)

router = APIRouter()
sku_router = APIRouter()

SORT_COLUMNS = {
    "name": ProductModel.name,
    "sku": ProductModel.sku,
    "price": ProductModel.price_minor,
    "created_at": ProductModel.created_at,
}


def _minor_from_price(price: Optional[float]) -> Optional[int]:
    if price is None:
        return None
    return int(round(float(price) * 100))


async def _get_product(db: AsyncSession, company_id: UUID, product_id: UUID) -> ProductModel:
    res = await db.execute(
        select(ProductModel).where(ProductModel.id == product_id, ProductModel.company_id == company_id)
    )
    p = res.scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return p


async def _ensure_unique(
    db: AsyncSession,
    company_id: UUID,
    sku: Optional[str] = None,
    barcode: Optional[str] = None,
    exclude_id: Optional[UUID] = None,
) -> None:
    if sku:
        stmt = select(ProductModel.id).where(ProductModel.company_id == company_id, ProductModel.sku == sku)
        if exclude_id:
            stmt = stmt.where(ProductModel.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A product with this SKU already exists")
    if barcode:
        stmt = select(ProductModel.id).where(ProductModel.company_id == company_id, ProductModel.barcode == barcode)
        if exclude_id:
            stmt = stmt.where(ProductModel.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A product with this barcode already exists")


async def _replace_supplier_links(
    db: AsyncSession, company_id: UUID, product_id: UUID, links: List[ProductSupplierLink]
) -> List[ProductSupplierModel]:
    supplier_ids = {link.supplier_id for link in links}
    if supplier_ids:
        res = await db.execute(
            select(SupplierModel.id).where(SupplierModel.company_id == company_id, SupplierModel.id.in_(supplier_ids))
        )
        if len(set(res.scalars().all())) != len(supplier_ids):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")

    await db.execute(delete(ProductSupplierModel).where(ProductSupplierModel.product_id == product_id))
    out = []
    seen = set()
    for link in links:
        if link.supplier_id in seen:
            continue
        seen.add(link.supplier_id)
        m = ProductSupplierModel(
            product_id=product_id,
            supplier_id=link.supplier_id,
            supplier_sku=link.supplier_sku,
            cost_minor=_minor_from_price(link.cost),
            lead_time_days=link.lead_time_days,
            minimum_order_quantity=link.minimum_order_quantity,
            is_preferred=link.is_preferred,
        )
        db.add(m)
        out.append(m)
    return out


async def _stock_totals(db: AsyncSession, product_ids: List[UUID]) -> Dict[UUID, dict]:
    if not product_ids:
        return {}
    res = await db.execute(
        select(
            InventoryItemModel.product_id,
            func.coalesce(func.sum(InventoryItemModel.quantity), 0),
            func.coalesce(func.sum(InventoryItemModel.reserved_quantity), 0),
        )
        .where(InventoryItemModel.product_id.in_(product_ids))
        .group_by(InventoryItemModel.product_id)
    )
    return {pid: {"quantity": int(q), "reserved_quantity": int(r)} for pid, q, r in res.all()}


@router.get("/", response_model=Dict)
async def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: Literal["name", "sku", "price", "created_at"] = "name",
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_permission("products.read")),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(ProductModel).where(ProductModel.company_id == user.company_id)
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(ProductModel.name).like(qq),
                func.lower(ProductModel.sku).like(qq),
                func.lower(func.coalesce(ProductModel.barcode, "")).like(qq),
                func.lower(func.coalesce(ProductModel.description, "")).like(qq),
            )
        )
    if category:
        stmt = stmt.where(func.lower(ProductModel.category) == category.strip().lower())
    if brand:
        stmt = stmt.where(func.lower(ProductModel.brand) == brand.strip().lower())
    if is_active is not None:
        stmt = stmt.where(ProductModel.is_active.is_(is_active))

    column = SORT_COLUMNS[sort_by]
    stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc(), ProductModel.id.asc())

    products, pagination = await paginate(db, stmt, page, limit)
    totals = await _stock_totals(db, [p.id for p in products])
    data = []
    for p in products:
        row = p.to_schema
        row["stock"] = totals.get(p.id, {"quantity": 0, "reserved_quantity": 0})
        data.append(row)
    return {"data": data, "pagination": pagination}


@router.get("/categories", response_model=List[Dict])
async def list_categories(
    user: User = Depends(require_permission("products.read")),
    db: AsyncSession = Depends(get_async_session),
):
    res = await db.execute(
        select(ProductModel.category, func.count(ProductModel.id))
        .where(ProductModel.company_id == user.company_id, ProductModel.category.is_not(None))
        .group_by(ProductModel.category)
        .order_by(ProductModel.category.asc())
    )
    return [{"name": name, "count": int(count)} for name, count in res.all()]


@router.post("/", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    user: User = Depends(require_permission("products.write")),
    db: AsyncSession = Depends(get_async_session),
):
    name = (payload.name or "").strip()
    sku = (payload.sku or "").strip().upper()
    if not name or not sku:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and SKU are required")

    await _ensure_unique(db, user.company_id, sku=sku, barcode=payload.barcode)

    try:
        p = ProductModel(
            company_id=user.company_id,
            sku=sku,
            name=name,
            description=payload.description,
            category=payload.category,
            brand=payload.brand,
            barcode=payload.barcode,
            cost_minor=_minor_from_price(payload.cost) or 0,
            price_minor=_minor_from_price(payload.price) or 0,
            currency=payload.currency or "USD",
            min_stock=payload.min_stock or 0,
            reorder_point=payload.reorder_point or 0,
            reorder_quantity=payload.reorder_quantity or 0,
            created_by_user_id=user.id,
            updated_by_user_id=user.id,
        )
        db.add(p)
        await db.flush()
        links = await _replace_supplier_links(db, user.company_id, p.id, payload.suppliers)
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("create_product failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create product")

    await db.refresh(p)
    out = p.to_schema
    out["suppliers"] = [link.to_schema for link in links]
    return out


@router.get("/{product_id}", response_model=Dict)
async def get_product(
    product_id: UUID,
    user: User = Depends(require_permission("products.read")),
    db: AsyncSession = Depends(get_async_session),
):
    p = await _get_product(db, user.company_id, product_id)
    res = await db.execute(select(ProductSupplierModel).where(ProductSupplierModel.product_id == p.id))
    out = p.to_schema
    out["suppliers"] = [link.to_schema for link in res.scalars().all()]
    out["stock"] = (await _stock_totals(db, [p.id])).get(p.id, {"quantity": 0, "reserved_quantity": 0})
    return out


@router.patch("/{product_id}", response_model=ProductRead)
async def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    user: User = Depends(require_permission("products.write")),
    db: AsyncSession = Depends(get_async_session),
):
    p = await _get_product(db, user.company_id, product_id)
    data = payload.model_dump(exclude_unset=True)

    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        p.name = name
    if "sku" in data:
        sku = (data["sku"] or "").strip().upper()
        if not sku:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="SKU is required")
        if sku != p.sku:
            await _ensure_unique(db, user.company_id, sku=sku, exclude_id=p.id)
        p.sku = sku
    if "barcode" in data:
        if data["barcode"] and data["barcode"] != p.barcode:
            await _ensure_unique(db, user.company_id, barcode=data["barcode"], exclude_id=p.id)
        p.barcode = data["barcode"]
    for field in ("description", "category", "brand"):
        if field in data:
            setattr(p, field, data[field])
    if "cost" in data:
        p.cost_minor = _minor_from_price(data["cost"]) or 0
    if "price" in data:
        p.price_minor = _minor_from_price(data["price"]) or 0
    if data.get("currency"):
        p.currency = data["currency"]
    for field in ("min_stock", "reorder_point", "reorder_quantity"):
        if field in data and data[field] is not None:
            setattr(p, field, data[field])
    if data.get("is_active") is not None:
        p.is_active = data["is_active"]
    p.updated_by_user_id = user.id
    p.updated_at = utcnow()

    await db.commit()
    await db.refresh(p)
    return ProductRead(**p.to_schema)


@router.delete("/{product_id}", response_model=Dict)
async def delete_product(
    product_id: UUID,
    user: User = Depends(require_permission("products.write")),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Delete a product.

    Products with stock on hand or any order / movement history are only
    deactivated; everything else is removed along with its empty inventory rows.
    """
    p = await _get_product(db, user.company_id, product_id)

    on_hand = (
        await db.execute(
            select(func.coalesce(func.sum(InventoryItemModel.quantity), 0)).where(InventoryItemModel.product_id == p.id)
        )
    ).scalar_one()
    has_history = (
        await db.execute(select(OrderItemModel.id).where(OrderItemModel.product_id == p.id).limit(1))
    ).first() or (
        await db.execute(select(StockMovementModel.id).where(StockMovementModel.product_id == p.id).limit(1))
    ).first()

    if int(on_hand) > 0 or has_history:
        p.is_active = False
        p.updated_by_user_id = user.id
        await db.commit()
        return {"ok": True, "deactivated": True}

    await db.execute(delete(ProductSupplierModel).where(ProductSupplierModel.product_id == p.id))
    await db.execute(delete(InventoryItemModel).where(InventoryItemModel.product_id == p.id))
    await db.execute(delete(ProductModel).where(ProductModel.id == p.id))
    await db.commit()
    return {"ok": True, "deactivated": False}


@router.get("/{product_id}/inventory", response_model=Dict)
async def product_inventory(
    product_id: UUID,
    user: User = Depends(require_permission("inventory.read")),
    db: AsyncSession = Depends(get_async_session),
):
    p = await _get_product(db, user.company_id, product_id)
    res = await db.execute(
        select(InventoryItemModel, WarehouseModel)
        .join(WarehouseModel, WarehouseModel.id == InventoryItemModel.warehouse_id)
        .where(InventoryItemModel.product_id == p.id, InventoryItemModel.company_id == user.company_id)
        .order_by(WarehouseModel.name.asc())
    )
    rows = []
    for item, wh in res.all():
        row = item.to_schema
        row["warehouse_name"] = wh.name
        row["warehouse_code"] = wh.code
        rows.append(row)
    return {
        "product": p.to_schema,
        "inventory": rows,
        "total_quantity": sum(r["quantity"] for r in rows),
        "total_available": sum(r["available_quantity"] for r in rows),
    }


@router.put("/{product_id}/suppliers", response_model=List[Dict])
async def replace_product_suppliers(
    product_id: UUID,
    payload: List[ProductSupplierLink],
    user: User = Depends(require_permission("products.write")),
    db: AsyncSession = Depends(get_async_session),
):
    p = await _get_product(db, user.company_id, product_id)
    try:
        links = await _replace_supplier_links(db, user.company_id, p.id, payload)
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    return [link.to_schema for link in links]


@sku_router.get("/{sku}", response_model=Dict)
async def get_product_by_sku(
    sku: str,
    user: User = Depends(current_company_user),
    db: AsyncSession = Depends(get_async_session),
):
    res = await db.execute(
        select(ProductModel).where(
            ProductModel.company_id == user.company_id,
            ProductModel.sku == sku.strip().upper(),
        )
    )
    p = res.scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    out = p.to_schema
    out["stock"] = (await _stock_totals(db, [p.id])).get(p.id, {"quantity": 0, "reserved_quantity": 0})
    return out
