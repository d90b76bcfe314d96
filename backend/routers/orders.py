import logging
from typing import Dict, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ServiceError, http_error
from core.pagination import paginate
from core.permissions import has_permission, require_permission
from db import Order as OrderModel, get_async_session, utcnow
from db.product import price_from_minor
from db.users import User
from schemas.orders import OrderCancelRequest, OrderCreate, OrderItemRead, OrderRead, OrderUpdate
from services import orders as order_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_order(o: OrderModel) -> OrderRead:
    items_out = []
    for it in (o.items or []):
        product = it.product
        items_out.append(
            OrderItemRead(
                id=it.id,
                product_id=it.product_id,
                product_name=product.name if product else None,
                sku=product.sku if product else None,
                quantity=int(it.quantity),
                unit_price=price_from_minor(it.unit_price_minor),
                line_total=price_from_minor(it.line_total_minor),
                reserved_quantity=sum(int(a.quantity) for a in (it.allocations or []))
                if o.status not in ("fulfilled", "cancelled")
                else 0,
            )
        )
    return OrderRead(
        id=o.id,
        number=o.number,
        type=o.type,
        status=o.status,
        customer_name=o.customer_name,
        customer_email=o.customer_email,
        supplier_id=o.supplier_id,
        supplier_name=o.supplier.name if o.supplier else None,
        warehouse_id=o.warehouse_id,
        warehouse_name=o.warehouse.name if o.warehouse else None,
        subtotal=price_from_minor(o.subtotal_minor),
        tax=price_from_minor(o.tax_minor),
        shipping=price_from_minor(o.shipping_minor),
        total=price_from_minor(o.total_minor),
        currency=o.currency,
        notes=o.notes,
        status_history=list(o.status_history or []),
        created_by_user_id=o.created_by_user_id,
        fulfilled_by_user_id=o.fulfilled_by_user_id,
        fulfilled_at=o.fulfilled_at,
        cancelled_at=o.cancelled_at,
        cancel_reason=o.cancel_reason,
        created_at=o.created_at,
        items=items_out,
    )


async def _get_order(db: AsyncSession, company_id: UUID, order_id: UUID, fresh: bool = False) -> OrderModel:
    o = await order_service.load_order(db, company_id, order_id, fresh=fresh)
    if not o:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return o


@router.get("/", response_model=Dict)
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    type: Optional[Literal["sales", "purchase"]] = None,
    customer: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_permission("orders.read")),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = (
        select(OrderModel)
        .where(OrderModel.company_id == user.company_id)
        .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
    )
    if status_filter:
        stmt = stmt.where(OrderModel.status == status_filter)
    if type:
        stmt = stmt.where(OrderModel.type == type)
    if customer:
        cc = f"%{customer.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(func.coalesce(OrderModel.customer_name, "")).like(cc),
                func.lower(func.coalesce(OrderModel.customer_email, "")).like(cc),
            )
        )
    orders, pagination = await paginate(db, stmt, page, limit, options=order_service.order_options())
    return {"data": [_serialize_order(o).model_dump() for o in orders], "pagination": pagination}


@router.post("/", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    user: User = Depends(require_permission("orders.write")),
    db: AsyncSession = Depends(get_async_session),
):
    items = [line.model_dump() for line in payload.items]
    try:
        if payload.type == "purchase":
            order = await order_service.create_purchase_order(
                db,
                user=user,
                items=items,
                supplier_id=payload.supplier_id,
                warehouse_id=payload.warehouse_id,
                tax_rate=payload.tax_rate,
                shipping=payload.shipping,
                notes=payload.notes,
                status=payload.status,
            )
        else:
            order = await order_service.create_sales_order(
                db,
                user=user,
                items=items,
                customer_name=payload.customer_name,
                customer_email=payload.customer_email,
                tax_rate=payload.tax_rate,
                shipping=payload.shipping,
                notes=payload.notes,
                status=payload.status,
            )
        order_id = order.id
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("create_order failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create order")

    return _serialize_order(await _get_order(db, user.company_id, order_id, fresh=True))


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: UUID,
    user: User = Depends(require_permission("orders.read")),
    db: AsyncSession = Depends(get_async_session),
):
    return _serialize_order(await _get_order(db, user.company_id, order_id))


@router.patch("/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: UUID,
    payload: OrderUpdate,
    user: User = Depends(require_permission("orders.write")),
    db: AsyncSession = Depends(get_async_session),
):
    o = await _get_order(db, user.company_id, order_id)
    if o.status in ("fulfilled", "cancelled"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot update a {o.status} order",
        )

    data = payload.model_dump(exclude_unset=True)
    for field in ("customer_name", "customer_email", "notes"):
        if field in data:
            setattr(o, field, data[field])
    if data.get("status") and data["status"] != o.status:
        order_service.set_status(o, data["status"], user, data.get("status_note"))
    o.updated_at = utcnow()

    await db.commit()
    return _serialize_order(await _get_order(db, user.company_id, order_id, fresh=True))


@router.post("/{order_id}/fulfill", response_model=OrderRead)
async def fulfill_order(
    order_id: UUID,
    user: User = Depends(require_permission("orders.write")),
    db: AsyncSession = Depends(get_async_session),
):
    o = await _get_order(db, user.company_id, order_id)
    try:
        await order_service.fulfill_order(db, user=user, order=o)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("fulfill_order failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fulfill order")

    return _serialize_order(await _get_order(db, user.company_id, order_id, fresh=True))


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    payload: Optional[OrderCancelRequest] = None,
    user: User = Depends(require_permission("orders.read")),
    db: AsyncSession = Depends(get_async_session),
):
    o = await _get_order(db, user.company_id, order_id)
    if o.created_by_user_id != user.id and not has_permission(user, "orders.write"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You don't have permission to cancel this order")

    try:
        await order_service.cancel_order(db, user=user, order=o, reason=payload.reason if payload else None)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("cancel_order failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to cancel order")

    return _serialize_order(await _get_order(db, user.company_id, order_id, fresh=True))


@router.delete("/{order_id}", response_model=Dict)
async def delete_order(
    order_id: UUID,
    user: User = Depends(require_permission("orders.write")),
    db: AsyncSession = Depends(get_async_session),
):
    o = await _get_order(db, user.company_id, order_id)
    try:
        await order_service.delete_order(db, order=o)
        await db.commit()
    except ServiceError as e:
        await db.rollback()
        raise http_error(e)
    except Exception:
        await db.rollback()
        logger.exception("delete_order failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete order")
    return {"ok": True}
