"""
Stock mutation: manual adjustments and warehouse movements.

Nothing here commits. Callers own the transaction: commit when the call
returns, roll back when it raises, so a failed transfer never leaves one
side applied.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ServiceError
from db import InventoryItem, Product, StockMovement, Warehouse, utcnow
from db.users import User

logger = logging.getLogger(__name__)

# Which warehouse each movement type takes stock from / puts stock into.
NEEDS_SOURCE = {"outbound", "damaged", "expired", "transfer"}
NEEDS_DESTINATION = {"inbound", "return", "transfer"}
EITHER_SIDE = {"adjustment", "cycle_count"}

DEFAULT_REASONS = {
    "inbound": "purchase_order",
    "outbound": "sales_order",
    "transfer": "transfer_order",
    "adjustment": "manual_adjustment",
    "return": "customer_return",
    "damaged": "damaged_goods",
    "expired": "expired_goods",
    "cycle_count": "cycle_count",
}


def actor_name(user: User) -> str:
    return user.name or user.email


def effective_threshold(item: InventoryItem, product: Optional[Product], company_threshold: int) -> int:
    if item.min_quantity is not None:
        return int(item.min_quantity)
    if product is not None and product.min_stock and product.min_stock > 0:
        return int(product.min_stock)
    return int(company_threshold)


def threshold_expr(company_threshold: int):
    """SQL twin of effective_threshold; the query must join Product."""
    return func.coalesce(
        InventoryItem.min_quantity,
        case((Product.min_stock > 0, Product.min_stock), else_=None),
        company_threshold,
    )


async def lock_inventory_row(
    db: AsyncSession, company_id: UUID, product_id: UUID, warehouse_id: UUID
) -> Optional[InventoryItem]:
    res = await db.execute(
        select(InventoryItem)
        .where(
            InventoryItem.company_id == company_id,
            InventoryItem.product_id == product_id,
            InventoryItem.warehouse_id == warehouse_id,
        )
        .with_for_update()
    )
    return res.scalar_one_or_none()


async def destination_row(
    db: AsyncSession, company_id: UUID, product_id: UUID, warehouse_id: UUID, user: User
) -> InventoryItem:
    """Locked inventory row at `warehouse_id`, created empty when missing."""
    row = await lock_inventory_row(db, company_id, product_id, warehouse_id)
    if row is None:
        row = InventoryItem(
            company_id=company_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=0,
            reserved_quantity=0,
            last_updated_by_user_id=user.id,
        )
        db.add(row)
        await db.flush()
    return row


async def _require_warehouse(db: AsyncSession, company_id: UUID, warehouse_id: UUID) -> Warehouse:
    res = await db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.company_id == company_id)
    )
    wh = res.scalar_one_or_none()
    if wh is None:
        raise ServiceError("Warehouse not found")
    return wh


async def adjust_quantity(
    db: AsyncSession,
    *,
    user: User,
    item_id: UUID,
    change: int,
    reason: Optional[str] = None,
) -> dict:
    """Apply a signed manual change to one inventory row and log an `adjustment` movement."""
    change = int(change)
    if change == 0:
        raise ServiceError("Change must be a non-zero integer")

    res = await db.execute(
        select(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.company_id == user.company_id)
        .with_for_update()
    )
    item = res.scalar_one_or_none()
    if item is None:
        raise ServiceError("Inventory item not found")

    before = int(item.quantity)
    after = before + change
    if after < 0 or after < int(item.reserved_quantity):
        raise ServiceError("Insufficient inventory")

    item.quantity = after
    item.last_updated_by_user_id = user.id
    item.updated_at = utcnow()

    movement = StockMovement(
        company_id=user.company_id,
        product_id=item.product_id,
        from_warehouse_id=item.warehouse_id if change < 0 else None,
        to_warehouse_id=item.warehouse_id if change > 0 else None,
        type="adjustment",
        reason=f"{(reason or 'Manual adjustment').strip()} (by {actor_name(user)})",
        quantity=abs(change),
        before_quantity=before,
        after_quantity=after,
        unit_cost_minor=item.unit_cost_minor,
        reference_type="adjustment",
        reference_id=item.id,
        processed_by_user_id=user.id,
        processed_at=utcnow(),
    )
    db.add(movement)
    await db.flush()
    logger.info("Adjusted inventory %s by %+d (%d -> %d)", item.id, change, before, after)
    return {"item": item, "movement": movement}


async def record_movement(
    db: AsyncSession,
    *,
    user: User,
    product_id: UUID,
    type: str,
    quantity: int,
    reason: Optional[str] = None,
    from_warehouse_id: Optional[UUID] = None,
    to_warehouse_id: Optional[UUID] = None,
    notes: Optional[str] = None,
    batch: Optional[str] = None,
    lot_number: Optional[str] = None,
    unit_cost_minor: Optional[int] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[UUID] = None,
) -> dict:
    """
    Move `quantity` units of a product out of and/or into warehouses.

    - The source row is locked and must have enough available (unreserved) stock.
    - The destination row is created when the product is not stocked there yet.
    - One movement row is written; a transfer carries both warehouses and its
      before/after quantities describe the source.
    """
    quantity = int(quantity)
    if quantity <= 0:
        raise ServiceError("Quantity must be greater than zero")

    if type in NEEDS_SOURCE and not from_warehouse_id:
        raise ServiceError(f"Source warehouse is required for {type} movements")
    if type in NEEDS_DESTINATION and not to_warehouse_id:
        raise ServiceError(f"Destination warehouse is required for {type} movements")
    if type == "transfer" and from_warehouse_id == to_warehouse_id:
        raise ServiceError("Cannot transfer to the same warehouse")
    if type in EITHER_SIDE and bool(from_warehouse_id) == bool(to_warehouse_id):
        raise ServiceError(f"Exactly one warehouse must be given for {type} movements")
    if type not in NEEDS_SOURCE and type not in EITHER_SIDE:
        from_warehouse_id = None
    if type not in NEEDS_DESTINATION and type not in EITHER_SIDE:
        to_warehouse_id = None

    company_id = user.company_id
    res = await db.execute(select(Product).where(Product.id == product_id, Product.company_id == company_id))
    product = res.scalar_one_or_none()
    if product is None:
        raise ServiceError("Product not found")

    if from_warehouse_id:
        await _require_warehouse(db, company_id, from_warehouse_id)
    if to_warehouse_id:
        await _require_warehouse(db, company_id, to_warehouse_id)

    now = utcnow()
    source = None
    source_before = source_after = None
    if from_warehouse_id:
        source = await lock_inventory_row(db, company_id, product_id, from_warehouse_id)
        if source is None:
            raise ServiceError("Source inventory not found")
        available = int(source.quantity) - int(source.reserved_quantity)
        if available < quantity:
            raise ServiceError("Insufficient quantity available")
        source_before = int(source.quantity)
        source.quantity = source_before - quantity
        source_after = int(source.quantity)
        source.last_updated_by_user_id = user.id
        source.updated_at = now

    destination = None
    dest_before = dest_after = None
    if to_warehouse_id:
        destination = await destination_row(db, company_id, product_id, to_warehouse_id, user)
        dest_before = int(destination.quantity)
        destination.quantity = dest_before + quantity
        dest_after = int(destination.quantity)
        destination.last_updated_by_user_id = user.id
        destination.updated_at = now
        if unit_cost_minor is not None and type in ("inbound", "return"):
            destination.unit_cost_minor = unit_cost_minor
        if batch and not destination.batch:
            destination.batch = batch
        if lot_number and not destination.lot_number:
            destination.lot_number = lot_number

    if source is not None:
        before, after = source_before, source_after
    else:
        before, after = dest_before, dest_after

    movement = StockMovement(
        company_id=company_id,
        product_id=product_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        type=type,
        reason=(reason or "").strip() or DEFAULT_REASONS.get(type, "other"),
        quantity=quantity,
        before_quantity=before,
        after_quantity=after,
        unit_cost_minor=unit_cost_minor if unit_cost_minor is not None else product.cost_minor,
        batch=batch,
        lot_number=lot_number,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        status="completed",
        processed_by_user_id=user.id,
        processed_at=now,
    )
    db.add(movement)
    await db.flush()

    logger.info(
        "Recorded %s of %d x %s (from=%s to=%s)",
        type, quantity, product.sku, from_warehouse_id, to_warehouse_id,
    )
    return {
        "movement": movement,
        "source": source,
        "destination": destination,
        "source_before": source_before,
        "source_after": source_after,
        "destination_before": dest_before,
        "destination_after": dest_after,
    }
