import logging
from collections import defaultdict
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.errors import ServiceError
from db import (
    Company,
    InventoryItem,
    Order,
    OrderAllocation,
    OrderItem,
    Product,
    ProductSupplier,
    StockMovement,
    Supplier,
    Warehouse,
    utcnow,
)
from db.users import User
from services.stock import destination_row

logger = logging.getLogger(__name__)

ORDER_PREFIX = {"sales": "SO", "purchase": "PO"}
SEQUENCE_COLUMNS = {"sales": "sales_order_seq", "purchase": "purchase_order_seq"}


def _minor_from_price(price: Optional[float]) -> int:
    if price is None:
        return 0
    return int(round(float(price) * 100))


def history_entry(from_status: Optional[str], to_status: str, user: Optional[User], note: Optional[str] = None) -> dict:
    return {
        "from": from_status,
        "to": to_status,
        "date": utcnow().isoformat(),
        "by": str(user.id) if user is not None else None,
        "note": note or "Status updated",
    }


def set_status(order: Order, new_status: str, user: Optional[User], note: Optional[str] = None) -> None:
    # status_history is plain JSON: assign a new list so the change is flushed.
    order.status_history = list(order.status_history or []) + [history_entry(order.status, new_status, user, note)]
    order.status = new_status


def order_options():
    return (
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.items).selectinload(OrderItem.allocations).selectinload(OrderAllocation.inventory_item),
        selectinload(Order.supplier),
        selectinload(Order.warehouse),
    )


async def load_order(db: AsyncSession, company_id: UUID, order_id: UUID, fresh: bool = False) -> Optional[Order]:
    stmt = (
        select(Order)
        .where(Order.id == order_id, Order.company_id == company_id)
        .options(*order_options())
    )
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def next_order_number(db: AsyncSession, company_id: UUID, order_type: str) -> str:
    """Advance the company's counter for `order_type`; deleted orders never free a number."""
    res = await db.execute(
        select(Company)
        .where(Company.id == company_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    company = res.scalar_one()
    counter = SEQUENCE_COLUMNS[order_type]
    sequence = int(getattr(company, counter) or 0) + 1
    setattr(company, counter, sequence)
    return f"{ORDER_PREFIX[order_type]}-{utcnow():%Y%m%d}-{sequence:05d}"


async def _load_products(db: AsyncSession, company_id: UUID, product_ids: List[UUID]) -> Dict[UUID, Product]:
    res = await db.execute(select(Product).where(Product.company_id == company_id, Product.id.in_(product_ids)))
    products = {p.id: p for p in res.scalars().all()}
    for pid in product_ids:
        if pid not in products:
            raise ServiceError(f"Product not found: {pid}")
    return products


def _requested_quantities(items: List[dict]) -> Dict[UUID, int]:
    out: Dict[UUID, int] = defaultdict(int)
    for line in items:
        qty = int(line["quantity"])
        if qty <= 0:
            raise ServiceError("Item quantity must be greater than zero")
        out[line["product_id"]] += qty
    return out


async def _reserve(db: AsyncSession, company_id: UUID, order_item: OrderItem, product: Product) -> None:
    """Reserve stock for one line, oldest inventory row first."""
    res = await db.execute(
        select(InventoryItem)
        .where(
            InventoryItem.company_id == company_id,
            InventoryItem.product_id == order_item.product_id,
            InventoryItem.is_active.is_(True),
        )
        .order_by(InventoryItem.created_at.asc(), InventoryItem.id.asc())
        .with_for_update()
    )
    remaining = int(order_item.quantity)
    for row in res.scalars().all():
        if remaining <= 0:
            break
        available = int(row.quantity) - int(row.reserved_quantity)
        if available <= 0:
            continue
        take = min(available, remaining)
        row.reserved_quantity = int(row.reserved_quantity) + take
        order_item.allocations.append(OrderAllocation(inventory_item_id=row.id, quantity=take))
        remaining -= take
    if remaining > 0:
        raise ServiceError(f"Insufficient inventory for product: {product.name}")


async def create_sales_order(
    db: AsyncSession,
    *,
    user: User,
    items: List[dict],
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    tax_rate: float = 0.0,
    shipping: Optional[float] = None,
    notes: Optional[str] = None,
    status: str = "pending",
) -> Order:
    if not items:
        raise ServiceError("Order must contain at least one item")

    company_id = user.company_id
    requested = _requested_quantities(items)
    products = await _load_products(db, company_id, list(requested.keys()))

    # Check every product before reserving anything.
    res = await db.execute(
        select(
            InventoryItem.product_id,
            func.coalesce(func.sum(InventoryItem.quantity - InventoryItem.reserved_quantity), 0),
        )
        .where(
            InventoryItem.company_id == company_id,
            InventoryItem.product_id.in_(list(requested.keys())),
            InventoryItem.is_active.is_(True),
        )
        .group_by(InventoryItem.product_id)
    )
    available = {pid: int(total) for pid, total in res.all()}
    for pid, qty in requested.items():
        if available.get(pid, 0) < qty:
            raise ServiceError(f"Insufficient inventory for product: {products[pid].name}")

    order = Order(
        company_id=company_id,
        number=await next_order_number(db, company_id, "sales"),
        type="sales",
        status=status,
        customer_name=customer_name,
        customer_email=customer_email,
        notes=notes,
        created_by_user_id=user.id,
        status_history=[history_entry(None, status, user, "Order created")],
    )
    subtotal = 0
    for line in items:
        product = products[line["product_id"]]
        qty = int(line["quantity"])
        line_total = int(product.price_minor) * qty
        subtotal += line_total
        order.items.append(
            OrderItem(
                product_id=product.id,
                quantity=qty,
                unit_price_minor=int(product.price_minor),
                line_total_minor=line_total,
                allocations=[],
            )
        )

    order.currency = next(iter(products.values())).currency
    order.subtotal_minor = subtotal
    order.tax_minor = int(round(subtotal * float(tax_rate or 0)))
    order.shipping_minor = _minor_from_price(shipping)
    order.total_minor = order.subtotal_minor + order.tax_minor + order.shipping_minor
    db.add(order)
    await db.flush()

    for order_item in order.items:
        await _reserve(db, company_id, order_item, products[order_item.product_id])
    await db.flush()

    logger.info("Created sales order %s (%d lines, total %d)", order.number, len(order.items), order.total_minor)
    return order


async def create_purchase_order(
    db: AsyncSession,
    *,
    user: User,
    items: List[dict],
    supplier_id: Optional[UUID],
    warehouse_id: Optional[UUID],
    tax_rate: float = 0.0,
    shipping: Optional[float] = None,
    notes: Optional[str] = None,
    status: str = "pending",
) -> Order:
    if not items:
        raise ServiceError("Order must contain at least one item")
    if not supplier_id:
        raise ServiceError("Supplier is required for purchase orders")
    if not warehouse_id:
        raise ServiceError("Receiving warehouse is required for purchase orders")

    company_id = user.company_id
    supplier = (
        await db.execute(select(Supplier).where(Supplier.id == supplier_id, Supplier.company_id == company_id))
    ).scalar_one_or_none()
    if supplier is None:
        raise ServiceError("Supplier not found")
    warehouse = (
        await db.execute(select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.company_id == company_id))
    ).scalar_one_or_none()
    if warehouse is None:
        raise ServiceError("Warehouse not found")

    requested = _requested_quantities(items)
    products = await _load_products(db, company_id, list(requested.keys()))

    res = await db.execute(
        select(ProductSupplier).where(
            ProductSupplier.supplier_id == supplier_id,
            ProductSupplier.product_id.in_(list(requested.keys())),
        )
    )
    supplier_costs = {link.product_id: link.cost_minor for link in res.scalars().all() if link.cost_minor is not None}

    order = Order(
        company_id=company_id,
        number=await next_order_number(db, company_id, "purchase"),
        type="purchase",
        status=status,
        supplier_id=supplier.id,
        warehouse_id=warehouse.id,
        customer_name=supplier.name,
        customer_email=supplier.email,
        notes=notes,
        created_by_user_id=user.id,
        status_history=[history_entry(None, status, user, "Order created")],
    )
    subtotal = 0
    for line in items:
        product = products[line["product_id"]]
        qty = int(line["quantity"])
        unit = int(supplier_costs.get(product.id, product.cost_minor) or 0)
        subtotal += unit * qty
        order.items.append(
            OrderItem(
                product_id=product.id,
                quantity=qty,
                unit_price_minor=unit,
                line_total_minor=unit * qty,
                allocations=[],
            )
        )

    order.currency = next(iter(products.values())).currency
    order.subtotal_minor = subtotal
    order.tax_minor = int(round(subtotal * float(tax_rate or 0)))
    order.shipping_minor = _minor_from_price(shipping)
    order.total_minor = order.subtotal_minor + order.tax_minor + order.shipping_minor
    db.add(order)
    await db.flush()

    logger.info("Created purchase order %s for supplier %s", order.number, supplier.name)
    return order


async def _lock_rows(db: AsyncSession, ids: List[UUID]) -> Dict[UUID, InventoryItem]:
    if not ids:
        return {}
    res = await db.execute(select(InventoryItem).where(InventoryItem.id.in_(ids)).with_for_update())
    return {row.id: row for row in res.scalars().all()}


async def release_reservations(db: AsyncSession, order: Order) -> int:
    """Give back every reservation held by a sales order. Returns units released."""
    allocation_rows = [a.inventory_item_id for it in order.items for a in it.allocations]
    rows = await _lock_rows(db, allocation_rows)
    released = 0
    for order_item in order.items:
        for allocation in list(order_item.allocations):
            row = rows.get(allocation.inventory_item_id)
            if row is not None:
                row.reserved_quantity = max(0, int(row.reserved_quantity) - int(allocation.quantity))
            released += int(allocation.quantity)
        order_item.allocations.clear()
    await db.flush()
    return released


async def fulfill_order(db: AsyncSession, *, user: User, order: Order) -> Order:
    if order.status == "fulfilled":
        raise ServiceError("Order already fulfilled")
    if order.status == "cancelled":
        raise ServiceError("Cannot fulfill a cancelled order")

    now = utcnow()
    if order.type == "sales":
        rows = await _lock_rows(db, [a.inventory_item_id for it in order.items for a in it.allocations])
        for order_item in order.items:
            for allocation in order_item.allocations:
                row = rows.get(allocation.inventory_item_id)
                if row is None:
                    raise ServiceError("Reserved inventory not found")
                qty = int(allocation.quantity)
                if int(row.quantity) < qty or int(row.reserved_quantity) < qty:
                    raise ServiceError(f"Insufficient inventory for product: {order_item.product.name}")
                before = int(row.quantity)
                row.quantity = before - qty
                row.reserved_quantity = int(row.reserved_quantity) - qty
                row.last_updated_by_user_id = user.id
                row.updated_at = now
                db.add(
                    StockMovement(
                        company_id=order.company_id,
                        product_id=order_item.product_id,
                        from_warehouse_id=row.warehouse_id,
                        type="outbound",
                        reason="sales_order",
                        quantity=qty,
                        before_quantity=before,
                        after_quantity=int(row.quantity),
                        unit_cost_minor=row.unit_cost_minor,
                        reference_type="sales_order",
                        reference_id=order.id,
                        notes=f"Order {order.number}",
                        processed_by_user_id=user.id,
                        processed_at=now,
                    )
                )
    else:
        if not order.warehouse_id:
            raise ServiceError("Receiving warehouse is required for purchase orders")
        for order_item in order.items:
            row = await destination_row(db, order.company_id, order_item.product_id, order.warehouse_id, user)
            qty = int(order_item.quantity)
            before = int(row.quantity)
            row.quantity = before + qty
            row.unit_cost_minor = int(order_item.unit_price_minor)
            row.last_updated_by_user_id = user.id
            row.updated_at = now
            db.add(
                StockMovement(
                    company_id=order.company_id,
                    product_id=order_item.product_id,
                    to_warehouse_id=order.warehouse_id,
                    type="inbound",
                    reason="purchase_order",
                    quantity=qty,
                    before_quantity=before,
                    after_quantity=int(row.quantity),
                    unit_cost_minor=int(order_item.unit_price_minor),
                    reference_type="purchase_order",
                    reference_id=order.id,
                    notes=f"Order {order.number}",
                    processed_by_user_id=user.id,
                    processed_at=now,
                )
            )

    set_status(order, "fulfilled", user, "Order fulfilled")
    order.fulfilled_at = now
    order.fulfilled_by_user_id = user.id
    order.updated_at = now
    await db.flush()
    logger.info("Fulfilled %s order %s", order.type, order.number)
    return order


async def cancel_order(db: AsyncSession, *, user: User, order: Order, reason: Optional[str] = None) -> Order:
    if order.status == "cancelled":
        raise ServiceError("Order already cancelled")
    if order.status == "fulfilled":
        raise ServiceError("Order already fulfilled")

    released = await release_reservations(db, order)
    now = utcnow()
    set_status(order, "cancelled", user, reason or "Order cancelled")
    order.cancelled_at = now
    order.cancel_reason = reason
    order.updated_at = now
    await db.flush()
    logger.info("Cancelled order %s (%d units released)", order.number, released)
    return order


async def delete_order(db: AsyncSession, *, order: Order) -> None:
    if order.status != "pending":
        raise ServiceError("Only pending orders can be deleted")
    await release_reservations(db, order)
    await db.delete(order)
    await db.flush()
    logger.info("Deleted order %s", order.number)
