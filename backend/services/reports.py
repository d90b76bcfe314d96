import csv
import io
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db import Company, InventoryItem, Order, OrderItem, Product, StockMovement, Supplier, Warehouse, utcnow
from db.product import price_from_minor
from db.users import User
from services.stock import effective_threshold, threshold_expr

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}

CSV_COLUMNS = (
    ("product_name", "Product"),
    ("sku", "SKU"),
    ("category", "Category"),
    ("warehouse_name", "Warehouse"),
    ("warehouse_code", "Warehouse Code"),
    ("quantity", "Quantity"),
    ("threshold", "Threshold"),
    ("status", "Status"),
    ("value", "Value"),
    ("last_updated", "Last Updated"),
)


def _round_money(x: float) -> float:
    return round(float(x), 2)


async def inventory_summary(
    db: AsyncSession,
    company: Company,
    warehouse_id: Optional[UUID] = None,
    category: Optional[str] = None,
) -> dict:
    stmt = (
        select(InventoryItem, Product, Warehouse)
        .join(Product, Product.id == InventoryItem.product_id)
        .join(Warehouse, Warehouse.id == InventoryItem.warehouse_id)
        .where(InventoryItem.company_id == company.id)
        .order_by(Product.name.asc(), Warehouse.name.asc())
    )
    if warehouse_id:
        stmt = stmt.where(InventoryItem.warehouse_id == warehouse_id)
    if category:
        stmt = stmt.where(func.lower(Product.category) == category.strip().lower())

    items: List[dict] = []
    for item, product, warehouse in (await db.execute(stmt)).all():
        threshold = effective_threshold(item, product, company.low_stock_threshold)
        quantity = int(item.quantity)
        items.append({
            "inventory_id": item.id,
            "product_id": product.id,
            "product_name": product.name,
            "sku": product.sku,
            "category": product.category or "Uncategorized",
            "warehouse_id": warehouse.id,
            "warehouse_name": warehouse.name,
            "warehouse_code": warehouse.code,
            "quantity": quantity,
            "reserved_quantity": int(item.reserved_quantity),
            "threshold": threshold,
            "status": "Low Stock" if quantity <= threshold else "In Stock",
            "value": _round_money(price_from_minor(product.price_minor) * quantity),
            "last_updated": item.updated_at,
        })

    def _group(key: str) -> dict:
        out = defaultdict(lambda: {"total_items": 0, "total_quantity": 0, "total_value": 0.0})
        for row in items:
            bucket = out[row[key]]
            bucket["total_items"] += 1
            bucket["total_quantity"] += row["quantity"]
            bucket["total_value"] = _round_money(bucket["total_value"] + row["value"])
        return dict(out)

    total_items = len(items)
    low_stock_count = sum(1 for row in items if row["status"] == "Low Stock")
    return {
        "generated_at": utcnow(),
        "summary": {
            "total_items": total_items,
            "total_quantity": sum(row["quantity"] for row in items),
            "total_value": _round_money(sum(row["value"] for row in items)),
            "low_stock_count": low_stock_count,
            "low_stock_percentage": round(low_stock_count / total_items * 100, 2) if total_items else 0,
        },
        "warehouse_summary": _group("warehouse_name"),
        "category_summary": _group("category"),
        "items": items,
    }


def inventory_summary_csv(report: dict) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([title for _, title in CSV_COLUMNS])
    for row in report["items"]:
        values = []
        for key, _ in CSV_COLUMNS:
            value = row.get(key)
            values.append(value.isoformat() if isinstance(value, datetime) else value)
        writer.writerow(values)
    return buf.getvalue()


def _date_bounds(start_date: Optional[date], end_date: Optional[date]):
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.max) if end_date else None
    if start is None and end is None:
        start = utcnow() - timedelta(days=30)
    return start, end


async def sales_summary(
    db: AsyncSession,
    company_id: UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> dict:
    """Sales orders in the range; cancelled orders only count in the status breakdown."""
    start, end = _date_bounds(start_date, end_date)
    filters = [Order.company_id == company_id, Order.type == "sales"]
    if start is not None:
        filters.append(Order.created_at >= start)
    if end is not None:
        filters.append(Order.created_at <= end)

    orders = (await db.execute(select(Order).where(*filters).order_by(Order.created_at.asc()))).scalars().all()

    by_status = defaultdict(lambda: {"count": 0, "revenue": 0.0})
    daily = {}
    order_count = 0
    revenue_minor = 0
    for o in orders:
        bucket = by_status[o.status]
        bucket["count"] += 1
        bucket["revenue"] = _round_money(bucket["revenue"] + price_from_minor(o.total_minor))
        if o.status == "cancelled":
            continue
        order_count += 1
        revenue_minor += int(o.total_minor)
        day = o.created_at.date().isoformat()
        entry = daily.setdefault(day, {"date": day, "order_count": 0, "revenue": 0.0})
        entry["order_count"] += 1
        entry["revenue"] = _round_money(entry["revenue"] + price_from_minor(o.total_minor))

    top_stmt = (
        select(
            Product.id,
            Product.name,
            Product.sku,
            func.sum(OrderItem.quantity).label("quantity"),
            func.sum(OrderItem.line_total_minor).label("revenue_minor"),
            func.count(func.distinct(OrderItem.order_id)).label("order_count"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(*filters, Order.status != "cancelled")
        .group_by(Product.id, Product.name, Product.sku)
        .order_by(func.sum(OrderItem.line_total_minor).desc())
        .limit(10)
    )
    top_products = [
        {
            "product_id": r.id,
            "product_name": r.name,
            "sku": r.sku,
            "quantity": int(r.quantity or 0),
            "revenue": price_from_minor(int(r.revenue_minor or 0)),
            "order_count": int(r.order_count or 0),
        }
        for r in (await db.execute(top_stmt)).all()
    ]

    return {
        "start_date": start,
        "end_date": end,
        "summary": {
            "order_count": order_count,
            "revenue": price_from_minor(revenue_minor),
            "average_order_value": price_from_minor(revenue_minor // order_count) if order_count else 0.0,
        },
        "by_status": dict(by_status),
        "daily": list(daily.values()),
        "top_products": top_products,
    }


async def stats(db: AsyncSession, user: User, company: Company, period: str = "month") -> dict:
    days = PERIOD_DAYS.get(period, 30)
    since = utcnow() - timedelta(days=days)
    company_id = company.id
    is_manager = bool(user.is_superuser) or user.role in ("admin", "manager")
    is_admin = bool(user.is_superuser) or user.role == "admin"

    product_count = (
        await db.execute(
            select(func.count(Product.id)).where(Product.company_id == company_id, Product.is_active.is_(True))
        )
    ).scalar_one()
    inventory_rows = (
        await db.execute(select(func.count(InventoryItem.id)).where(InventoryItem.company_id == company_id))
    ).scalar_one()
    low_stock = (
        await db.execute(
            select(func.count(InventoryItem.id))
            .join(Product, Product.id == InventoryItem.product_id)
            .where(
                InventoryItem.company_id == company_id,
                InventoryItem.quantity <= threshold_expr(company.low_stock_threshold),
            )
        )
    ).scalar_one()

    out = {
        "period": period if period in PERIOD_DAYS else "month",
        "since": since,
        "products": int(product_count),
        "inventory_items": int(inventory_rows),
        "low_stock_items": int(low_stock),
    }
    if not is_manager:
        return out

    unit_cost = func.coalesce(InventoryItem.unit_cost_minor, Product.cost_minor)
    value_minor = (
        await db.execute(
            select(func.coalesce(func.sum(InventoryItem.quantity * unit_cost), 0))
            .join(Product, Product.id == InventoryItem.product_id)
            .where(InventoryItem.company_id == company_id)
        )
    ).scalar_one()
    out["inventory_value"] = price_from_minor(int(value_minor))

    wh_rows = (
        await db.execute(
            select(
                Warehouse.id,
                Warehouse.name,
                Warehouse.code,
                func.count(InventoryItem.id),
                func.coalesce(func.sum(InventoryItem.quantity), 0),
            )
            .outerjoin(InventoryItem, InventoryItem.warehouse_id == Warehouse.id)
            .where(Warehouse.company_id == company_id)
            .group_by(Warehouse.id, Warehouse.name, Warehouse.code)
            .order_by(Warehouse.name.asc())
        )
    ).all()
    out["warehouses"] = [
        {"id": wid, "name": name, "code": code, "items": int(n), "total_quantity": int(qty)}
        for wid, name, code, n, qty in wh_rows
    ]

    movements = (
        await db.execute(
            select(StockMovement)
            .where(StockMovement.company_id == company_id, StockMovement.processed_at >= since)
            .order_by(StockMovement.processed_at.desc())
            .limit(10)
        )
    ).scalars().all()
    out["recent_movements"] = [m.to_schema for m in movements]

    order_rows = (
        await db.execute(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_minor), 0))
            .where(Order.company_id == company_id, Order.type == "sales", Order.created_at >= since)
            .group_by(Order.status)
        )
    ).all()
    by_status = {s: int(n) for s, n, _ in order_rows}
    out["orders"] = {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "revenue": price_from_minor(sum(int(total) for s, _, total in order_rows if s != "cancelled")),
    }

    if is_admin:
        role_rows = (
            await db.execute(
                select(User.role, func.count(User.id)).where(User.company_id == company_id).group_by(User.role)
            )
        ).all()
        active = (
            await db.execute(
                select(func.count(User.id)).where(User.company_id == company_id, User.is_active.is_(True))
            )
        ).scalar_one()
        by_role = {role: int(n) for role, n in role_rows}
        out["users"] = {"total": sum(by_role.values()), "active": int(active), "by_role": by_role}

    return out


async def search(db: AsyncSession, company_id: UUID, q: str, limit: int = 10) -> dict:
    term = f"%{(q or '').strip().lower()}%"
    products = (
        await db.execute(
            select(Product)
            .where(
                Product.company_id == company_id,
                or_(
                    func.lower(Product.name).like(term),
                    func.lower(Product.sku).like(term),
                    func.lower(func.coalesce(Product.barcode, "")).like(term),
                ),
            )
            .order_by(Product.name.asc())
            .limit(limit)
        )
    ).scalars().all()
    suppliers = (
        await db.execute(
            select(Supplier)
            .where(
                Supplier.company_id == company_id,
                or_(
                    func.lower(Supplier.name).like(term),
                    func.lower(func.coalesce(Supplier.email, "")).like(term),
                    func.lower(func.coalesce(Supplier.contact_name, "")).like(term),
                ),
            )
            .order_by(Supplier.name.asc())
            .limit(limit)
        )
    ).scalars().all()
    warehouses = (
        await db.execute(
            select(Warehouse)
            .where(
                Warehouse.company_id == company_id,
                or_(func.lower(Warehouse.name).like(term), func.lower(Warehouse.code).like(term)),
            )
            .order_by(Warehouse.name.asc())
            .limit(limit)
        )
    ).scalars().all()
    return {
        "products": [{"id": p.id, "name": p.name, "sku": p.sku, "type": "product"} for p in products],
        "suppliers": [{"id": s.id, "name": s.name, "email": s.email, "type": "supplier"} for s in suppliers],
        "warehouses": [{"id": w.id, "name": w.name, "code": w.code, "type": "warehouse"} for w in warehouses],
    }
