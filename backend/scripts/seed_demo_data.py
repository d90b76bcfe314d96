import asyncio
import sys
from pathlib import Path

"""
Seed a demo company (admin user, warehouses, suppliers, products, stock) into the DB.

This script can be run from either:
- backend/: `uv run python scripts/seed_demo_data.py`
- repo root: `uv run python backend/scripts/seed_demo_data.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from db.database import async_session_maker
from db.company import Company, slugify
from db.users import User
from db.warehouse import Warehouse
from db.supplier import Supplier
from db.category import Category
from db.product import Product, ProductSupplier
from db.inventory.item import InventoryItem
from db.inventory.movement import StockMovement

from fastapi_users.password import PasswordHelper


password_helper = PasswordHelper()


async def get_or_create_company(session, name: str) -> Company:
    slug = slugify(name)
    result = await session.execute(select(Company).where(Company.slug == slug))
    company = result.scalar_one_or_none()
    if company:
        return company

    company = Company(name=name, slug=slug, email=f"hello@{slug}.example", low_stock_threshold=10)
    session.add(company)
    await session.flush()
    return company


async def get_or_create_user(session, company_id, email: str, password: str, role: str = "admin") -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.unique().scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        name=email.split("@")[0].title(),
        role=role,
        company_id=company_id,
        is_active=True,
        is_superuser=False,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_warehouse(session, company_id, name: str, code: str, is_default: bool = False) -> Warehouse:
    result = await session.execute(
        select(Warehouse).where(Warehouse.company_id == company_id, Warehouse.code == code)
    )
    warehouse = result.scalar_one_or_none()
    if warehouse:
        return warehouse

    warehouse = Warehouse(company_id=company_id, name=name, code=code, is_default=is_default)
    session.add(warehouse)
    await session.flush()
    return warehouse


async def get_or_create_supplier(session, company_id, name: str, email: str | None = None) -> Supplier:
    result = await session.execute(
        select(Supplier).where(Supplier.company_id == company_id, func.lower(Supplier.name) == name.strip().lower())
    )
    supplier = result.scalar_one_or_none()
    if supplier:
        return supplier

    supplier = Supplier(company_id=company_id, name=name.strip(), email=email)
    session.add(supplier)
    await session.flush()
    return supplier


async def get_or_create_category(session, company_id, name: str, description: str | None = None) -> Category:
    result = await session.execute(
        select(Category).where(Category.company_id == company_id, func.lower(Category.name) == name.lower())
    )
    category = result.scalar_one_or_none()
    if category:
        return category

    category = Category(company_id=company_id, name=name, description=description)
    session.add(category)
    await session.flush()
    return category


async def upsert_product(
    session,
    company_id,
    sku: str,
    name: str,
    category: str,
    cost_minor: int,
    price_minor: int,
    supplier: Supplier | None = None,
) -> Product:
    result = await session.execute(
        select(Product).where(Product.company_id == company_id, Product.sku == sku.upper())
    )
    product = result.scalar_one_or_none()
    if not product:
        product = Product(company_id=company_id, sku=sku.upper(), name=name, category=category)
        session.add(product)
    # Keep prices up-to-date if you re-run seed with new values
    product.cost_minor = cost_minor
    product.price_minor = price_minor
    await session.flush()

    if supplier is not None:
        link = await session.get(ProductSupplier, (product.id, supplier.id))
        if not link:
            session.add(
                ProductSupplier(
                    product_id=product.id,
                    supplier_id=supplier.id,
                    cost_minor=cost_minor,
                    is_preferred=True,
                )
            )
            await session.flush()
    return product


async def ensure_stock(session, user: User, product: Product, warehouse: Warehouse, quantity: int) -> InventoryItem:
    """Create the inventory row with an opening inbound movement. Existing rows are left alone."""
    result = await session.execute(
        select(InventoryItem).where(
            InventoryItem.product_id == product.id,
            InventoryItem.warehouse_id == warehouse.id,
        )
    )
    item = result.scalar_one_or_none()
    if item:
        return item

    item = InventoryItem(
        company_id=product.company_id,
        product_id=product.id,
        warehouse_id=warehouse.id,
        quantity=quantity,
        reserved_quantity=0,
        last_updated_by_user_id=user.id,
    )
    session.add(item)
    session.add(
        StockMovement(
            company_id=product.company_id,
            product_id=product.id,
            to_warehouse_id=warehouse.id,
            type="inbound",
            reason="Initial stock",
            quantity=quantity,
            before_quantity=0,
            after_quantity=quantity,
            unit_cost_minor=product.cost_minor,
            reference_type="seed",
            processed_by_user_id=user.id,
        )
    )
    await session.flush()
    return item


async def seed():
    async with async_session_maker() as session:
        async with session.begin():
            company = await get_or_create_company(session, "Demo Trading Co")
            admin = await get_or_create_user(session, company.id, "admin@demo.example", "demo-admin-pass")
            await get_or_create_user(session, company.id, "manager@demo.example", "demo-manager-pass", "manager")
            await get_or_create_user(session, company.id, "viewer@demo.example", "demo-viewer-pass", "viewer")

            main = await get_or_create_warehouse(session, company.id, "Main Warehouse", "MAIN", is_default=True)
            store = await get_or_create_warehouse(session, company.id, "Downtown Store", "STORE1")

            acme = await get_or_create_supplier(session, company.id, "Acme Components", "sales@acme.example")
            globex = await get_or_create_supplier(session, company.id, "Globex Supply", "orders@globex.example")

            for name in ("Hardware", "Accessories", "Print"):
                await get_or_create_category(session, company.id, name)

            # Catalog (money in cents)
            widget = await upsert_product(session, company.id, "WID-001", "Widget", "Hardware", 250, 499, acme)
            gadget = await upsert_product(session, company.id, "GAD-001", "Gadget", "Hardware", 1200, 2499, acme)
            cable = await upsert_product(session, company.id, "CAB-USB-C", "USB-C Cable", "Accessories", 150, 999, globex)
            charger = await upsert_product(session, company.id, "CHG-65W", "65W Charger", "Accessories", 1800, 3999, globex)
            await upsert_product(session, company.id, "MAN-001", "User Manual", "Print", 50, 0)

            await ensure_stock(session, admin, widget, main, 120)
            await ensure_stock(session, admin, widget, store, 15)
            await ensure_stock(session, admin, gadget, main, 40)
            await ensure_stock(session, admin, cable, main, 300)
            await ensure_stock(session, admin, cable, store, 6)
            await ensure_stock(session, admin, charger, main, 8)

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())
