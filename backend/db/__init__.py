from .database import Base, get_async_session, async_session_maker, engine, utcnow
from .company import Company
from .users import User, OAuthAccount
from .supplier import Supplier
from .warehouse import Warehouse
from .category import Category
from .product import Product, ProductSupplier
from .inventory.item import InventoryItem
from .inventory.movement import StockMovement
from .order import Order, OrderItem, OrderAllocation
from .auth_tokens import LoginCode, MagicLink, InventorySession
from .audit import AuditLog

__all__ = [
    "Base",
    "get_async_session",
    "async_session_maker",
    "engine",
    "utcnow",
    "Company",
    "User",
    "OAuthAccount",
    "Supplier",
    "Warehouse",
    "Category",
    "Product",
    "ProductSupplier",
    "InventoryItem",
    "StockMovement",
    "Order",
    "OrderItem",
    "OrderAllocation",
    "LoginCode",
    "MagicLink",
    "InventorySession",
    "AuditLog",
]
