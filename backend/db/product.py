import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .database import Base, GUID, utcnow


def price_from_minor(minor):
    return float(minor) / 100.0 if minor is not None else None


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("company_id", "sku", name="ux_products_company_sku"),
        CheckConstraint("price_minor >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("cost_minor >= 0", name="ck_products_cost_non_negative"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    company_id = Column(GUID, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    sku = Column(String, nullable=False, index=True)  # stored upper-case
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True, index=True)
    brand = Column(String, nullable=True, index=True)
    barcode = Column(String, nullable=True, index=True)

    # Money is stored in minor units (cents)
    cost_minor = Column(Integer, nullable=False, default=0)
    price_minor = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    min_stock = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer, nullable=False, default=0)
    reorder_quantity = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    created_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    supplier_links = relationship("ProductSupplier", back_populates="product", cascade="all, delete-orphan", passive_deletes=True)
    inventory_items = relationship("InventoryItem", back_populates="product", passive_deletes=True)

    @property
    def margin(self) -> float:
        if self.price_minor and self.cost_minor:
            return round((self.price_minor - self.cost_minor) / self.price_minor * 100, 2)
        return 0.0

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "brand": self.brand,
            "barcode": self.barcode,
            "cost": price_from_minor(self.cost_minor),
            "price": price_from_minor(self.price_minor),
            "currency": self.currency,
            "margin": self.margin,
            "min_stock": self.min_stock,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "is_active": bool(self.is_active),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ProductSupplier(Base):
    """Association object between Product and Supplier with purchasing terms."""
    __tablename__ = "product_suppliers"

    product_id = Column(GUID, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    supplier_id = Column(GUID, ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True)
    supplier_sku = Column(String, nullable=True)
    cost_minor = Column(Integer, nullable=True)
    lead_time_days = Column(Integer, nullable=True)
    minimum_order_quantity = Column(Integer, nullable=True)
    is_preferred = Column(Boolean, nullable=False, default=False)

    product = relationship("Product", back_populates="supplier_links")
    supplier = relationship("Supplier", back_populates="product_links")

    @property
    def to_schema(self):
        return {
            "supplier_id": self.supplier_id,
            "supplier_sku": self.supplier_sku,
            "cost": price_from_minor(self.cost_minor),
            "lead_time_days": self.lead_time_days,
            "minimum_order_quantity": self.minimum_order_quantity,
            "is_preferred": bool(self.is_preferred),
        }
