import uuid
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from .database import Base, GUID, utcnow


ORDER_TYPES = ("sales", "purchase")
ORDER_STATUSES = ("pending", "confirmed", "fulfilled", "cancelled")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("company_id", "number", name="uq_orders_company_number"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    company_id = Column(GUID, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(String, nullable=False, index=True)
    type = Column(Text, nullable=False, default="sales", index=True)  # sales|purchase
    status = Column(Text, nullable=False, default="pending", index=True)  # pending|confirmed|fulfilled|cancelled

    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    supplier_id = Column(GUID, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    warehouse_id = Column(GUID, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)

    subtotal_minor = Column(Integer, nullable=False, default=0)
    tax_minor = Column(Integer, nullable=False, default=0)
    shipping_minor = Column(Integer, nullable=False, default=0)
    total_minor = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    notes = Column(Text, nullable=True)

    status_history = Column(JSON, nullable=False, default=list)

    created_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    fulfilled_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    fulfilled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier")
    warehouse = relationship("Warehouse")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    order_id = Column(GUID, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(GUID, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price_minor = Column(Integer, nullable=False, default=0)
    line_total_minor = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    allocations = relationship("OrderAllocation", back_populates="order_item", cascade="all, delete-orphan")


class OrderAllocation(Base):
    """Stock reserved for a sales order line in one inventory row."""
    __tablename__ = "order_allocations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_allocations_quantity_positive"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    order_item_id = Column(GUID, ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)

    order_item = relationship("OrderItem", back_populates="allocations")
    inventory_item = relationship("InventoryItem")
