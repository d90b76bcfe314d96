import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship

from ..database import Base, GUID, utcnow


QUALITY_STATUSES = ("good", "damaged", "expired", "quarantine", "returned")


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("company_id", "product_id", "warehouse_id", name="ux_inventory_company_product_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_within_quantity"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    company_id = Column(GUID, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(GUID, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id = Column(GUID, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    min_quantity = Column(Integer, nullable=True)

    # Location within the warehouse
    zone = Column(String, nullable=True)
    aisle = Column(String, nullable=True)
    shelf = Column(String, nullable=True)
    bin = Column(String, nullable=True)

    # Batch / lot tracking
    batch = Column(String, nullable=True, index=True)
    lot_number = Column(String, nullable=True, index=True)
    expiry_date = Column(Date, nullable=True, index=True)

    unit_cost_minor = Column(Integer, nullable=True)
    quality_status = Column(Text, nullable=False, default="good")
    is_active = Column(Boolean, nullable=False, default=True)

    last_updated_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = relationship("Product", back_populates="inventory_items")
    warehouse = relationship("Warehouse", back_populates="inventory_items")

    @hybrid_property
    def available_quantity(self):
        return self.quantity - self.reserved_quantity

    @property
    def location_string(self) -> str:
        return "-".join(p for p in (self.zone, self.aisle, self.shelf, self.bin) if p)

    @property
    def total_value_minor(self) -> int:
        return int(self.quantity or 0) * int(self.unit_cost_minor or 0)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": int(self.quantity or 0),
            "reserved_quantity": int(self.reserved_quantity or 0),
            "available_quantity": int(self.quantity or 0) - int(self.reserved_quantity or 0),
            "min_quantity": self.min_quantity,
            "zone": self.zone,
            "aisle": self.aisle,
            "shelf": self.shelf,
            "bin": self.bin,
            "location": self.location_string,
            "batch": self.batch,
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date,
            "unit_cost": float(self.unit_cost_minor) / 100.0 if self.unit_cost_minor is not None else None,
            "quality_status": self.quality_status,
            "is_active": bool(self.is_active),
            "updated_at": self.updated_at,
        }
