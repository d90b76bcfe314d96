import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import Base, GUID, utcnow


MOVEMENT_TYPES = (
    "inbound",
    "outbound",
    "transfer",
    "adjustment",
    "return",
    "damaged",
    "expired",
    "cycle_count",
)

MOVEMENT_REASONS = (
    "purchase_order",
    "sales_order",
    "transfer_order",
    "manual_adjustment",
    "customer_return",
    "supplier_return",
    "damaged_goods",
    "expired_goods",
    "cycle_count",
    "stock_loss",
    "stock_found",
    "correction",
    "other",
)


class StockMovement(Base):
    """Append-only record of a quantity change; quantity is always positive."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    company_id = Column(GUID, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(GUID, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    from_warehouse_id = Column(GUID, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)
    to_warehouse_id = Column(GUID, ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True)

    type = Column(String, nullable=False, index=True)
    reason = Column(Text, nullable=False)

    quantity = Column(Integer, nullable=False)
    # Quantities at the warehouse the movement primarily affects (source for
    # outbound/transfer, destination for inbound).
    before_quantity = Column(Integer, nullable=False)
    after_quantity = Column(Integer, nullable=False)

    unit_cost_minor = Column(Integer, nullable=True)
    batch = Column(String, nullable=True)
    lot_number = Column(String, nullable=True)

    reference_type = Column(String, nullable=True)  # sales_order|purchase_order|adjustment|...
    reference_id = Column(GUID, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="completed")

    processed_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    product = relationship("Product")
    from_warehouse = relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = relationship("Warehouse", foreign_keys=[to_warehouse_id])

    @property
    def direction(self) -> str:
        if self.type == "inbound":
            return "in"
        if self.type == "outbound":
            return "out"
        if self.type == "transfer":
            return "transfer"
        return "adjustment"

    @property
    def quantity_change(self) -> int:
        return int(self.after_quantity) - int(self.before_quantity)

    @property
    def total_cost_minor(self):
        if self.unit_cost_minor is None:
            return None
        return int(self.unit_cost_minor) * int(self.quantity)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "type": self.type,
            "direction": self.direction,
            "reason": self.reason,
            "quantity": int(self.quantity),
            "before_quantity": int(self.before_quantity),
            "after_quantity": int(self.after_quantity),
            "quantity_change": self.quantity_change,
            "unit_cost": float(self.unit_cost_minor) / 100.0 if self.unit_cost_minor is not None else None,
            "batch": self.batch,
            "lot_number": self.lot_number,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": self.processed_at,
        }
