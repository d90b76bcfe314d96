import re
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from .database import Base, GUID, utcnow


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").strip().lower())
    return slug.strip("-")


class Company(Base):
    """Tenant. Every business row belongs to exactly one company."""
    __tablename__ = "companies"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    website = Column(String, nullable=True)

    # Settings
    currency = Column(String(3), nullable=False, default="USD")
    timezone = Column(String, nullable=False, default="UTC")
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    # Last order sequence handed out per order type; never decremented.
    sales_order_seq = Column(Integer, nullable=False, default=0)
    purchase_order_seq = Column(Integer, nullable=False, default=0)

    # Subscription
    plan = Column(String, nullable=False, default="starter")  # starter|growth|enterprise
    subscription_status = Column(String, nullable=False, default="trial")  # active|inactive|trial|suspended

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    users = relationship("User", back_populates="company", passive_deletes=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "email": self.email,
            "phone": self.phone,
            "website": self.website,
            "currency": self.currency,
            "timezone": self.timezone,
            "low_stock_threshold": self.low_stock_threshold,
            "plan": self.plan,
            "subscription_status": self.subscription_status,
            "is_active": bool(self.is_active),
        }
