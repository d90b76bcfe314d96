from typing import List

from fastapi_users_db_sqlalchemy import (
    SQLAlchemyBaseOAuthAccountTableUUID,
    SQLAlchemyBaseUserTableUUID,
)
from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, relationship

from .database import Base, GUID, utcnow


ROLES = ("admin", "manager", "operator", "viewer")


class OAuthAccount(SQLAlchemyBaseOAuthAccountTableUUID, Base):
    __tablename__ = "oauth_accounts"

    # The base mixin points at "user.id"; our table is "users".
    user_id = Column(GUID, ForeignKey("users.id", ondelete="cascade"), nullable=False)


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="operator", index=True)  # admin|manager|operator|viewer

    # Nullable: OAuth sign-ups are attached to a company right after registration.
    company_id = Column(GUID, ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)

    hashed_pin = Column(String, nullable=True)
    pin_reset_token_hash = Column(String, nullable=True, index=True)
    pin_reset_expires_at = Column(DateTime, nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    company = relationship("Company", back_populates="users")
    oauth_accounts: Mapped[List[OAuthAccount]] = relationship("OAuthAccount", lazy="joined")

    @property
    def initials(self) -> str:
        source = (self.name or self.email or "").split()
        return "".join(word[0] for word in source if word).upper()[:2]

    @property
    def to_schema(self):
        """Convert User model to schema dictionary format"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "initials": self.initials,
            "role": self.role,
            "company_id": self.company_id,
            "is_active": bool(self.is_active),
            "is_verified": bool(self.is_verified),
            "has_pin": bool(self.hashed_pin),
            "last_login_at": self.last_login_at,
            "created_at": self.created_at,
        }
