"""
SQLAlchemy models for users, contractor profiles and contractor customers.

Authentication is handled by an external collaborator; these tables only hold
what the work-order engine needs: display names for system messages, the
contractor's service scope for marketplace eligibility, and the customer
records a contractor may quote against.
"""

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, str_enum


class UserRole(str, enum.Enum):
    LANDLORD = "landlord"
    CONTRACTOR = "contractor"
    TENANT = "tenant"
    ADMIN = "admin"


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        str_enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.TENANT,
    )

    @property
    def full_name(self) -> Optional[str]:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class ContractorProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Service scope of a contractor for marketplace eligibility."""

    __tablename__ = "contractor_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    business_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # Category names the contractor services; empty list means every category
    specialties: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ContractorProfile(user={self.user_id}, specialties={self.specialties})>"


class ContractorCustomer(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A customer record owned by one contractor (quotes are addressed to these)."""

    __tablename__ = "contractor_customers"

    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ContractorCustomer(id={self.id}, contractor={self.contractor_id})>"
