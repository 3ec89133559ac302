"""
SQLAlchemy models for quotes and their line items.

A quote is a contractor's priced proposal for one case. At most one quote per
(case, contractor) pair may be live (sent / awaiting_response / approved); the
partial unique index below enforces that at the storage boundary.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, str_enum


class QuoteStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    AWAITING_RESPONSE = "awaiting_response"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"


TERMINAL_QUOTE_STATUSES: frozenset[QuoteStatus] = frozenset({
    QuoteStatus.APPROVED,
    QuoteStatus.DECLINED,
    QuoteStatus.EXPIRED,
})

# Statuses the landlord/customer can still respond to
OPEN_QUOTE_STATUSES: frozenset[QuoteStatus] = frozenset({
    QuoteStatus.SENT,
    QuoteStatus.AWAITING_RESPONSE,
})

_LIVE_PAIR_PREDICATE = text("status IN ('sent', 'awaiting_response', 'approved')")


class PartyRole(str, enum.Enum):
    """The two sides of a negotiation."""
    LANDLORD = "landlord"
    CONTRACTOR = "contractor"

    @property
    def opposite(self) -> "PartyRole":
        return PartyRole.CONTRACTOR if self is PartyRole.LANDLORD else PartyRole.LANDLORD


class Quote(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "quotes"

    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contractor_customers.id", ondelete="SET NULL"),
        nullable=True,
    )

    title: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[QuoteStatus] = mapped_column(
        str_enum(QuoteStatus, "quote_status"),
        nullable=False,
        default=QuoteStatus.DRAFT,
    )

    # Money (currency precision, stored total is authoritative)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    deposit_required: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Proposed schedule
    available_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    available_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    estimated_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Negotiation
    has_counter_proposal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    counter_proposal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    awaiting_party_role: Mapped[Optional[PartyRole]] = mapped_column(
        str_enum(PartyRole, "party_role"),
        nullable=True,
    )

    # Delivery / approval
    sent_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    approval_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    line_items: Mapped[list["QuoteLineItem"]] = relationship(
        "QuoteLineItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteLineItem.display_order",
        lazy="selectin",
    )

    __table_args__ = (
        Index(
            "uq_quotes_live_case_contractor",
            "case_id",
            "contractor_id",
            unique=True,
            postgresql_where=_LIVE_PAIR_PREDICATE,
            sqlite_where=_LIVE_PAIR_PREDICATE,
        ),
        Index("ix_quotes_status_expires", "status", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUOTE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Quote(id={self.id}, case={self.case_id}, "
            f"total={self.total}, status={self.status})>"
        )


class QuoteLineItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "quote_line_items"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    quote: Mapped["Quote"] = relationship("Quote", back_populates="line_items")

    def __repr__(self) -> str:
        return f"<QuoteLineItem(quote={self.quote_id}, name={self.name}, total={self.total})>"
