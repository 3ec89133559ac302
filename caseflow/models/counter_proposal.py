"""
SQLAlchemy model for quote counter-proposals.

Negotiation history is append-only: a re-counter rejects the previous row and
inserts a new one. At most one row per quote may be ``pending``.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Index, Numeric, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, str_enum
from .quote import PartyRole


class CounterProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_PENDING_PREDICATE = text("status = 'pending'")


class CounterProposal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "quote_counter_proposals"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposed_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    proposed_by_role: Mapped[PartyRole] = mapped_column(
        str_enum(PartyRole, "party_role"),
        nullable=False,
    )

    # Terms; null fields leave the quote's value untouched on accept
    proposed_total: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    proposed_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    proposed_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    scope_changes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[CounterProposalStatus] = mapped_column(
        str_enum(CounterProposalStatus, "counter_proposal_status"),
        nullable=False,
        default=CounterProposalStatus.PENDING,
    )
    responded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    responded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    response_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_counter_proposals_one_pending",
            "quote_id",
            unique=True,
            postgresql_where=_PENDING_PREDICATE,
            sqlite_where=_PENDING_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CounterProposal(id={self.id}, quote={self.quote_id}, "
            f"by={self.proposed_by_role}, status={self.status})>"
        )
