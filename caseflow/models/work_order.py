"""
SQLAlchemy models for work orders (cases), their audit trail, and the
per-contractor marketplace dismissals.

Related entities (quotes, counter-proposals, scheduled jobs) reference a case
by id; a case never embeds them.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, str_enum, utcnow


class CaseStatus(str, enum.Enum):
    NEW = "New"
    IN_REVIEW = "In Review"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class CasePriority(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"
    EMERGENCY = "emergency"
    EMERGENT = "emergent"


URGENT_PRIORITIES: frozenset[CasePriority] = frozenset({
    CasePriority.URGENT,
    CasePriority.CRITICAL,
    CasePriority.EMERGENCY,
    CasePriority.EMERGENT,
})


def display_priority(priority: CasePriority) -> str:
    """Label shown to users: every urgent-class value renders as "Urgent"."""
    if priority in URGENT_PRIORITIES:
        return "Urgent"
    return priority.value.title()


class WorkOrder(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "work_orders"

    # Ownership (organisation / property are managed outside this subsystem)
    org_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reporter_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Details
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[CasePriority] = mapped_column(
        str_enum(CasePriority, "case_priority"),
        nullable=False,
        default=CasePriority.NORMAL,
    )

    # Lifecycle
    status: Mapped[CaseStatus] = mapped_column(
        str_enum(CaseStatus, "case_status"),
        nullable=False,
        default=CaseStatus.NEW,
        index=True,
    )
    # Status to restore when an On Hold case is resumed
    resume_status: Mapped[Optional[CaseStatus]] = mapped_column(
        str_enum(CaseStatus, "case_status"),
        nullable=True,
    )

    # Assignment / marketplace visibility
    assigned_contractor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    posted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Scheduling (written only by the scheduling confirmer)
    scheduled_start_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    scheduled_end_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    estimated_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimated_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Completion
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkOrder(id={self.id}, status={self.status}, "
            f"contractor={self.assigned_contractor_id})>"
        )


class CaseEvent(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Append-only audit trail entry for a case."""

    __tablename__ = "case_events"

    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    # ``metadata`` is reserved on declarative classes
    metadata_json: Mapped[Any] = mapped_column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<CaseEvent(case={self.case_id}, type={self.event_type})>"


class ContractorDismissal(UUIDPrimaryKeyMixin, Base):
    """A contractor passing on a marketplace case (one row per pair)."""

    __tablename__ = "contractor_dismissed_cases"
    __table_args__ = (
        UniqueConstraint("contractor_id", "case_id", name="uq_dismissal_contractor_case"),
    )

    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dismissed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ContractorDismissal(contractor={self.contractor_id}, case={self.case_id})>"
