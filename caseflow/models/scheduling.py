"""
SQLAlchemy model for scheduled jobs (calendar appointments).

A scheduled job is either bound to a case (one per case, written by the
scheduling confirmer) or standalone (quick-add). On PostgreSQL an exclusion
constraint rejects overlapping active appointments for the same contractor;
other dialects rely on the application-level overlap check alone.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DDL, Boolean, ForeignKey, Index, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, str_enum


class ScheduledJobStatus(str, enum.Enum):
    """Mirrors the calendar-relevant subset of ``CaseStatus``."""
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


ACTIVE_SCHEDULE_STATUSES: frozenset[ScheduledJobStatus] = frozenset({
    ScheduledJobStatus.SCHEDULED,
    ScheduledJobStatus.IN_PROGRESS,
})


class ScheduledJob(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "scheduled_jobs"

    case_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=True,
        unique=True,
    )
    quote_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("quotes.id", ondelete="SET NULL"),
        nullable=True,
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    team_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    scheduled_start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    scheduled_end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[ScheduledJobStatus] = mapped_column(
        str_enum(ScheduledJobStatus, "scheduled_job_status"),
        nullable=False,
        default=ScheduledJobStatus.SCHEDULED,
    )

    __table_args__ = (
        Index("ix_scheduled_jobs_contractor_start", "contractor_id", "scheduled_start_at"),
        Index("ix_scheduled_jobs_team_start", "team_id", "scheduled_start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledJob(id={self.id}, contractor={self.contractor_id}, "
            f"start={self.scheduled_start_at}, status={self.status})>"
        )


# ---------------------------------------------------------------------------
# PostgreSQL overlap guard (SQLSTATE 23P01 on violation)
# ---------------------------------------------------------------------------

NO_OVERLAP_CONSTRAINT = "ex_scheduled_jobs_contractor_no_overlap"

event.listen(
    ScheduledJob.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    ScheduledJob.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE scheduled_jobs ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist ("
        "contractor_id WITH =, "
        "tstzrange(scheduled_start_at, scheduled_end_at, '[)') WITH &&"
        ") WHERE (status IN ('Scheduled', 'In Progress'))"
    ).execute_if(dialect="postgresql"),
)
