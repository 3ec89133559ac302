"""
Scheduling Confirmer -- CASEFLOW-SCHEDULING-005
===============================================

Turns an assigned case into a calendar-bound commitment and keeps the
contractor's calendar free of overlapping appointments.

  - ``confirm``               -- In Review/Scheduled -> Scheduled, writes the
                                 case dates and upserts its ScheduledJob
  - ``quick_add_job``         -- standalone appointment (no case)
  - ``compute_drop_target``   -- calendar cell -> start datetime
  - ``reschedule_from_drop``  -- drag-and-drop; goes through ``confirm``
  - ``list_calendar``         -- appointments overlapping a window

Overlaps are a hard ``SlotConflictError``: checked in the application for
every dialect and enforced by an exclusion constraint on PostgreSQL.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import (
    AccessDeniedError,
    InvalidTransitionError,
    SlotConflictError,
    ValidationError,
)
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.scheduling import (
    ACTIVE_SCHEDULE_STATUSES,
    NO_OVERLAP_CONSTRAINT,
    ScheduledJob,
    ScheduledJobStatus,
)
from caseflow.models.work_order import CaseStatus, WorkOrder
from caseflow.services import caseStore
from caseflow.services.workOrderStateManager import ActorType, validate_transition

logger = logging.getLogger(__name__)

EXCLUSION_VIOLATION = "23P01"

StartInput = Union[date, datetime]


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def normalize_start(value: StartInput) -> tuple[datetime, bool]:
    """Return a UTC datetime and whether the input was a bare date."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc), False
    return datetime.combine(value, time.min, tzinfo=timezone.utc), True


def compute_end(start: datetime, estimated_days: Optional[int]) -> Optional[datetime]:
    """scheduled end = start + estimated days (None when unknown)."""
    if estimated_days is None:
        return None
    return start + timedelta(days=estimated_days)


def compute_drop_target(week_start: date, day_index: int, hour: Optional[int] = None) -> datetime:
    """Map a calendar drop (week column + hour row) to a start datetime."""
    if not 0 <= day_index <= 6:
        raise ValidationError("Day index must be between 0 and 6.")
    if hour is not None and not 0 <= hour <= 23:
        raise ValidationError("Hour must be between 0 and 23.")
    day = week_start + timedelta(days=day_index)
    return datetime.combine(day, time(hour or 0), tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Overlap detection
# ---------------------------------------------------------------------------

def is_exclusion_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == EXCLUSION_VIOLATION:
        return True
    cause = getattr(orig, "__cause__", None)
    if getattr(cause, "sqlstate", None) == EXCLUSION_VIOLATION:
        return True
    return NO_OVERLAP_CONSTRAINT in str(exc)


async def find_overlap(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    *,
    team_id: Optional[uuid.UUID] = None,
    exclude_id: Optional[uuid.UUID] = None,
) -> Optional[ScheduledJob]:
    """First active appointment of the contractor (or team) overlapping
    ``[start, end)``."""
    owner = ScheduledJob.contractor_id == contractor_id
    if team_id is not None:
        owner = or_(owner, ScheduledJob.team_id == team_id)
    stmt = select(ScheduledJob).where(
        owner,
        ScheduledJob.status.in_(list(ACTIVE_SCHEDULE_STATUSES)),
        ScheduledJob.scheduled_start_at < end,
        ScheduledJob.scheduled_end_at > start,
    )
    if exclude_id is not None:
        stmt = stmt.where(ScheduledJob.id != exclude_id)
    result = await db.execute(stmt.order_by(ScheduledJob.scheduled_start_at).limit(1))
    return result.scalar_one_or_none()


async def _ensure_free(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    *,
    team_id: Optional[uuid.UUID] = None,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    clash = await find_overlap(
        db, contractor_id, start, end, team_id=team_id, exclude_id=exclude_id,
    )
    if clash is not None:
        logger.warning(
            "Slot conflict for contractor %s: %s - %s overlaps job %s",
            contractor_id, start, end, clash.id,
        )
        raise SlotConflictError()


@asynccontextmanager
async def _slot_guard(db: AsyncSession) -> AsyncIterator[None]:
    """Savepoint around calendar writes; stage them inside the block."""
    try:
        async with db.begin_nested():
            yield
            await db.flush()
    except IntegrityError as exc:
        if is_exclusion_violation(exc):
            logger.warning("Exclusion constraint rejected overlapping appointment")
            raise SlotConflictError() from exc
        raise


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------

async def confirm(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    confirmed_start: StartInput,
    estimated_days: Optional[int] = None,
    notes: Optional[str] = None,
    *,
    actor_type: ActorType = ActorType.CONTRACTOR,
    team_id: Optional[uuid.UUID] = None,
) -> WorkOrder:
    """Confirm (or re-confirm) the job schedule for an assigned case.

    ``estimated_days`` defaults to the case's stored estimate. The case's
    scheduled end is ``start + estimated_days``; the calendar entry falls
    back to a one-day all-day block when the estimate is unknown.

    Raises:
        InvalidTransitionError: Case not In Review/Scheduled or unassigned.
        AccessDeniedError: The caller is not the assigned contractor.
        SlotConflictError: The slot overlaps another active appointment.
    """
    if confirmed_start is None:
        raise ValidationError("A confirmed start date is required.")
    if estimated_days is not None and estimated_days < 1:
        raise ValidationError("Estimated days must be at least 1.")

    case = await caseStore.lock_case(db, case_id)
    if case.assigned_contractor_id is None:
        raise InvalidTransitionError("Case has no assigned contractor to confirm the job.")
    if actor_type == ActorType.CONTRACTOR and case.assigned_contractor_id != contractor_id:
        raise AccessDeniedError("Only the assigned contractor can confirm this job.")

    check = validate_transition(
        case.status, CaseStatus.SCHEDULED, actor_type, resume_status=case.resume_status,
    )
    if not check.allowed or case.status not in (CaseStatus.IN_REVIEW, CaseStatus.SCHEDULED):
        raise InvalidTransitionError(
            check.reason or f"Cannot confirm a job for a case in '{case.status.value}' status."
        )

    days = estimated_days if estimated_days is not None else case.estimated_days
    start, date_only = normalize_start(confirmed_start)
    end = compute_end(start, days)
    slot_end = end or start + timedelta(days=1)
    assignee = case.assigned_contractor_id

    existing = (
        await db.execute(select(ScheduledJob).where(ScheduledJob.case_id == case.id))
    ).scalar_one_or_none()
    await _ensure_free(
        db, assignee, start, slot_end,
        team_id=team_id if team_id is not None else (existing.team_id if existing else None),
        exclude_id=existing.id if existing else None,
    )

    async with _slot_guard(db):
        if existing is None:
            existing = ScheduledJob(case_id=case.id, contractor_id=assignee)
            db.add(existing)
        existing.title = case.title
        existing.notes = notes
        existing.scheduled_start_at = start
        existing.scheduled_end_at = slot_end
        existing.is_all_day = date_only or end is None
        existing.status = ScheduledJobStatus.SCHEDULED
        if team_id is not None:
            existing.team_id = team_id

    old_status = case.status
    written = await caseStore.update_case_if(
        db,
        case.id,
        expected_statuses=[old_status],
        values={
            "status": CaseStatus.SCHEDULED,
            "scheduled_start_at": start,
            "scheduled_end_at": end,
            "estimated_days": days,
            "updated_at": utcnow(),
        },
    )
    if not written:
        raise InvalidTransitionError("Case status changed while confirming the job.")

    rescheduled = old_status == CaseStatus.SCHEDULED
    caseStore.add_case_event(
        db,
        case.id,
        "rescheduled" if rescheduled else "status_change",
        f"Job {'rescheduled' if rescheduled else 'confirmed'} to start {start.date().isoformat()}.",
        actor_id=contractor_id,
        metadata={
            "old_status": old_status.value,
            "new_status": CaseStatus.SCHEDULED.value,
            "scheduled_start_at": start.isoformat(),
            "scheduled_end_at": end.isoformat() if end else None,
            "estimated_days": days,
        },
    )
    caseEvents.emit_job_confirmed(
        db,
        case.id,
        assignee,
        title=case.title,
        start_at=start,
        end_at=end,
        estimated_days=days,
        notes=notes,
    )
    logger.info(
        "Case %s: %s -> %s (start=%s, days=%s)",
        case.id, old_status.value, CaseStatus.SCHEDULED.value, start.isoformat(), days,
    )
    return await caseStore.reload_case(db, case.id)


async def reschedule_from_drop(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    week_start: date,
    day_index: int,
    hour: Optional[int] = None,
    *,
    actor_type: ActorType = ActorType.CONTRACTOR,
) -> WorkOrder:
    """Drag-and-drop rescheduling, keeping the case's estimated duration."""
    target = compute_drop_target(week_start, day_index, hour)
    return await confirm(db, case_id, contractor_id, target, actor_type=actor_type)


# ---------------------------------------------------------------------------
# Quick jobs and calendar
# ---------------------------------------------------------------------------

async def quick_add_job(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    title: str,
    start: datetime,
    end: datetime,
    *,
    notes: Optional[str] = None,
    location: Optional[str] = None,
    team_id: Optional[uuid.UUID] = None,
    is_all_day: bool = False,
) -> ScheduledJob:
    """Add a standalone appointment to the contractor's calendar."""
    if not title or not title.strip():
        raise ValidationError("Title is required.")
    if start is None or end is None:
        raise ValidationError("Start and end times are required.")
    start, _ = normalize_start(start)
    end, _ = normalize_start(end)
    if start >= end:
        raise ValidationError("Start time must be before end time.")

    await _ensure_free(db, contractor_id, start, end, team_id=team_id)
    job = ScheduledJob(
        contractor_id=contractor_id,
        team_id=team_id,
        title=title.strip(),
        notes=notes,
        location=location,
        scheduled_start_at=start,
        scheduled_end_at=end,
        is_all_day=is_all_day,
        status=ScheduledJobStatus.SCHEDULED,
    )
    async with _slot_guard(db):
        db.add(job)
    logger.info("Quick job %s added for contractor %s", job.id, contractor_id)
    return job


async def sync_job_status(
    db: AsyncSession,
    case_id: uuid.UUID,
    status: ScheduledJobStatus,
) -> Optional[ScheduledJob]:
    """Mirror a case transition onto its calendar entry, if it has one."""
    job = (
        await db.execute(select(ScheduledJob).where(ScheduledJob.case_id == case_id))
    ).scalar_one_or_none()
    if job is None:
        return None
    if status in ACTIVE_SCHEDULE_STATUSES and job.status not in ACTIVE_SCHEDULE_STATUSES:
        # Re-activating a paused entry must not land on someone else's slot
        await _ensure_free(
            db, job.contractor_id, job.scheduled_start_at, job.scheduled_end_at,
            team_id=job.team_id, exclude_id=job.id,
        )
    async with _slot_guard(db):
        job.status = status
    return job


async def list_calendar(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    window_start: datetime,
    window_end: datetime,
) -> list[ScheduledJob]:
    if window_start >= window_end:
        raise ValidationError("Calendar window start must be before its end.")
    stmt = (
        select(ScheduledJob)
        .where(
            and_(
                ScheduledJob.contractor_id == contractor_id,
                ScheduledJob.scheduled_start_at < window_end,
                ScheduledJob.scheduled_end_at > window_start,
            )
        )
        .order_by(ScheduledJob.scheduled_start_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
