"""
Job Lifecycle Controller -- CASEFLOW-LIFECYCLE-001
==================================================

Top-level orchestrator for a work order. Owns the case status state machine
and calls into the marketplace, quote ledger and scheduling confirmer.

Every transition follows the same shape:

  1. Lock the case row (``caseStore.lock_case``)
  2. Validate the move with ``workOrderStateManager.validate_transition``
  3. Write it with a status-guarded conditional update
  4. Append a ``CaseEvent`` audit row and an outbox event

Side effects (reminders, system messages, notifications) are never performed
here; they are produced from the outbox after the transition commits.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import (
    AccessDeniedError,
    AlreadyAssignedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.scheduling import ScheduledJobStatus
from caseflow.models.user import User
from caseflow.models.work_order import (
    CaseEvent,
    CasePriority,
    CaseStatus,
    WorkOrder,
    display_priority,
)
from caseflow.services import caseStore, marketplaceService, schedulingService
from caseflow.services.workOrderStateManager import (
    ActorType,
    check_invariants,
    get_valid_transitions,
    validate_transition,
)

logger = logging.getLogger(__name__)

# Calendar status to restore when a case resumes from hold
_SCHEDULE_STATUS_FOR_CASE: dict[CaseStatus, ScheduledJobStatus] = {
    CaseStatus.SCHEDULED: ScheduledJobStatus.SCHEDULED,
    CaseStatus.IN_PROGRESS: ScheduledJobStatus.IN_PROGRESS,
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _ensure_assigned_contractor(
    case: WorkOrder,
    contractor_id: Optional[uuid.UUID],
    actor_type: ActorType,
) -> None:
    if actor_type != ActorType.CONTRACTOR:
        return
    if case.assigned_contractor_id is None or case.assigned_contractor_id != contractor_id:
        raise AccessDeniedError("Only the assigned contractor can update this job.")


async def _apply_transition(
    db: AsyncSession,
    case: WorkOrder,
    target: CaseStatus,
    actor_type: ActorType,
    actor_id: Optional[uuid.UUID],
    *,
    values: Optional[dict[str, Any]] = None,
    description: str,
    metadata: Optional[dict[str, Any]] = None,
) -> WorkOrder:
    """Validate and persist one status change on a locked case."""
    check = validate_transition(
        case.status, target, actor_type, resume_status=case.resume_status,
    )
    if not check.allowed:
        logger.info("Rejected transition on case %s: %s", case.id, check.reason)
        raise InvalidTransitionError(check.reason or "Invalid transition.")

    old_status = case.status
    written = await caseStore.update_case_if(
        db,
        case.id,
        expected_statuses=[old_status],
        values={"status": target, "updated_at": utcnow(), **(values or {})},
    )
    if not written:
        raise InvalidTransitionError(
            f"Case status changed concurrently (expected '{old_status.value}')."
        )

    updated = await caseStore.reload_case(db, case.id)
    invariant = check_invariants(
        updated.status,
        updated.resume_status,
        updated.assigned_contractor_id,
        updated.scheduled_start_at,
    )
    if not invariant.allowed:
        raise InvalidTransitionError(invariant.reason or "Case invariant violated.")

    caseStore.add_case_event(
        db,
        case.id,
        "status_change",
        description,
        actor_id=actor_id,
        metadata={
            "old_status": old_status.value,
            "new_status": target.value,
            **(metadata or {}),
        },
    )
    logger.info(
        "Case %s: %s -> %s (actor=%s %s)",
        case.id, old_status.value, target.value, actor_type.value, actor_id,
    )
    return updated


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

async def accept_case(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
    pricing: Optional[marketplaceService.PricingHint] = None,
) -> marketplaceService.AcceptResult:
    """New -> In Review by marketplace accept (first writer wins)."""
    return await marketplaceService.accept(db, contractor_id, case_id, pricing)


async def assign_contractor(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
    actor_type: ActorType = ActorType.LANDLORD,
    note: Optional[str] = None,
) -> WorkOrder:
    """Landlord direct assignment; same conditional write as a marketplace accept."""
    if actor_type == ActorType.CONTRACTOR:
        raise AccessDeniedError("Contractors cannot assign cases directly.")
    if await db.get(User, contractor_id) is None:
        raise NotFoundError("Contractor", contractor_id)

    now = utcnow()
    written = await caseStore.update_case_if(
        db,
        case_id,
        expected_statuses=[CaseStatus.NEW],
        require_unassigned=True,
        values={
            "status": CaseStatus.IN_REVIEW,
            "assigned_contractor_id": contractor_id,
            "assigned_at": now,
            "updated_at": now,
        },
    )
    if not written:
        case = await caseStore.reload_case(db, case_id)
        if case.assigned_contractor_id is not None:
            raise AlreadyAssignedError(case_id)
        raise InvalidTransitionError(
            f"Cannot assign a contractor to a case in '{case.status.value}' status."
        )

    case = await caseStore.reload_case(db, case_id)
    caseStore.add_case_event(
        db,
        case.id,
        "assignment",
        note or f"Contractor {contractor_id} assigned.",
        actor_id=actor_id,
        metadata={
            "old_status": CaseStatus.NEW.value,
            "new_status": CaseStatus.IN_REVIEW.value,
            "contractor_id": str(contractor_id),
        },
    )
    caseEvents.emit_case_assigned(db, case.id, contractor_id, actor_id)
    logger.info("Case %s assigned to contractor %s by %s", case.id, contractor_id, actor_id)
    return case


# ---------------------------------------------------------------------------
# Contractor-driven transitions
# ---------------------------------------------------------------------------

async def confirm_job(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    confirmed_start: Union[date, datetime],
    estimated_days: Optional[int] = None,
    notes: Optional[str] = None,
    *,
    actor_type: ActorType = ActorType.CONTRACTOR,
) -> WorkOrder:
    """In Review/Scheduled -> Scheduled through the scheduling confirmer."""
    return await schedulingService.confirm(
        db,
        case_id,
        contractor_id,
        confirmed_start,
        estimated_days,
        notes,
        actor_type=actor_type,
    )


async def start_job(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    *,
    actor_type: ActorType = ActorType.CONTRACTOR,
) -> WorkOrder:
    """Scheduled -> In Progress."""
    case = await caseStore.lock_case(db, case_id)
    _ensure_assigned_contractor(case, contractor_id, actor_type)
    if case.status != CaseStatus.SCHEDULED:
        raise InvalidTransitionError(
            f"Job can only be started from 'Scheduled' (case is '{case.status.value}')."
        )

    case = await _apply_transition(
        db,
        case,
        CaseStatus.IN_PROGRESS,
        actor_type,
        contractor_id,
        values={"started_at": utcnow()},
        description="Work started.",
    )
    await schedulingService.sync_job_status(db, case.id, ScheduledJobStatus.IN_PROGRESS)
    caseEvents.emit_job_started(db, case.id, case.assigned_contractor_id)
    return case


async def complete_job(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    completion_notes: Optional[str] = None,
    *,
    actor_type: ActorType = ActorType.CONTRACTOR,
) -> WorkOrder:
    """In Progress -> Resolved."""
    case = await caseStore.lock_case(db, case_id)
    _ensure_assigned_contractor(case, contractor_id, actor_type)
    if case.status != CaseStatus.IN_PROGRESS:
        raise InvalidTransitionError(
            f"Job can only be completed from 'In Progress' (case is '{case.status.value}')."
        )

    case = await _apply_transition(
        db,
        case,
        CaseStatus.RESOLVED,
        actor_type,
        contractor_id,
        values={"completed_at": utcnow(), "completion_notes": completion_notes},
        description="Work completed.",
    )
    await schedulingService.sync_job_status(db, case.id, ScheduledJobStatus.RESOLVED)
    caseEvents.emit_job_completed(db, case.id, case.assigned_contractor_id, completion_notes)
    return case


# ---------------------------------------------------------------------------
# Administrative transitions
# ---------------------------------------------------------------------------

async def close_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
    actor_type: ActorType = ActorType.LANDLORD,
    reason: Optional[str] = None,
) -> WorkOrder:
    """Any state except Closed -> Closed."""
    case = await caseStore.lock_case(db, case_id)
    old_status = case.status
    case = await _apply_transition(
        db,
        case,
        CaseStatus.CLOSED,
        actor_type,
        actor_id,
        values={"closed_at": utcnow(), "resume_status": None},
        description=reason or "Case closed.",
        metadata={"reason": reason} if reason else None,
    )
    await schedulingService.sync_job_status(db, case.id, ScheduledJobStatus.CLOSED)
    caseEvents.emit_case_status_changed(
        db,
        caseEvents.CASE_CLOSED,
        case.id,
        old_status.value,
        case.status.value,
        actor_id=actor_id,
        contractor_id=case.assigned_contractor_id,
        reason=reason,
    )
    return case


async def hold_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
    actor_type: ActorType = ActorType.LANDLORD,
    reason: Optional[str] = None,
) -> WorkOrder:
    """Pause a case, remembering the status to resume to."""
    case = await caseStore.lock_case(db, case_id)
    old_status = case.status
    case = await _apply_transition(
        db,
        case,
        CaseStatus.ON_HOLD,
        actor_type,
        actor_id,
        values={"resume_status": old_status},
        description=reason or "Case put on hold.",
        metadata={"reason": reason} if reason else None,
    )
    await schedulingService.sync_job_status(db, case.id, ScheduledJobStatus.ON_HOLD)
    caseEvents.emit_case_status_changed(
        db,
        caseEvents.CASE_ON_HOLD,
        case.id,
        old_status.value,
        case.status.value,
        actor_id=actor_id,
        contractor_id=case.assigned_contractor_id,
        reason=reason,
    )
    return case


async def resume_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
    actor_type: ActorType = ActorType.LANDLORD,
) -> WorkOrder:
    """On Hold -> the status the case was paused from."""
    case = await caseStore.lock_case(db, case_id)
    if case.status != CaseStatus.ON_HOLD:
        raise InvalidTransitionError(
            f"Only cases on hold can be resumed (case is '{case.status.value}')."
        )
    target = case.resume_status
    if target is None:
        raise InvalidTransitionError("Case on hold has no status to resume to.")

    schedule_status = _SCHEDULE_STATUS_FOR_CASE.get(target)
    if schedule_status is not None:
        await schedulingService.sync_job_status(db, case.id, schedule_status)

    case = await _apply_transition(
        db,
        case,
        target,
        actor_type,
        actor_id,
        values={"resume_status": None},
        description="Case resumed.",
    )
    caseEvents.emit_case_status_changed(
        db,
        caseEvents.CASE_RESUMED,
        case.id,
        CaseStatus.ON_HOLD.value,
        target.value,
        actor_id=actor_id,
        contractor_id=case.assigned_contractor_id,
    )
    return case


async def update_priority(
    db: AsyncSession,
    case_id: uuid.UUID,
    priority: CasePriority,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> WorkOrder:
    case = await caseStore.lock_case(db, case_id)
    if case.status == CaseStatus.CLOSED:
        raise InvalidTransitionError("Priority of a closed case cannot be changed.")
    old_priority = case.priority
    if old_priority == priority:
        return case

    case.priority = priority
    case.updated_at = utcnow()
    caseStore.add_case_event(
        db,
        case.id,
        "priority_change",
        f"Priority changed from {display_priority(old_priority)} to {display_priority(priority)}.",
        actor_id=actor_id,
        metadata={"old_priority": old_priority.value, "new_priority": priority.value},
    )
    await db.flush()
    logger.info("Case %s priority %s -> %s", case.id, old_priority.value, priority.value)
    return case


async def add_case_note(
    db: AsyncSession,
    case_id: uuid.UUID,
    note: str,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> CaseEvent:
    if not note or not note.strip():
        raise ValidationError("Note cannot be empty.")
    await caseStore.get_case(db, case_id)
    case_event = caseStore.add_case_event(
        db, case_id, "note", note.strip(), actor_id=actor_id,
    )
    await db.flush()
    return case_event


async def list_case_events(db: AsyncSession, case_id: uuid.UUID) -> list[CaseEvent]:
    return await caseStore.list_case_events(db, case_id)


async def available_actions(
    db: AsyncSession,
    case_id: uuid.UUID,
    actor_type: ActorType,
) -> list[CaseStatus]:
    """Statuses the actor could move the case to right now (UI hints)."""
    case = await caseStore.get_case(db, case_id)
    return get_valid_transitions(case.status, actor_type, resume_status=case.resume_status)
