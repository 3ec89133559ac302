"""
Case Event Emission -- CASEFLOW-LIFECYCLE-001
=============================================

Domain events for work-order, quote and negotiation state changes. Each
emitter builds a standardised payload, appends it to the transactional
outbox on the caller's session (so it commits or rolls back together with the
state change it describes), logs it, and returns the payload.

Side effects (reminders, system chat messages, notifications) are produced
later by ``services.outboxDispatcher`` from these rows.

Events emitted:
  - case.accepted / case.assigned
  - case.closed / case.on_hold / case.resumed
  - job.confirmed / job.started / job.completed / job.confirmation_overdue
  - quote.sent / quote.approved / quote.declined / quote.expired
  - counter.proposed / counter.accepted / counter.declined / counter.countered
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

CASE_ACCEPTED = "case.accepted"
CASE_ASSIGNED = "case.assigned"
CASE_CLOSED = "case.closed"
CASE_ON_HOLD = "case.on_hold"
CASE_RESUMED = "case.resumed"
JOB_CONFIRMED = "job.confirmed"
JOB_STARTED = "job.started"
JOB_COMPLETED = "job.completed"
JOB_CONFIRMATION_OVERDUE = "job.confirmation_overdue"
QUOTE_SENT = "quote.sent"
QUOTE_APPROVED = "quote.approved"
QUOTE_DECLINED = "quote.declined"
QUOTE_EXPIRED = "quote.expired"
COUNTER_PROPOSED = "counter.proposed"
COUNTER_ACCEPTED = "counter.accepted"
COUNTER_DECLINED = "counter.declined"
COUNTER_COUNTERED = "counter.countered"


def _build_event(
    event_type: str,
    aggregate_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "aggregate_id": str(aggregate_id),
        "actor_id": str(actor_id) if actor_id else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def _emit(
    db: AsyncSession,
    event_type: str,
    aggregate_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(event_type, aggregate_id, data=data, actor_id=actor_id)
    db.add(
        OutboxEvent(
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=event,
        )
    )
    logger.info("Event emitted: %s for %s", event_type, aggregate_id)
    return event


def _str(value: Any) -> str | None:
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Case lifecycle
# ---------------------------------------------------------------------------

def emit_case_accepted(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    *,
    quote_id: uuid.UUID | None = None,
    price_tbd: bool = False,
) -> dict[str, Any]:
    """Emit event when a contractor wins a marketplace case."""
    return _emit(
        db,
        CASE_ACCEPTED,
        case_id,
        actor_id=contractor_id,
        data={
            "contractor_id": str(contractor_id),
            "quote_id": _str(quote_id),
            "price_tbd": price_tbd,
        },
    )


def emit_case_assigned(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Emit event when a landlord assigns a contractor directly."""
    return _emit(
        db,
        CASE_ASSIGNED,
        case_id,
        actor_id=actor_id,
        data={"contractor_id": str(contractor_id)},
    )


def emit_case_status_changed(
    db: AsyncSession,
    event_type: str,
    case_id: uuid.UUID,
    old_status: str,
    new_status: str,
    *,
    actor_id: uuid.UUID | None = None,
    contractor_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Emit one of the administrative status events (close / hold / resume)."""
    event = _emit(
        db,
        event_type,
        case_id,
        actor_id=actor_id,
        data={
            "old_status": old_status,
            "new_status": new_status,
            "contractor_id": _str(contractor_id),
            "reason": reason,
        },
    )
    logger.info("Case %s: %s -> %s", case_id, old_status, new_status)
    return event


def emit_job_confirmed(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    *,
    title: str,
    start_at: datetime,
    end_at: datetime | None,
    estimated_days: int | None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Emit event when the contractor confirms (or reschedules) the job."""
    return _emit(
        db,
        JOB_CONFIRMED,
        case_id,
        actor_id=contractor_id,
        data={
            "contractor_id": str(contractor_id),
            "title": title,
            "start_at": start_at.isoformat(),
            "end_at": end_at.isoformat() if end_at else None,
            "estimated_days": estimated_days,
            "notes": notes,
        },
    )


def emit_job_started(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
) -> dict[str, Any]:
    return _emit(
        db,
        JOB_STARTED,
        case_id,
        actor_id=contractor_id,
        data={"contractor_id": str(contractor_id)},
    )


def emit_job_completed(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    completion_notes: str | None = None,
) -> dict[str, Any]:
    return _emit(
        db,
        JOB_COMPLETED,
        case_id,
        actor_id=contractor_id,
        data={
            "contractor_id": str(contractor_id),
            "completion_notes": completion_notes,
        },
    )


def emit_confirmation_overdue(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    approved_at: datetime,
) -> dict[str, Any]:
    """Emit event nudging a contractor who has not confirmed an approved job."""
    return _emit(
        db,
        JOB_CONFIRMATION_OVERDUE,
        case_id,
        data={
            "contractor_id": str(contractor_id),
            "quote_id": str(quote_id),
            "approved_at": approved_at.isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

def emit_quote_event(
    db: AsyncSession,
    event_type: str,
    quote_id: uuid.UUID,
    *,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    total: Any = None,
    actor_id: uuid.UUID | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Emit quote.sent / quote.approved / quote.declined / quote.expired."""
    data = {
        "case_id": str(case_id),
        "contractor_id": str(contractor_id),
        "total": _str(total),
    }
    data.update(extra or {})
    return _emit(db, event_type, quote_id, actor_id=actor_id, data=data)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

def emit_counter_event(
    db: AsyncSession,
    event_type: str,
    counter_proposal_id: uuid.UUID,
    *,
    quote_id: uuid.UUID,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    proposed_by_role: str,
    proposed_by: uuid.UUID,
    awaiting_party_role: str | None,
    actor_id: uuid.UUID | None = None,
    proposed_total: Any = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Emit counter.proposed / accepted / declined / countered."""
    return _emit(
        db,
        event_type,
        counter_proposal_id,
        actor_id=actor_id,
        data={
            "quote_id": str(quote_id),
            "case_id": str(case_id),
            "contractor_id": str(contractor_id),
            "proposed_by_role": proposed_by_role,
            "proposed_by": str(proposed_by),
            "awaiting_party_role": awaiting_party_role,
            "proposed_total": _str(proposed_total),
            "reason": reason,
        },
    )
