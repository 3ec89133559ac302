"""
Marketplace Distributor -- CASEFLOW-MARKETPLACE-002
===================================================

Filters and ranks unassigned, posted cases for a contractor and handles the
contractor-side marketplace actions.

ELIGIBILITY (must pass ALL):
  - Case is New, posted, and has no assigned contractor
  - Contractor profile is active
  - Case category is in the contractor's specialties (empty = all)
  - The contractor has not dismissed the case

RANKING:
  1. Urgent-class priorities, then high, then normal
  2. Most recently posted first

ACCEPTANCE is first-writer-wins through a single conditional UPDATE; the
loser of a race gets ``AlreadyAssignedError``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import settings
from caseflow.core.errors import AlreadyAssignedError, InvalidTransitionError, NotFoundError
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.quote import Quote, QuoteStatus
from caseflow.models.user import ContractorProfile, User
from caseflow.models.work_order import (
    URGENT_PRIORITIES,
    CaseEvent,
    CasePriority,
    CaseStatus,
    ContractorDismissal,
    WorkOrder,
)
from caseflow.services import caseStore, quoteService

logger = logging.getLogger(__name__)

NUDGE_EVENT_TYPE = "confirmation_nudge"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricingHint:
    """Optional price the contractor attaches when accepting a case."""
    price: Optional[Decimal] = None
    price_tbd: bool = False
    available_start_date: Optional[date] = None
    available_end_date: Optional[date] = None
    estimated_days: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class AcceptResult:
    case: WorkOrder
    quote: Optional[Quote] = None


@dataclass(frozen=True)
class DismissResult:
    dismissal: ContractorDismissal
    already_dismissed: bool


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def priority_rank(priority: CasePriority) -> int:
    """0 for urgent-class, 1 for high, 2 for normal."""
    if priority in URGENT_PRIORITIES:
        return 0
    if priority == CasePriority.HIGH:
        return 1
    return 2


def rank_cases(cases: list[WorkOrder]) -> list[WorkOrder]:
    def _posted_ts(case: WorkOrder) -> float:
        return case.posted_at.timestamp() if case.posted_at else 0.0

    return sorted(cases, key=lambda c: (priority_rank(c.priority), -_posted_ts(c)))


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

async def list_eligible(db: AsyncSession, contractor_id: uuid.UUID) -> list[WorkOrder]:
    """Posted, unassigned cases this contractor may accept, best first."""
    profile = (
        await db.execute(select(ContractorProfile).where(ContractorProfile.user_id == contractor_id))
    ).scalar_one_or_none()
    if profile is None or not profile.is_active:
        logger.info("Contractor %s has no active profile; marketplace is empty", contractor_id)
        return []

    dismissed = select(ContractorDismissal.case_id).where(
        ContractorDismissal.contractor_id == contractor_id
    )
    stmt = select(WorkOrder).where(
        WorkOrder.status == CaseStatus.NEW,
        WorkOrder.assigned_contractor_id.is_(None),
        WorkOrder.posted_at.is_not(None),
        WorkOrder.id.not_in(dismissed),
    )
    specialties = [s.strip().lower() for s in (profile.specialties or []) if s and s.strip()]
    if specialties:
        stmt = stmt.where(func.lower(WorkOrder.category).in_(specialties))

    cases = list((await db.execute(stmt)).scalars().all())
    return rank_cases(cases)


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------

async def _diagnose_lost_accept(db: AsyncSession, case_id: uuid.UUID) -> None:
    """Explain why the conditional accept wrote nothing."""
    case = await db.get(WorkOrder, case_id, populate_existing=True)
    if case is None:
        raise NotFoundError("Case", case_id)
    if case.assigned_contractor_id is not None:
        raise AlreadyAssignedError(case_id)
    if case.posted_at is None:
        raise InvalidTransitionError("Case is not listed on the marketplace.")
    raise InvalidTransitionError(
        f"Case in '{case.status.value}' status cannot be accepted."
    )


async def accept(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
    pricing: Optional[PricingHint] = None,
) -> AcceptResult:
    """Claim a marketplace case for a contractor.

    The claim is a single compare-and-set (status New, unassigned, posted ->
    In Review, assigned). With a priced hint a ``sent`` quote is created for
    the pair; ``price_tbd`` leaves quoting for later.

    Raises:
        AlreadyAssignedError: Another contractor won the case.
        NotFoundError: Unknown case or contractor.
    """
    if await db.get(User, contractor_id) is None:
        raise NotFoundError("Contractor", contractor_id)

    now = utcnow()
    values = {
        "status": CaseStatus.IN_REVIEW,
        "assigned_contractor_id": contractor_id,
        "assigned_at": now,
        "updated_at": now,
    }
    if pricing is not None and pricing.estimated_days is not None:
        values["estimated_days"] = pricing.estimated_days

    won = await caseStore.update_case_if(
        db,
        case_id,
        expected_statuses=[CaseStatus.NEW],
        require_unassigned=True,
        require_posted=True,
        values=values,
    )
    if not won:
        logger.info("Contractor %s lost marketplace accept on case %s", contractor_id, case_id)
        await _diagnose_lost_accept(db, case_id)

    case = await caseStore.reload_case(db, case_id)
    caseStore.add_case_event(
        db,
        case.id,
        "status_change",
        "Case accepted from the marketplace.",
        actor_id=contractor_id,
        metadata={
            "old_status": CaseStatus.NEW.value,
            "new_status": CaseStatus.IN_REVIEW.value,
            "contractor_id": str(contractor_id),
        },
    )

    quote: Optional[Quote] = None
    price_tbd = pricing is None or pricing.price_tbd or pricing.price is None
    if not price_tbd:
        quote = await quoteService.create_marketplace_quote(
            db,
            case,
            contractor_id,
            total=pricing.price,
            available_start_date=pricing.available_start_date,
            available_end_date=pricing.available_end_date,
            estimated_days=pricing.estimated_days,
            notes=pricing.notes,
        )

    caseEvents.emit_case_accepted(
        db,
        case.id,
        contractor_id,
        quote_id=quote.id if quote else None,
        price_tbd=price_tbd,
    )
    logger.info(
        "Case %s: %s -> %s (contractor %s)",
        case.id, CaseStatus.NEW.value, CaseStatus.IN_REVIEW.value, contractor_id,
    )
    return AcceptResult(case=case, quote=quote)


# ---------------------------------------------------------------------------
# Dismissals
# ---------------------------------------------------------------------------

async def _find_dismissal(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
) -> Optional[ContractorDismissal]:
    stmt = select(ContractorDismissal).where(
        ContractorDismissal.contractor_id == contractor_id,
        ContractorDismissal.case_id == case_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def dismiss(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
    reason: Optional[str] = None,
) -> DismissResult:
    """Hide a case from this contractor's marketplace. Idempotent."""
    await caseStore.get_case(db, case_id)

    existing = await _find_dismissal(db, contractor_id, case_id)
    if existing is not None:
        return DismissResult(dismissal=existing, already_dismissed=True)

    dismissal = ContractorDismissal(
        contractor_id=contractor_id,
        case_id=case_id,
        reason=reason,
        dismissed_at=utcnow(),
    )
    try:
        async with db.begin_nested():
            db.add(dismissal)
            await db.flush()
    except IntegrityError:
        # A concurrent dismiss of the same pair won
        existing = await _find_dismissal(db, contractor_id, case_id)
        if existing is None:
            raise
        return DismissResult(dismissal=existing, already_dismissed=True)

    logger.info("Contractor %s dismissed case %s", contractor_id, case_id)
    return DismissResult(dismissal=dismissal, already_dismissed=False)


async def undo_dismiss(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
) -> bool:
    """Remove a dismissal; returns False when there was nothing to undo."""
    result = await db.execute(
        delete(ContractorDismissal).where(
            ContractorDismissal.contractor_id == contractor_id,
            ContractorDismissal.case_id == case_id,
        )
    )
    removed = result.rowcount > 0
    if removed:
        logger.info("Contractor %s restored case %s", contractor_id, case_id)
    return removed


async def list_dismissed(
    db: AsyncSession,
    contractor_id: uuid.UUID,
) -> list[tuple[ContractorDismissal, WorkOrder]]:
    stmt = (
        select(ContractorDismissal, WorkOrder)
        .join(WorkOrder, WorkOrder.id == ContractorDismissal.case_id)
        .where(ContractorDismissal.contractor_id == contractor_id)
        .order_by(ContractorDismissal.dismissed_at.desc())
    )
    return [(row[0], row[1]) for row in (await db.execute(stmt)).all()]


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

async def purge_stale_dismissals(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Delete dismissals older than the retention window."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.dismissal_retention_days)
    result = await db.execute(
        delete(ContractorDismissal).where(ContractorDismissal.dismissed_at < cutoff)
    )
    if result.rowcount:
        logger.info("Purged %d dismissals older than %s", result.rowcount, cutoff.date())
    return result.rowcount or 0


async def nudge_unconfirmed_jobs(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Emit ``job.confirmation_overdue`` for approved quotes whose case is
    still In Review after the nudge window. Each case is nudged once."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.confirmation_nudge_hours)
    already_nudged = select(CaseEvent.case_id).where(CaseEvent.event_type == NUDGE_EVENT_TYPE)
    stmt = (
        select(Quote, WorkOrder)
        .join(WorkOrder, WorkOrder.id == Quote.case_id)
        .where(
            Quote.status == QuoteStatus.APPROVED,
            Quote.approved_at.is_not(None),
            Quote.approved_at < cutoff,
            WorkOrder.status == CaseStatus.IN_REVIEW,
            WorkOrder.assigned_contractor_id == Quote.contractor_id,
            WorkOrder.id.not_in(already_nudged),
        )
    )
    rows = (await db.execute(stmt)).all()
    for quote, case in rows:
        caseStore.add_case_event(
            db,
            case.id,
            NUDGE_EVENT_TYPE,
            "Contractor reminded to confirm the job schedule.",
            metadata={"quote_id": str(quote.id)},
        )
        caseEvents.emit_confirmation_overdue(
            db, case.id, quote.contractor_id, quote.id, quote.approved_at,
        )
    if rows:
        await db.flush()
        logger.info("Nudged %d contractors about unconfirmed jobs", len(rows))
    return len(rows)
