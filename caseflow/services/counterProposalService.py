"""
Counter-Proposal Negotiator -- CASEFLOW-QUOTES-004
==================================================

Back-and-forth revision rounds on a sent quote between the landlord and the
quoting contractor.

Flow::

    propose --> pending --accept--> accepted   (terms applied, quote -> sent)
                   |----decline--> rejected    (original terms stand)
                   +----counter--> rejected + new pending from the other side

Rules:
  - At most one ``pending`` counter-proposal per quote. A new round can only
    start once the other party has responded.
  - A party cannot respond to its own proposal.
  - History is append-only: a re-counter never mutates the previous row's
    terms, it rejects it and inserts a new one.
  - Lock order is always quote row first, then counter-proposal row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import (
    AccessDeniedError,
    ConflictingRoundError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.counter_proposal import CounterProposal, CounterProposalStatus
from caseflow.models.quote import OPEN_QUOTE_STATUSES, PartyRole, Quote, QuoteStatus
from caseflow.models.work_order import WorkOrder
from caseflow.services import quoteService

logger = logging.getLogger(__name__)

RECOUNTER_REASON = "Counter-offered with new terms"


@dataclass(frozen=True)
class CounterTerms:
    """Proposed changes; ``None`` fields leave the quote's value as is."""
    proposed_total: Optional[Decimal] = None
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    scope_changes: Optional[str] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _validate_terms(terms: CounterTerms) -> None:
    if (
        terms.proposed_total is None
        and terms.proposed_start_date is None
        and terms.proposed_end_date is None
        and not (terms.scope_changes or "").strip()
    ):
        raise ValidationError(
            "A counter-proposal must change the price, the dates or the scope."
        )
    if terms.proposed_total is not None and Decimal(str(terms.proposed_total)) < 0:
        raise ValidationError("Proposed total cannot be negative.")
    if (
        terms.proposed_start_date is not None
        and terms.proposed_end_date is not None
        and terms.proposed_end_date < terms.proposed_start_date
    ):
        raise ValidationError("Proposed end date must not be before the start date.")


def _ensure_party(quote: Quote, actor_id: uuid.UUID, role: PartyRole) -> None:
    if role == PartyRole.CONTRACTOR and actor_id != quote.contractor_id:
        raise AccessDeniedError("Only the quoting contractor can negotiate on this quote.")


def _ensure_open(quote: Quote) -> None:
    if quote.status not in OPEN_QUOTE_STATUSES:
        raise InvalidStateError(
            f"Counter-proposals require a sent quote (quote is {quote.status.value})."
        )


async def _lock_pending_for_quote(db: AsyncSession, quote_id: uuid.UUID) -> Optional[CounterProposal]:
    stmt = (
        select(CounterProposal)
        .where(
            CounterProposal.quote_id == quote_id,
            CounterProposal.status == CounterProposalStatus.PENDING,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _lock_for_response(
    db: AsyncSession,
    counter_id: uuid.UUID,
    responder_id: uuid.UUID,
    responder_role: PartyRole,
) -> tuple[Quote, CounterProposal]:
    """Lock the parent quote, then the counter-proposal, and check the
    responder is the other party of a still-pending round."""
    unlocked = await db.get(CounterProposal, counter_id)
    if unlocked is None:
        raise NotFoundError("Counter-proposal", counter_id)

    quote = await quoteService.lock_quote(db, unlocked.quote_id)
    stmt = (
        select(CounterProposal)
        .where(CounterProposal.id == counter_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    counter = (await db.execute(stmt)).scalar_one()

    if counter.status != CounterProposalStatus.PENDING:
        raise InvalidStateError(
            f"Counter-proposal has already been {counter.status.value}."
        )
    if counter.proposed_by_role == responder_role:
        raise InvalidTransitionError("You cannot respond to your own counter-proposal.")
    _ensure_party(quote, responder_id, responder_role)
    _ensure_open(quote)
    return quote, counter


def _new_counter(
    quote: Quote,
    proposer_id: uuid.UUID,
    proposer_role: PartyRole,
    terms: CounterTerms,
) -> CounterProposal:
    return CounterProposal(
        quote_id=quote.id,
        proposed_by=proposer_id,
        proposed_by_role=proposer_role,
        proposed_total=(
            quoteService.to_money(terms.proposed_total)
            if terms.proposed_total is not None else None
        ),
        proposed_start_date=terms.proposed_start_date,
        proposed_end_date=terms.proposed_end_date,
        scope_changes=terms.scope_changes,
        message=terms.message,
        status=CounterProposalStatus.PENDING,
    )


def _open_round(quote: Quote, proposer_role: PartyRole) -> None:
    """Flip the ball to the other party."""
    quote.has_counter_proposal = True
    quote.counter_proposal_count = (quote.counter_proposal_count or 0) + 1
    quote.awaiting_party_role = proposer_role.opposite
    if proposer_role == PartyRole.LANDLORD:
        quote.status = QuoteStatus.AWAITING_RESPONSE


def _close_round(quote: Quote) -> None:
    """Terms settled (either way): the other party must re-accept the quote."""
    quote.status = QuoteStatus.SENT
    quote.has_counter_proposal = False
    quote.awaiting_party_role = None


async def _insert_pending(db: AsyncSession, quote: Quote, counter: CounterProposal) -> None:
    try:
        async with db.begin_nested():
            db.add(counter)
            await db.flush()
    except IntegrityError as exc:
        logger.info("Concurrent counter-proposal round on quote %s", quote.id)
        raise ConflictingRoundError(quote.id) from exc


def _emit(
    db: AsyncSession,
    event_type: str,
    quote: Quote,
    counter: CounterProposal,
    actor_id: uuid.UUID,
    *,
    reason: Optional[str] = None,
) -> None:
    caseEvents.emit_counter_event(
        db,
        event_type,
        counter.id,
        quote_id=quote.id,
        case_id=quote.case_id,
        contractor_id=quote.contractor_id,
        proposed_by_role=counter.proposed_by_role.value,
        proposed_by=counter.proposed_by,
        awaiting_party_role=quote.awaiting_party_role.value if quote.awaiting_party_role else None,
        actor_id=actor_id,
        proposed_total=counter.proposed_total,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def propose(
    db: AsyncSession,
    quote_id: uuid.UUID,
    proposer_id: uuid.UUID,
    proposer_role: PartyRole,
    terms: CounterTerms,
) -> CounterProposal:
    """Start a new negotiation round on a sent quote.

    Raises:
        ConflictingRoundError: A pending counter-proposal already exists.
        InvalidStateError: The quote is not sent / awaiting_response.
    """
    _validate_terms(terms)
    quote = await quoteService.lock_quote(db, quote_id)
    _ensure_party(quote, proposer_id, proposer_role)
    _ensure_open(quote)

    if await _lock_pending_for_quote(db, quote.id) is not None:
        raise ConflictingRoundError(quote.id)

    counter = _new_counter(quote, proposer_id, proposer_role, terms)
    await _insert_pending(db, quote, counter)
    _open_round(quote, proposer_role)
    await db.flush()

    _emit(db, caseEvents.COUNTER_PROPOSED, quote, counter, proposer_id)
    logger.info(
        "Counter-proposal %s on quote %s by %s (round %d)",
        counter.id, quote.id, proposer_role.value, quote.counter_proposal_count,
    )
    return counter


async def accept(
    db: AsyncSession,
    counter_id: uuid.UUID,
    responder_id: uuid.UUID,
    responder_role: PartyRole,
) -> CounterProposal:
    """Accept the other party's terms; non-null fields overwrite the quote."""
    quote, counter = await _lock_for_response(db, counter_id, responder_id, responder_role)
    now = utcnow()

    counter.status = CounterProposalStatus.ACCEPTED
    counter.responded_by = responder_id
    counter.responded_at = now

    if counter.proposed_total is not None:
        quote.total = counter.proposed_total
    if counter.proposed_start_date is not None:
        quote.available_start_date = counter.proposed_start_date
    if counter.proposed_end_date is not None:
        quote.available_end_date = counter.proposed_end_date
    _close_round(quote)
    await db.flush()

    _emit(db, caseEvents.COUNTER_ACCEPTED, quote, counter, responder_id)
    logger.info("Counter-proposal %s accepted; quote %s total=%s", counter.id, quote.id, quote.total)
    return counter


async def decline(
    db: AsyncSession,
    counter_id: uuid.UUID,
    responder_id: uuid.UUID,
    responder_role: PartyRole,
    reason: Optional[str] = None,
) -> CounterProposal:
    """Reject the other party's terms; the quote's terms stand."""
    quote, counter = await _lock_for_response(db, counter_id, responder_id, responder_role)

    counter.status = CounterProposalStatus.REJECTED
    counter.responded_by = responder_id
    counter.responded_at = utcnow()
    counter.response_message = reason
    _close_round(quote)
    await db.flush()

    _emit(db, caseEvents.COUNTER_DECLINED, quote, counter, responder_id, reason=reason)
    logger.info("Counter-proposal %s declined on quote %s", counter.id, quote.id)
    return counter


async def counter(
    db: AsyncSession,
    counter_id: uuid.UUID,
    responder_id: uuid.UUID,
    responder_role: PartyRole,
    terms: CounterTerms,
) -> CounterProposal:
    """Answer a pending proposal with new terms.

    The prior proposal is rejected with an automatic reason and a new pending
    proposal from the responder is appended. Quote status only changes when
    the landlord is the one countering.
    """
    _validate_terms(terms)
    quote, prior = await _lock_for_response(db, counter_id, responder_id, responder_role)

    prior.status = CounterProposalStatus.REJECTED
    prior.responded_by = responder_id
    prior.responded_at = utcnow()
    prior.response_message = RECOUNTER_REASON
    # The rejection must reach the index before the new pending row does
    await db.flush()

    replacement = _new_counter(quote, responder_id, responder_role, terms)
    await _insert_pending(db, quote, replacement)
    _open_round(quote, responder_role)
    await db.flush()

    _emit(db, caseEvents.COUNTER_COUNTERED, quote, replacement, responder_id)
    logger.info(
        "Counter-proposal %s replaced by %s on quote %s (round %d)",
        prior.id, replacement.id, quote.id, quote.counter_proposal_count,
    )
    return replacement


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

async def list_pending_for_contractor(
    db: AsyncSession,
    contractor_id: uuid.UUID,
) -> list[CounterProposal]:
    """Landlord proposals waiting on this contractor."""
    stmt = (
        select(CounterProposal)
        .join(Quote, Quote.id == CounterProposal.quote_id)
        .where(
            Quote.contractor_id == contractor_id,
            CounterProposal.status == CounterProposalStatus.PENDING,
            CounterProposal.proposed_by_role == PartyRole.LANDLORD,
        )
        .order_by(CounterProposal.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_pending_for_landlord(
    db: AsyncSession,
    landlord_id: uuid.UUID,
) -> list[CounterProposal]:
    """Contractor proposals on cases reported by this landlord."""
    stmt = (
        select(CounterProposal)
        .join(Quote, Quote.id == CounterProposal.quote_id)
        .join(WorkOrder, WorkOrder.id == Quote.case_id)
        .where(
            WorkOrder.reporter_user_id == landlord_id,
            CounterProposal.status == CounterProposalStatus.PENDING,
            CounterProposal.proposed_by_role == PartyRole.CONTRACTOR,
        )
        .order_by(CounterProposal.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def negotiation_history(db: AsyncSession, quote_id: uuid.UUID) -> list[CounterProposal]:
    """Every round on a quote, oldest first."""
    await quoteService.get_quote(db, quote_id)
    stmt = (
        select(CounterProposal)
        .where(CounterProposal.quote_id == quote_id)
        .order_by(CounterProposal.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
