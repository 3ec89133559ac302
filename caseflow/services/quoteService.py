"""
Quote Ledger -- CASEFLOW-QUOTES-003
===================================

Owns the quote and line-item lifecycle for a (case, contractor) pair.

Lifecycle::

    draft --send--> sent <--counter--> awaiting_response
                      |                      |
                      +--> approved / declined / expired (terminal)

Key rules:
  - At most one live quote (sent / awaiting_response / approved) per
    (case, contractor) pair. A new quote for the pair may only be created
    once every earlier one is declined or expired.
  - Line items are replaced as a set on a full update; single line-item
    edits never recompute the stored quote total, which stays authoritative.
  - Accepting a quote auto-declines every other non-terminal quote for the
    same case in the same transaction, and assigns the quote's contractor
    to the case.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import settings
from caseflow.core.errors import (
    AccessDeniedError,
    AlreadyAssignedError,
    AlreadyExistsError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.counter_proposal import CounterProposal, CounterProposalStatus
from caseflow.models.quote import (
    OPEN_QUOTE_STATUSES,
    TERMINAL_QUOTE_STATUSES,
    Quote,
    QuoteLineItem,
    QuoteStatus,
)
from caseflow.models.user import ContractorCustomer
from caseflow.models.work_order import CaseStatus, WorkOrder
from caseflow.services import caseStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.0001")


def to_money(value: Any) -> Decimal:
    """Round to currency precision (half-up)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_quantity(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def line_item_total(quantity: Any, unit_price: Any) -> Decimal:
    """Total of one line, computed from the quantity and price as stored."""
    return to_money(to_quantity(quantity) * to_money(unit_price))


@dataclass(frozen=True)
class LineItemInput:
    name: str
    unit_price: Decimal
    quantity: Decimal = Decimal("1")
    description: Optional[str] = None
    display_order: Optional[int] = None


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def compute_totals(items: Sequence[LineItemInput], tax_amount: Any = 0) -> QuoteTotals:
    """subtotal = sum of line totals; total = subtotal + tax."""
    subtotal = to_money(sum(
        (line_item_total(item.quantity, item.unit_price) for item in items),
        Decimal("0"),
    ))
    tax = to_money(tax_amount or 0)
    return QuoteTotals(subtotal=subtotal, tax_amount=tax, total=to_money(subtotal + tax))


def _validate_line_item(item: LineItemInput) -> None:
    if not item.name or not item.name.strip():
        raise ValidationError("Line item name is required.")
    if to_quantity(item.quantity) <= 0:
        raise ValidationError(f"Line item '{item.name}' must have a positive quantity.")
    if Decimal(str(item.unit_price)) < 0:
        raise ValidationError(f"Line item '{item.name}' cannot have a negative unit price.")


def _build_line_items(items: Sequence[LineItemInput]) -> list[QuoteLineItem]:
    built: list[QuoteLineItem] = []
    for index, item in enumerate(items):
        _validate_line_item(item)
        built.append(
            QuoteLineItem(
                name=item.name.strip(),
                description=item.description,
                quantity=to_quantity(item.quantity),
                unit_price=to_money(item.unit_price),
                total=line_item_total(item.quantity, item.unit_price),
                display_order=item.display_order if item.display_order is not None else index,
            )
        )
    return built


def _validate_schedule(
    start: Optional[date],
    end: Optional[date],
    estimated_days: Optional[int],
) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("Available end date must not be before the start date.")
    if estimated_days is not None and estimated_days < 1:
        raise ValidationError("Estimated days must be at least 1.")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_quote(db: AsyncSession, quote_id: uuid.UUID) -> Quote:
    quote = await db.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError("Quote", quote_id)
    return quote


async def lock_quote(db: AsyncSession, quote_id: uuid.UUID) -> Quote:
    """Fetch a quote with a row lock; the quote row guards its line items."""
    stmt = (
        select(Quote)
        .where(Quote.id == quote_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    quote = result.scalar_one_or_none()
    if quote is None:
        raise NotFoundError("Quote", quote_id)
    return quote


async def lock_case_quotes(
    db: AsyncSession,
    quote_id: uuid.UUID,
) -> tuple[WorkOrder, Quote, list[Quote]]:
    """Lock the quote's case, then every quote of that case in id order.

    Acceptance changes the case and every competing quote; all of them are
    locked up front in this order.
    """
    case_id = (await get_quote(db, quote_id)).case_id
    case = await caseStore.lock_case(db, case_id)
    stmt = (
        select(Quote)
        .where(Quote.case_id == case_id)
        .order_by(Quote.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    quotes = list((await db.execute(stmt)).scalars().all())
    for quote in quotes:
        if quote.id == quote_id:
            return case, quote, quotes
    raise NotFoundError("Quote", quote_id)


def _ensure_owner(quote: Quote, contractor_id: uuid.UUID) -> None:
    if quote.contractor_id != contractor_id:
        raise AccessDeniedError("Only the contractor who created this quote can modify it.")


def _ensure_editable(quote: Quote) -> None:
    if quote.status in TERMINAL_QUOTE_STATUSES:
        raise InvalidStateError(
            f"Quote is {quote.status.value} and can no longer be edited."
        )


async def _ensure_customer(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    customer_id: uuid.UUID,
) -> None:
    customer = await db.get(ContractorCustomer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    if customer.contractor_id != contractor_id:
        raise AccessDeniedError("Customer does not belong to this contractor.")


async def _find_open_quote_for_pair(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
    *,
    exclude_id: Optional[uuid.UUID] = None,
) -> Optional[Quote]:
    stmt = select(Quote).where(
        Quote.case_id == case_id,
        Quote.contractor_id == contractor_id,
        Quote.status.not_in([QuoteStatus.DECLINED, QuoteStatus.EXPIRED]),
    )
    if exclude_id is not None:
        stmt = stmt.where(Quote.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


@asynccontextmanager
async def _pair_guard(
    db: AsyncSession,
    case_id: uuid.UUID,
    contractor_id: uuid.UUID,
) -> AsyncIterator[None]:
    """Savepoint around writes that may hit the live-pair index.

    Writes must be staged inside the block: ``begin_nested`` flushes pending
    state before the SAVEPOINT is issued.
    """
    try:
        async with db.begin_nested():
            yield
            await db.flush()
    except IntegrityError as exc:
        logger.info(
            "Live quote already exists for case %s / contractor %s",
            case_id,
            contractor_id,
        )
        raise AlreadyExistsError(
            "An active quote already exists for this case and contractor."
        ) from exc


async def _reject_pending_counters(
    db: AsyncSession,
    quote_ids: Sequence[uuid.UUID],
    message: str,
    now: datetime,
) -> None:
    if not quote_ids:
        return
    await db.execute(
        update(CounterProposal)
        .where(
            CounterProposal.quote_id.in_(list(quote_ids)),
            CounterProposal.status == CounterProposalStatus.PENDING,
        )
        .values(
            status=CounterProposalStatus.REJECTED,
            response_message=message,
            responded_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def _close_negotiation(quote: Quote) -> None:
    quote.has_counter_proposal = False
    quote.awaiting_party_role = None


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------

async def create_quote(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    case_id: uuid.UUID,
    *,
    customer_id: Optional[uuid.UUID] = None,
    title: Optional[str] = None,
    notes: Optional[str] = None,
    line_items: Sequence[LineItemInput] = (),
    tax_amount: Any = 0,
    deposit_required: Any = None,
    available_start_date: Optional[date] = None,
    available_end_date: Optional[date] = None,
    estimated_days: Optional[int] = None,
    expires_at: Optional[datetime] = None,
) -> Quote:
    """Create a draft quote for a case.

    Raises:
        NotFoundError: Unknown case or customer.
        AccessDeniedError: The customer belongs to another contractor.
        AlreadyExistsError: A non-terminal quote already exists for the pair.
        ValidationError: Bad line items or date ordering.
    """
    case = await caseStore.get_case(db, case_id)
    if case.status in (CaseStatus.RESOLVED, CaseStatus.CLOSED):
        raise InvalidTransitionError(
            f"Case is {case.status.value} and no longer accepts quotes."
        )
    if customer_id is not None:
        await _ensure_customer(db, contractor_id, customer_id)
    _validate_schedule(available_start_date, available_end_date, estimated_days)

    existing = await _find_open_quote_for_pair(db, case_id, contractor_id)
    if existing is not None:
        raise AlreadyExistsError(
            f"Quote '{existing.id}' is still {existing.status.value} for this case; "
            "it must be declined or expired before a new quote is created."
        )

    items = _build_line_items(line_items)
    totals = compute_totals(line_items, tax_amount)
    quote = Quote(
        case_id=case_id,
        contractor_id=contractor_id,
        customer_id=customer_id,
        title=title or case.title,
        notes=notes,
        status=QuoteStatus.DRAFT,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        total=totals.total,
        deposit_required=to_money(deposit_required) if deposit_required is not None else None,
        available_start_date=available_start_date,
        available_end_date=available_end_date,
        estimated_days=estimated_days,
        expires_at=expires_at,
        line_items=items,
    )
    async with _pair_guard(db, case_id, contractor_id):
        db.add(quote)

    logger.info(
        "Quote %s created for case %s by contractor %s (total=%s)",
        quote.id, case_id, contractor_id, quote.total,
    )
    return quote


_UPDATABLE_FIELDS = (
    "title",
    "notes",
    "deposit_required",
    "available_start_date",
    "available_end_date",
    "estimated_days",
    "expires_at",
)


async def update_quote(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    *,
    changes: Optional[dict[str, Any]] = None,
    line_items: Optional[Sequence[LineItemInput]] = None,
) -> Quote:
    """Apply a full or partial update to a non-terminal quote.

    When ``line_items`` is given the existing items are replaced as a set and
    subtotal/total are recomputed; a ``tax_amount`` change alone recomputes
    the total from the stored subtotal.
    """
    quote = await lock_quote(db, quote_id)
    _ensure_owner(quote, contractor_id)
    _ensure_editable(quote)
    changes = dict(changes or {})

    if changes.get("customer_id") is not None:
        await _ensure_customer(db, contractor_id, changes["customer_id"])
        quote.customer_id = changes["customer_id"]

    for field in _UPDATABLE_FIELDS:
        if field in changes:
            value = changes[field]
            if field == "deposit_required" and value is not None:
                value = to_money(value)
            setattr(quote, field, value)
    _validate_schedule(quote.available_start_date, quote.available_end_date, quote.estimated_days)

    tax_amount = changes.get("tax_amount", quote.tax_amount)
    if line_items is not None:
        quote.line_items = _build_line_items(line_items)
        totals = compute_totals(line_items, tax_amount)
        quote.subtotal = totals.subtotal
        quote.tax_amount = totals.tax_amount
        quote.total = totals.total
    elif "tax_amount" in changes:
        quote.tax_amount = to_money(tax_amount or 0)
        quote.total = to_money(quote.subtotal + quote.tax_amount)

    await db.flush()
    logger.info("Quote %s updated by contractor %s", quote.id, contractor_id)
    return quote


async def delete_quote(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> None:
    """Delete a quote and its line items. Approved quotes are kept."""
    quote = await lock_quote(db, quote_id)
    _ensure_owner(quote, contractor_id)
    if quote.status == QuoteStatus.APPROVED:
        raise InvalidStateError("An approved quote cannot be deleted.")
    await db.execute(
        CounterProposal.__table__.delete().where(CounterProposal.quote_id == quote.id)
    )
    await db.delete(quote)
    await db.flush()
    logger.info("Quote %s deleted by contractor %s", quote_id, contractor_id)


# ---------------------------------------------------------------------------
# Single line-item edits (stored quote total is left untouched)
# ---------------------------------------------------------------------------

async def add_line_item(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    item: LineItemInput,
) -> QuoteLineItem:
    quote = await lock_quote(db, quote_id)
    _ensure_owner(quote, contractor_id)
    _ensure_editable(quote)
    _validate_line_item(item)

    order = item.display_order
    if order is None:
        order = max((li.display_order for li in quote.line_items), default=-1) + 1
    line = QuoteLineItem(
        quote_id=quote.id,
        name=item.name.strip(),
        description=item.description,
        quantity=to_quantity(item.quantity),
        unit_price=to_money(item.unit_price),
        total=line_item_total(item.quantity, item.unit_price),
        display_order=order,
    )
    quote.line_items.append(line)
    await db.flush()
    return line


async def _get_owned_line_item(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
) -> tuple[Quote, QuoteLineItem]:
    quote = await lock_quote(db, quote_id)
    _ensure_owner(quote, contractor_id)
    _ensure_editable(quote)
    for line in quote.line_items:
        if line.id == item_id:
            return quote, line
    raise NotFoundError("Line item", item_id)


async def update_line_item(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    changes: dict[str, Any],
) -> QuoteLineItem:
    _, line = await _get_owned_line_item(db, contractor_id, quote_id, item_id)
    for field in ("name", "description", "display_order"):
        if field in changes:
            setattr(line, field, changes[field])
    if "quantity" in changes:
        line.quantity = to_quantity(changes["quantity"])
    if "unit_price" in changes:
        line.unit_price = to_money(changes["unit_price"])
    _validate_line_item(
        LineItemInput(name=line.name, unit_price=line.unit_price, quantity=line.quantity)
    )
    line.total = line_item_total(line.quantity, line.unit_price)
    await db.flush()
    return line


async def delete_line_item(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
) -> None:
    quote, line = await _get_owned_line_item(db, contractor_id, quote_id, item_id)
    quote.line_items.remove(line)
    await db.flush()


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SentQuote:
    quote: Quote
    approval_link: str


def approval_link(quote_id: uuid.UUID, token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/quote-approval/{quote_id}/{token}"


def _stamp_sent(quote: Quote, method: str, now: datetime) -> str:
    token = secrets.token_urlsafe(32)
    quote.status = QuoteStatus.SENT
    quote.sent_method = method
    quote.sent_at = now
    quote.approval_token = token
    if quote.expires_at is None:
        quote.expires_at = now + timedelta(days=settings.quote_validity_days)
    return token


async def send_quote(
    db: AsyncSession,
    contractor_id: uuid.UUID,
    quote_id: uuid.UUID,
    method: str = "email",
) -> SentQuote:
    """Move a draft quote to ``sent`` and mint its single-use approval token.

    Raises:
        InvalidStateError: The quote is not a draft.
        AlreadyExistsError: Another live quote exists for the pair.
    """
    quote = await lock_quote(db, quote_id)
    _ensure_owner(quote, contractor_id)
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidStateError(
            f"Only draft quotes can be sent (quote is {quote.status.value})."
        )

    now = utcnow()
    async with _pair_guard(db, quote.case_id, quote.contractor_id):
        token = _stamp_sent(quote, method, now)

    caseEvents.emit_quote_event(
        db,
        caseEvents.QUOTE_SENT,
        quote.id,
        case_id=quote.case_id,
        contractor_id=quote.contractor_id,
        total=quote.total,
        actor_id=contractor_id,
        extra={"method": method},
    )
    logger.info("Quote %s sent via %s", quote.id, method)
    return SentQuote(quote=quote, approval_link=approval_link(quote.id, token))


async def create_marketplace_quote(
    db: AsyncSession,
    case: WorkOrder,
    contractor_id: uuid.UUID,
    *,
    total: Any,
    available_start_date: Optional[date] = None,
    available_end_date: Optional[date] = None,
    estimated_days: Optional[int] = None,
    notes: Optional[str] = None,
) -> Optional[Quote]:
    """Create a ``sent`` quote from the price hint given on marketplace accept.

    Returns ``None`` when the contractor already has a non-terminal quote for
    the case; that quote stands.
    """
    _validate_schedule(available_start_date, available_end_date, estimated_days)
    existing = await _find_open_quote_for_pair(db, case.id, contractor_id)
    if existing is not None:
        logger.info(
            "Contractor %s already has quote %s for case %s, skipping price hint",
            contractor_id, existing.id, case.id,
        )
        return None

    amount = to_money(total)
    if amount < 0:
        raise ValidationError("Quoted price cannot be negative.")
    quote = Quote(
        case_id=case.id,
        contractor_id=contractor_id,
        title=case.title,
        notes=notes,
        subtotal=amount,
        tax_amount=Decimal("0.00"),
        total=amount,
        available_start_date=available_start_date,
        available_end_date=available_end_date,
        estimated_days=estimated_days,
        line_items=[],
    )
    async with _pair_guard(db, case.id, contractor_id):
        _stamp_sent(quote, "marketplace", utcnow())
        db.add(quote)

    caseEvents.emit_quote_event(
        db,
        caseEvents.QUOTE_SENT,
        quote.id,
        case_id=case.id,
        contractor_id=contractor_id,
        total=quote.total,
        actor_id=contractor_id,
        extra={"method": "marketplace"},
    )
    return quote


# ---------------------------------------------------------------------------
# Accept / decline
# ---------------------------------------------------------------------------

async def _assign_case_for_quote(
    db: AsyncSession,
    case: WorkOrder,
    quote: Quote,
    now: datetime,
) -> None:
    """Assign the quote's contractor to the already locked case."""
    if case.status in (CaseStatus.RESOLVED, CaseStatus.CLOSED):
        raise InvalidTransitionError(
            f"Case is {case.status.value}; its quotes can no longer be accepted."
        )
    if case.assigned_contractor_id is not None and case.assigned_contractor_id != quote.contractor_id:
        raise AlreadyAssignedError(case.id)

    values: dict[str, Any] = {"estimated_cost": quote.total, "updated_at": now}
    if quote.estimated_days is not None:
        values["estimated_days"] = quote.estimated_days

    if case.assigned_contractor_id is None:
        if case.status != CaseStatus.NEW:
            raise InvalidTransitionError(
                f"Cannot assign a contractor to a case in '{case.status.value}' status."
            )
        values.update(
            status=CaseStatus.IN_REVIEW,
            assigned_contractor_id=quote.contractor_id,
            assigned_at=now,
        )
        written = await caseStore.update_case_if(
            db,
            case.id,
            expected_statuses=[CaseStatus.NEW],
            require_unassigned=True,
            values=values,
        )
        if not written:
            raise AlreadyAssignedError(case.id)
        caseStore.add_case_event(
            db,
            case.id,
            "status_change",
            f"Quote accepted; case assigned to contractor {quote.contractor_id}.",
            metadata={
                "old_status": CaseStatus.NEW.value,
                "new_status": CaseStatus.IN_REVIEW.value,
                "quote_id": str(quote.id),
            },
        )
    else:
        await caseStore.update_case_if(
            db,
            case.id,
            expected_statuses=[case.status],
            values=values,
        )
    await caseStore.reload_case(db, case.id)


async def accept_quote(
    db: AsyncSession,
    quote_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
) -> Quote:
    """Approve a quote and auto-decline every competing quote for the case.

    Raises:
        InvalidStateError: The quote is not sent / awaiting_response.
        AlreadyAssignedError: The case belongs to another contractor.
    """
    case, quote, case_quotes = await lock_case_quotes(db, quote_id)
    if quote.status not in OPEN_QUOTE_STATUSES:
        raise InvalidStateError(
            f"Only sent quotes can be accepted (quote is {quote.status.value})."
        )
    now = utcnow()

    await _assign_case_for_quote(db, case, quote, now)

    siblings = [
        q for q in case_quotes
        if q.id != quote.id and q.status not in TERMINAL_QUOTE_STATUSES
    ]
    for sibling in siblings:
        sibling.status = QuoteStatus.DECLINED
        sibling.declined_at = now
        sibling.decline_reason = "Another quote was accepted for this work order."
        _close_negotiation(sibling)

    quote.status = QuoteStatus.APPROVED
    quote.approved_at = now
    _close_negotiation(quote)

    await _reject_pending_counters(
        db,
        [quote.id] + [s.id for s in siblings],
        "Quote decision made",
        now,
    )
    await db.flush()

    caseEvents.emit_quote_event(
        db,
        caseEvents.QUOTE_APPROVED,
        quote.id,
        case_id=quote.case_id,
        contractor_id=quote.contractor_id,
        total=quote.total,
        actor_id=actor_id,
    )
    for sibling in siblings:
        caseEvents.emit_quote_event(
            db,
            caseEvents.QUOTE_DECLINED,
            sibling.id,
            case_id=sibling.case_id,
            contractor_id=sibling.contractor_id,
            total=sibling.total,
            actor_id=actor_id,
            extra={"reason": sibling.decline_reason, "auto": True},
        )
    logger.info(
        "Quote %s approved for case %s (%d competing quotes declined)",
        quote.id, quote.case_id, len(siblings),
    )
    return quote


async def accept_quote_by_token(
    db: AsyncSession,
    quote_id: uuid.UUID,
    token: str,
) -> Quote:
    """Customer approval through the emailed link; the token is single-use."""
    _, quote, _ = await lock_case_quotes(db, quote_id)
    if not quote.approval_token or not secrets.compare_digest(
        quote.approval_token.encode(), token.encode(),
    ):
        raise AccessDeniedError("This approval link is invalid or has already been used.")
    if quote.expires_at is not None and quote.expires_at < utcnow():
        raise InvalidStateError("This quote has expired.")
    quote = await accept_quote(db, quote_id)
    quote.approval_token = None
    await db.flush()
    return quote


async def decline_quote(
    db: AsyncSession,
    quote_id: uuid.UUID,
    reason: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Quote:
    """Decline one quote; other quotes for the case are untouched."""
    quote = await lock_quote(db, quote_id)
    if quote.status not in OPEN_QUOTE_STATUSES:
        raise InvalidStateError(
            f"Only sent quotes can be declined (quote is {quote.status.value})."
        )
    now = utcnow()
    quote.status = QuoteStatus.DECLINED
    quote.declined_at = now
    quote.decline_reason = reason
    _close_negotiation(quote)
    await _reject_pending_counters(db, [quote.id], "Quote declined", now)
    await db.flush()

    caseEvents.emit_quote_event(
        db,
        caseEvents.QUOTE_DECLINED,
        quote.id,
        case_id=quote.case_id,
        contractor_id=quote.contractor_id,
        total=quote.total,
        actor_id=actor_id,
        extra={"reason": reason, "auto": False},
    )
    logger.info("Quote %s declined", quote.id)
    return quote


# ---------------------------------------------------------------------------
# Sweep and read views
# ---------------------------------------------------------------------------

async def expire_quotes(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Move open quotes whose ``expires_at`` has passed to ``expired``."""
    now = now or utcnow()
    stmt = (
        select(Quote)
        .where(
            Quote.status.in_(list(OPEN_QUOTE_STATUSES)),
            Quote.expires_at.is_not(None),
            Quote.expires_at < now,
        )
        .order_by(Quote.expires_at)
        .with_for_update(skip_locked=True)
    )
    expired = list((await db.execute(stmt)).scalars().all())
    if not expired:
        return 0

    for quote in expired:
        quote.status = QuoteStatus.EXPIRED
        _close_negotiation(quote)
    await _reject_pending_counters(db, [q.id for q in expired], "Quote expired", now)
    await db.flush()

    for quote in expired:
        caseEvents.emit_quote_event(
            db,
            caseEvents.QUOTE_EXPIRED,
            quote.id,
            case_id=quote.case_id,
            contractor_id=quote.contractor_id,
            total=quote.total,
        )
    logger.info("Expired %d quotes", len(expired))
    return len(expired)


@dataclass(frozen=True)
class QuoteComparison:
    quote: Quote
    latest_counter: Optional[CounterProposal]


async def list_case_quotes(db: AsyncSession, case_id: uuid.UUID) -> list[QuoteComparison]:
    """Every quote for a case with its line items and latest counter-proposal."""
    await caseStore.get_case(db, case_id)
    quotes = list((
        await db.execute(
            select(Quote).where(Quote.case_id == case_id).order_by(Quote.created_at.asc())
        )
    ).scalars().all())
    if not quotes:
        return []

    counters = (
        await db.execute(
            select(CounterProposal)
            .where(CounterProposal.quote_id.in_([q.id for q in quotes]))
            .order_by(CounterProposal.created_at.desc())
        )
    ).scalars().all()
    latest: dict[uuid.UUID, CounterProposal] = {}
    for counter in counters:
        latest.setdefault(counter.quote_id, counter)

    return [QuoteComparison(quote=q, latest_counter=latest.get(q.id)) for q in quotes]
