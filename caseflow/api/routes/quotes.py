"""
Quote Ledger API Routes
=======================

  POST   /api/v1/quotes                              -- Create a draft quote
  GET    /api/v1/quotes/{quote_id}                   -- Quote with line items
  PATCH  /api/v1/quotes/{quote_id}                   -- Update a quote
  DELETE /api/v1/quotes/{quote_id}                   -- Delete a quote
  POST   /api/v1/quotes/{quote_id}/line-items        -- Add one line item
  PATCH  /api/v1/quotes/{quote_id}/line-items/{id}   -- Edit one line item
  DELETE /api/v1/quotes/{quote_id}/line-items/{id}   -- Remove one line item
  POST   /api/v1/quotes/{quote_id}/send              -- Send to the landlord
  POST   /api/v1/quotes/{quote_id}/accept            -- Landlord accepts
  POST   /api/v1/quotes/{quote_id}/decline           -- Landlord declines
  POST   /api/v1/quotes/{quote_id}/approve/{token}   -- Approval-link accept
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps import CurrentActor, DBSession, require_role, unwrap
from caseflow.api.schemas.quote import (
    CounterProposalResponse,
    CreateQuoteRequest,
    DeclineRequest,
    LineItemInput,
    LineItemResponse,
    LineItemUpdate,
    QuoteActionResponse,
    QuoteComparisonResponse,
    QuoteResponse,
    SendQuoteRequest,
    SendQuoteResponse,
    UpdateQuoteRequest,
)
from caseflow.core.results import run_operation
from caseflow.models.quote import Quote
from caseflow.services import quoteService
from caseflow.services.workOrderStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotes", tags=["Quotes"])

_LANDLORD_SIDE = (ActorType.LANDLORD, ActorType.ADMIN, ActorType.SYSTEM)


# ---------------------------------------------------------------------------
# Serialization helpers (shared with the marketplace / negotiation routers)
# ---------------------------------------------------------------------------

async def quote_response(db: AsyncSession, quote: Quote) -> QuoteResponse:
    await db.refresh(quote, attribute_names=["line_items"])
    return QuoteResponse.model_validate(quote)


async def comparison_response(
    db: AsyncSession,
    comparison: quoteService.QuoteComparison,
) -> QuoteComparisonResponse:
    latest = comparison.latest_counter
    return QuoteComparisonResponse(
        quote=await quote_response(db, comparison.quote),
        latest_counter=CounterProposalResponse.model_validate(latest) if latest else None,
    )


def _to_line_input(item: LineItemInput) -> quoteService.LineItemInput:
    return quoteService.LineItemInput(
        name=item.name,
        unit_price=item.unit_price,
        quantity=item.quantity,
        description=item.description,
        display_order=item.display_order,
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=QuoteActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft quote",
    description=(
        "A contractor prices a case. Subtotal and total are computed from the "
        "line items. Fails with 409 when the contractor already has an open "
        "quote for the case."
    ),
)
async def create_quote(
    body: CreateQuoteRequest,
    db: DBSession,
    actor: CurrentActor,
) -> QuoteActionResponse:
    require_role(actor, ActorType.CONTRACTOR)
    quote = unwrap(await run_operation(
        db,
        "create_quote",
        quoteService.create_quote(
            db,
            actor.id,
            body.case_id,
            customer_id=body.customer_id,
            title=body.title,
            notes=body.notes,
            line_items=[_to_line_input(i) for i in body.line_items],
            tax_amount=body.tax_amount or 0,
            deposit_required=body.deposit_required,
            available_start_date=body.available_start_date,
            available_end_date=body.available_end_date,
            estimated_days=body.estimated_days,
            expires_at=body.expires_at,
        ),
    ))
    return QuoteActionResponse(message="Quote created.", quote=await quote_response(db, quote))


@router.get(
    "/{quote_id}",
    response_model=QuoteResponse,
    summary="Get a quote with its line items",
)
async def get_quote(
    quote_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> QuoteResponse:
    quote = unwrap(await run_operation(db, "get_quote", quoteService.get_quote(db, quote_id)))
    return await quote_response(db, quote)


@router.patch(
    "/{quote_id}",
    response_model=QuoteActionResponse,
    summary="Update a quote",
    description="Omitted fields are unchanged. A line_items list replaces every item.",
)
async def update_quote(
    quote_id: uuid.UUID,
    body: UpdateQuoteRequest,
    db: DBSession,
    actor: CurrentActor,
) -> QuoteActionResponse:
    require_role(actor, ActorType.CONTRACTOR)
    changes = body.model_dump(exclude_unset=True, exclude={"line_items"})
    line_items = (
        [_to_line_input(i) for i in body.line_items] if body.line_items is not None else None
    )
    quote = unwrap(await run_operation(
        db,
        "update_quote",
        quoteService.update_quote(db, actor.id, quote_id, changes=changes, line_items=line_items),
    ))
    return QuoteActionResponse(message="Quote updated.", quote=await quote_response(db, quote))


@router.delete(
    "/{quote_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a quote",
)
async def delete_quote(
    quote_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> None:
    require_role(actor, ActorType.CONTRACTOR)
    unwrap(await run_operation(db, "delete_quote", quoteService.delete_quote(db, actor.id, quote_id)))


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

@router.post(
    "/{quote_id}/line-items",
    response_model=LineItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a line item",
    description="The stored quote total is not recomputed.",
)
async def add_line_item(
    quote_id: uuid.UUID,
    body: LineItemInput,
    db: DBSession,
    actor: CurrentActor,
) -> LineItemResponse:
    require_role(actor, ActorType.CONTRACTOR)
    line = unwrap(await run_operation(
        db,
        "add_line_item",
        quoteService.add_line_item(db, actor.id, quote_id, _to_line_input(body)),
    ))
    return LineItemResponse.model_validate(line)


@router.patch(
    "/{quote_id}/line-items/{item_id}",
    response_model=LineItemResponse,
    summary="Edit a line item",
)
async def update_line_item(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    body: LineItemUpdate,
    db: DBSession,
    actor: CurrentActor,
) -> LineItemResponse:
    require_role(actor, ActorType.CONTRACTOR)
    line = unwrap(await run_operation(
        db,
        "update_line_item",
        quoteService.update_line_item(
            db, actor.id, quote_id, item_id, body.model_dump(exclude_unset=True),
        ),
    ))
    return LineItemResponse.model_validate(line)


@router.delete(
    "/{quote_id}/line-items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a line item",
)
async def delete_line_item(
    quote_id: uuid.UUID,
    item_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> None:
    require_role(actor, ActorType.CONTRACTOR)
    unwrap(await run_operation(
        db,
        "delete_line_item",
        quoteService.delete_line_item(db, actor.id, quote_id, item_id),
    ))


# ---------------------------------------------------------------------------
# Send / accept / decline
# ---------------------------------------------------------------------------

@router.post(
    "/{quote_id}/send",
    response_model=SendQuoteResponse,
    summary="Send a draft quote to the landlord",
    description="Stamps the expiry and returns the single-use approval link.",
)
async def send_quote(
    quote_id: uuid.UUID,
    body: SendQuoteRequest,
    db: DBSession,
    actor: CurrentActor,
) -> SendQuoteResponse:
    require_role(actor, ActorType.CONTRACTOR)
    sent = unwrap(await run_operation(
        db,
        "send_quote",
        quoteService.send_quote(db, actor.id, quote_id, body.method),
    ))
    return SendQuoteResponse(
        message="Quote sent.",
        quote=await quote_response(db, sent.quote),
        approval_link=sent.approval_link,
    )


@router.post(
    "/{quote_id}/accept",
    response_model=QuoteActionResponse,
    summary="Accept a quote",
    description=(
        "Approves the quote, assigns its contractor to the case and declines "
        "every other open quote for the same case."
    ),
)
async def accept_quote(
    quote_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> QuoteActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    quote = unwrap(await run_operation(
        db,
        "accept_quote",
        quoteService.accept_quote(db, quote_id, actor.id),
    ))
    return QuoteActionResponse(message="Quote accepted.", quote=await quote_response(db, quote))


@router.post(
    "/{quote_id}/decline",
    response_model=QuoteActionResponse,
    summary="Decline a quote",
)
async def decline_quote(
    quote_id: uuid.UUID,
    body: DeclineRequest,
    db: DBSession,
    actor: CurrentActor,
) -> QuoteActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    quote = unwrap(await run_operation(
        db,
        "decline_quote",
        quoteService.decline_quote(db, quote_id, body.reason, actor.id),
    ))
    return QuoteActionResponse(message="Quote declined.", quote=await quote_response(db, quote))


@router.post(
    "/{quote_id}/approve/{token}",
    response_model=QuoteActionResponse,
    summary="Accept a quote through its approval link",
    description="Public endpoint; the single-use token authenticates the caller.",
)
async def accept_quote_by_token(
    quote_id: uuid.UUID,
    token: str,
    db: DBSession,
) -> QuoteActionResponse:
    quote = unwrap(await run_operation(
        db,
        "accept_quote_by_token",
        quoteService.accept_quote_by_token(db, quote_id, token),
    ))
    return QuoteActionResponse(message="Quote accepted.", quote=await quote_response(db, quote))
