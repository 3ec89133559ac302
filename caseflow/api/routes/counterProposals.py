"""
Counter-Proposal API Routes
===========================

Negotiation on a sent quote. The acting side (landlord or contractor) is
derived from the caller's role; admins negotiate for the landlord.

  POST /api/v1/counter-proposals                        -- Open a round
  POST /api/v1/counter-proposals/{counter_id}/accept    -- Accept the terms
  POST /api/v1/counter-proposals/{counter_id}/decline   -- Decline the terms
  POST /api/v1/counter-proposals/{counter_id}/counter   -- Answer with new terms
  GET  /api/v1/counter-proposals/pending                -- Rounds awaiting the caller
  GET  /api/v1/counter-proposals/history/{quote_id}     -- Every round, oldest first
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps import CurrentActor, DBSession, unwrap
from caseflow.api.routes.quotes import quote_response
from caseflow.api.schemas.quote import (
    CounterActionResponse,
    CounterProposalResponse,
    CounterTermsRequest,
    DeclineRequest,
    ProposeCounterRequest,
)
from caseflow.core.results import run_operation
from caseflow.models.counter_proposal import CounterProposal
from caseflow.services import counterProposalService, quoteService
from caseflow.services.workOrderStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/counter-proposals", tags=["Counter-Proposals"])


def _terms(body: CounterTermsRequest) -> counterProposalService.CounterTerms:
    return counterProposalService.CounterTerms(
        proposed_total=body.proposed_total,
        proposed_start_date=body.proposed_start_date,
        proposed_end_date=body.proposed_end_date,
        scope_changes=body.scope_changes,
        message=body.message,
    )


async def _counter_action(
    db: AsyncSession,
    counter: CounterProposal,
    message: str,
) -> CounterActionResponse:
    quote = await quoteService.get_quote(db, counter.quote_id)
    return CounterActionResponse(
        message=message,
        counter_proposal=CounterProposalResponse.model_validate(counter),
        quote=await quote_response(db, quote),
    )


# ---------------------------------------------------------------------------
# POST /counter-proposals
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=CounterActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Propose new terms on a sent quote",
    description=(
        "Opens a negotiation round. Only one pending round may exist per "
        "quote; a second proposal fails with 409."
    ),
)
async def propose(
    body: ProposeCounterRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CounterActionResponse:
    counter = unwrap(await run_operation(
        db,
        "propose_counter",
        counterProposalService.propose(db, body.quote_id, actor.id, actor.party_role, _terms(body)),
    ))
    return await _counter_action(db, counter, "Counter-proposal submitted.")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@router.post(
    "/{counter_id}/accept",
    response_model=CounterActionResponse,
    summary="Accept the other party's terms",
)
async def accept(
    counter_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> CounterActionResponse:
    counter = unwrap(await run_operation(
        db,
        "accept_counter",
        counterProposalService.accept(db, counter_id, actor.id, actor.party_role),
    ))
    return await _counter_action(db, counter, "Counter-proposal accepted.")


@router.post(
    "/{counter_id}/decline",
    response_model=CounterActionResponse,
    summary="Decline the other party's terms",
)
async def decline(
    counter_id: uuid.UUID,
    body: DeclineRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CounterActionResponse:
    counter = unwrap(await run_operation(
        db,
        "decline_counter",
        counterProposalService.decline(db, counter_id, actor.id, actor.party_role, body.reason),
    ))
    return await _counter_action(db, counter, "Counter-proposal declined.")


@router.post(
    "/{counter_id}/counter",
    response_model=CounterActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Answer a proposal with new terms",
)
async def counter(
    counter_id: uuid.UUID,
    body: CounterTermsRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CounterActionResponse:
    replacement = unwrap(await run_operation(
        db,
        "counter_counter",
        counterProposalService.counter(db, counter_id, actor.id, actor.party_role, _terms(body)),
    ))
    return await _counter_action(db, replacement, "Counter-offer submitted.")


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

@router.get(
    "/pending",
    response_model=list[CounterProposalResponse],
    summary="Pending rounds awaiting the caller",
)
async def list_pending(
    db: DBSession,
    actor: CurrentActor,
) -> list[CounterProposalResponse]:
    if actor.role == ActorType.CONTRACTOR:
        op = counterProposalService.list_pending_for_contractor(db, actor.id)
    else:
        op = counterProposalService.list_pending_for_landlord(db, actor.id)
    counters = unwrap(await run_operation(db, "list_pending_counters", op))
    return [CounterProposalResponse.model_validate(c) for c in counters]


@router.get(
    "/history/{quote_id}",
    response_model=list[CounterProposalResponse],
    summary="Negotiation history of a quote",
)
async def negotiation_history(
    quote_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[CounterProposalResponse]:
    counters = unwrap(await run_operation(
        db,
        "negotiation_history",
        counterProposalService.negotiation_history(db, quote_id),
    ))
    return [CounterProposalResponse.model_validate(c) for c in counters]
