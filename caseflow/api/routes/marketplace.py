"""
Marketplace API Routes
======================

  GET    /api/v1/marketplace                      -- Cases open to the caller
  POST   /api/v1/marketplace/{case_id}/accept     -- Claim a case
  POST   /api/v1/marketplace/{case_id}/dismiss    -- Hide a case
  DELETE /api/v1/marketplace/{case_id}/dismiss    -- Undo a dismissal
  GET    /api/v1/marketplace/dismissed            -- Cases the caller has hidden
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter

from caseflow.api.deps import CurrentActor, DBSession, require_role, unwrap
from caseflow.api.routes.quotes import quote_response
from caseflow.api.schemas.case import CaseResponse
from caseflow.api.schemas.marketplace import (
    AcceptCaseRequest,
    AcceptCaseResponse,
    DismissedCaseResponse,
    DismissRequest,
    DismissResponse,
)
from caseflow.core.results import run_operation
from caseflow.services import jobLifecycleService, marketplaceService
from caseflow.services.workOrderStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/marketplace", tags=["Marketplace"])


@router.get(
    "",
    response_model=list[CaseResponse],
    summary="List marketplace cases for the calling contractor",
    description=(
        "Posted, unassigned New cases in the contractor's categories that "
        "they have not dismissed. Urgent work first, then most recently posted."
    ),
)
async def list_eligible(
    db: DBSession,
    actor: CurrentActor,
) -> list[CaseResponse]:
    require_role(actor, ActorType.CONTRACTOR)
    cases = unwrap(await run_operation(
        db,
        "list_marketplace",
        marketplaceService.list_eligible(db, actor.id),
    ))
    return [CaseResponse.model_validate(c) for c in cases]


@router.post(
    "/{case_id}/accept",
    response_model=AcceptCaseResponse,
    summary="Accept a marketplace case",
    description=(
        "Claims the case for the caller. Exactly one of several concurrent "
        "accepts wins; the others fail with 409. A price creates a sent quote."
    ),
)
async def accept_case(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: AcceptCaseRequest | None = None,
) -> AcceptCaseResponse:
    require_role(actor, ActorType.CONTRACTOR)
    pricing = marketplaceService.PricingHint(**body.model_dump()) if body else None
    result = unwrap(await run_operation(
        db,
        "accept_case",
        jobLifecycleService.accept_case(db, actor.id, case_id, pricing),
    ))
    return AcceptCaseResponse(
        message="Case accepted.",
        case=CaseResponse.model_validate(result.case),
        quote=await quote_response(db, result.quote) if result.quote else None,
    )


@router.post(
    "/{case_id}/dismiss",
    response_model=DismissResponse,
    summary="Hide a case from the caller's marketplace",
)
async def dismiss_case(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: DismissRequest | None = None,
) -> DismissResponse:
    require_role(actor, ActorType.CONTRACTOR)
    result = unwrap(await run_operation(
        db,
        "dismiss_case",
        marketplaceService.dismiss(db, actor.id, case_id, body.reason if body else None),
    ))
    message = "Case was already dismissed." if result.already_dismissed else "Case dismissed."
    return DismissResponse(message=message, case_id=case_id)


@router.delete(
    "/{case_id}/dismiss",
    response_model=DismissResponse,
    summary="Restore a dismissed case",
)
async def undo_dismiss(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> DismissResponse:
    require_role(actor, ActorType.CONTRACTOR)
    removed = unwrap(await run_operation(
        db,
        "undo_dismiss",
        marketplaceService.undo_dismiss(db, actor.id, case_id),
    ))
    message = "Case restored." if removed else "Case was not dismissed."
    return DismissResponse(message=message, case_id=case_id)


@router.get(
    "/dismissed",
    response_model=list[DismissedCaseResponse],
    summary="Cases the caller has dismissed",
)
async def list_dismissed(
    db: DBSession,
    actor: CurrentActor,
) -> list[DismissedCaseResponse]:
    require_role(actor, ActorType.CONTRACTOR)
    rows = unwrap(await run_operation(
        db,
        "list_dismissed",
        marketplaceService.list_dismissed(db, actor.id),
    ))
    return [
        DismissedCaseResponse(
            case=CaseResponse.model_validate(case),
            reason=dismissal.reason,
            dismissed_at=dismissal.dismissed_at,
        )
        for dismissal, case in rows
    ]
