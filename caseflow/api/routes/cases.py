"""
Case Lifecycle API Routes
=========================

REST endpoints that drive a case through its lifecycle and the landlord's
administrative actions.

  POST  /api/v1/cases/{case_id}/assign     -- Landlord assigns a contractor
  POST  /api/v1/cases/{case_id}/confirm    -- Contractor confirms the start date
  POST  /api/v1/cases/{case_id}/start      -- Contractor starts the work
  POST  /api/v1/cases/{case_id}/complete   -- Contractor completes the work
  POST  /api/v1/cases/{case_id}/close      -- Landlord closes the case
  POST  /api/v1/cases/{case_id}/hold       -- Landlord puts the case on hold
  POST  /api/v1/cases/{case_id}/resume     -- Landlord resumes a held case
  PATCH /api/v1/cases/{case_id}/priority   -- Change the case priority
  POST  /api/v1/cases/{case_id}/notes      -- Add a note to the audit trail
  GET   /api/v1/cases/{case_id}/events     -- Audit trail, oldest first
  GET   /api/v1/cases/{case_id}/actions    -- Statuses reachable by the caller
  GET   /api/v1/cases/{case_id}/quotes     -- Quote comparison view
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, status

from caseflow.api.deps import CurrentActor, DBSession, require_role, unwrap
from caseflow.api.routes.quotes import comparison_response
from caseflow.api.schemas.case import (
    AssignContractorRequest,
    AvailableActionsResponse,
    CaseActionResponse,
    CaseEventResponse,
    CaseNoteRequest,
    CaseResponse,
    CompleteJobRequest,
    ConfirmJobRequest,
    PriorityUpdateRequest,
    ReasonRequest,
)
from caseflow.api.schemas.quote import QuoteComparisonResponse
from caseflow.core.results import run_operation
from caseflow.models.work_order import WorkOrder
from caseflow.services import jobLifecycleService, quoteService
from caseflow.services.workOrderStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])

_LANDLORD_SIDE = (ActorType.LANDLORD, ActorType.ADMIN, ActorType.SYSTEM)
_CONTRACTOR_SIDE = (ActorType.CONTRACTOR, ActorType.ADMIN, ActorType.SYSTEM)


def _case_action(case: WorkOrder, message: str) -> CaseActionResponse:
    return CaseActionResponse(
        success=True,
        message=message,
        case=CaseResponse.model_validate(case),
    )


# ---------------------------------------------------------------------------
# POST /cases/{case_id}/assign
# ---------------------------------------------------------------------------

@router.post(
    "/{case_id}/assign",
    response_model=CaseActionResponse,
    summary="Assign a contractor directly",
    description=(
        "Landlord direct assignment. Uses the same conditional New -> In Review "
        "write as a marketplace accept, so it fails with 409 when another "
        "contractor already holds the case."
    ),
)
async def assign_contractor(
    case_id: uuid.UUID,
    body: AssignContractorRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, ActorType.LANDLORD, ActorType.ADMIN)
    case = unwrap(await run_operation(
        db,
        "assign_contractor",
        jobLifecycleService.assign_contractor(
            db,
            case_id,
            body.contractor_id,
            actor_id=actor.id,
            actor_type=actor.role,
            note=body.note,
        ),
    ))
    return _case_action(case, "Contractor assigned.")


# ---------------------------------------------------------------------------
# POST /cases/{case_id}/confirm
# ---------------------------------------------------------------------------

@router.post(
    "/{case_id}/confirm",
    response_model=CaseActionResponse,
    summary="Confirm the job start date",
    description=(
        "The assigned contractor confirms when work will begin. Moves the case "
        "to Scheduled (or reschedules it when already Scheduled) and books the "
        "contractor's calendar slot."
    ),
)
async def confirm_job(
    case_id: uuid.UUID,
    body: ConfirmJobRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, *_CONTRACTOR_SIDE)
    case = unwrap(await run_operation(
        db,
        "confirm_job",
        jobLifecycleService.confirm_job(
            db,
            case_id,
            actor.id,
            body.confirmed_start_date,
            body.estimated_days,
            body.notes,
            actor_type=actor.role,
        ),
    ))
    return _case_action(case, "Job confirmed.")


# ---------------------------------------------------------------------------
# POST /cases/{case_id}/start  and  /complete
# ---------------------------------------------------------------------------

@router.post(
    "/{case_id}/start",
    response_model=CaseActionResponse,
    summary="Start the work",
)
async def start_job(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, *_CONTRACTOR_SIDE)
    case = unwrap(await run_operation(
        db,
        "start_job",
        jobLifecycleService.start_job(db, case_id, actor.id, actor_type=actor.role),
    ))
    return _case_action(case, "Job started.")


@router.post(
    "/{case_id}/complete",
    response_model=CaseActionResponse,
    summary="Complete the work",
)
async def complete_job(
    case_id: uuid.UUID,
    body: CompleteJobRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, *_CONTRACTOR_SIDE)
    case = unwrap(await run_operation(
        db,
        "complete_job",
        jobLifecycleService.complete_job(
            db,
            case_id,
            actor.id,
            body.completion_notes,
            actor_type=actor.role,
        ),
    ))
    return _case_action(case, "Job completed.")


# ---------------------------------------------------------------------------
# POST /cases/{case_id}/close, /hold, /resume
# ---------------------------------------------------------------------------

@router.post(
    "/{case_id}/close",
    response_model=CaseActionResponse,
    summary="Close the case",
    description="Allowed from every status except Closed.",
)
async def close_case(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: ReasonRequest | None = None,
) -> CaseActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    case = unwrap(await run_operation(
        db,
        "close_case",
        jobLifecycleService.close_case(
            db, case_id, actor_id=actor.id, actor_type=actor.role,
            reason=body.reason if body else None,
        ),
    ))
    return _case_action(case, "Case closed.")


@router.post(
    "/{case_id}/hold",
    response_model=CaseActionResponse,
    summary="Put the case on hold",
)
async def hold_case(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
    body: ReasonRequest | None = None,
) -> CaseActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    case = unwrap(await run_operation(
        db,
        "hold_case",
        jobLifecycleService.hold_case(
            db, case_id, actor_id=actor.id, actor_type=actor.role,
            reason=body.reason if body else None,
        ),
    ))
    return _case_action(case, "Case put on hold.")


@router.post(
    "/{case_id}/resume",
    response_model=CaseActionResponse,
    summary="Resume a held case",
    description="Restores the status the case had before it was put on hold.",
)
async def resume_case(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    case = unwrap(await run_operation(
        db,
        "resume_case",
        jobLifecycleService.resume_case(db, case_id, actor_id=actor.id, actor_type=actor.role),
    ))
    return _case_action(case, "Case resumed.")


# ---------------------------------------------------------------------------
# Administrative actions
# ---------------------------------------------------------------------------

@router.patch(
    "/{case_id}/priority",
    response_model=CaseActionResponse,
    summary="Change the case priority",
)
async def update_priority(
    case_id: uuid.UUID,
    body: PriorityUpdateRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, *_LANDLORD_SIDE)
    case = unwrap(await run_operation(
        db,
        "update_priority",
        jobLifecycleService.update_priority(db, case_id, body.priority, actor_id=actor.id),
    ))
    return _case_action(case, "Priority updated.")


@router.post(
    "/{case_id}/notes",
    response_model=CaseEventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a note to the case audit trail",
)
async def add_case_note(
    case_id: uuid.UUID,
    body: CaseNoteRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseEventResponse:
    require_role(actor, *_LANDLORD_SIDE)
    event = unwrap(await run_operation(
        db,
        "add_case_note",
        jobLifecycleService.add_case_note(db, case_id, body.note, actor_id=actor.id),
    ))
    return CaseEventResponse.model_validate(event)


@router.get(
    "/{case_id}/events",
    response_model=list[CaseEventResponse],
    summary="Case audit trail",
)
async def list_case_events(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[CaseEventResponse]:
    events = unwrap(await run_operation(
        db,
        "list_case_events",
        jobLifecycleService.list_case_events(db, case_id),
    ))
    return [CaseEventResponse.model_validate(e) for e in events]


@router.get(
    "/{case_id}/actions",
    response_model=AvailableActionsResponse,
    summary="Statuses the caller may move the case to",
)
async def available_actions(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> AvailableActionsResponse:
    allowed = unwrap(await run_operation(
        db,
        "available_actions",
        jobLifecycleService.available_actions(db, case_id, actor.role),
    ))
    case = await db.get(WorkOrder, case_id)
    return AvailableActionsResponse(
        case_id=case_id,
        status=case.status,
        allowed_statuses=allowed,
    )


@router.get(
    "/{case_id}/quotes",
    response_model=list[QuoteComparisonResponse],
    summary="Compare every quote submitted for a case",
)
async def list_case_quotes(
    case_id: uuid.UUID,
    db: DBSession,
    actor: CurrentActor,
) -> list[QuoteComparisonResponse]:
    comparisons = unwrap(await run_operation(
        db,
        "list_case_quotes",
        quoteService.list_case_quotes(db, case_id),
    ))
    return [await comparison_response(db, c) for c in comparisons]
