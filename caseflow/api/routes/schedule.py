"""
Contractor Calendar API Routes
==============================

  GET  /api/v1/schedule                        -- Jobs overlapping a window
  POST /api/v1/schedule/jobs                   -- Quick-add an appointment
  POST /api/v1/schedule/cases/{case_id}/drop   -- Drag-and-drop reschedule
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, status

from caseflow.api.deps import CurrentActor, DBSession, require_role, unwrap
from caseflow.api.schemas.case import CaseActionResponse, CaseResponse
from caseflow.api.schemas.marketplace import (
    DropRescheduleRequest,
    QuickJobRequest,
    ScheduledJobResponse,
)
from caseflow.core.results import run_operation
from caseflow.services import schedulingService
from caseflow.services.workOrderStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedule", tags=["Schedule"])


@router.get(
    "",
    response_model=list[ScheduledJobResponse],
    summary="Calendar entries overlapping a time window",
)
async def list_calendar(
    start: datetime,
    end: datetime,
    db: DBSession,
    actor: CurrentActor,
) -> list[ScheduledJobResponse]:
    require_role(actor, ActorType.CONTRACTOR)
    jobs = unwrap(await run_operation(
        db,
        "list_calendar",
        schedulingService.list_calendar(db, actor.id, start, end),
    ))
    return [ScheduledJobResponse.model_validate(j) for j in jobs]


@router.post(
    "/jobs",
    response_model=ScheduledJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Quick-add a standalone appointment",
    description="Fails with 409 when the slot overlaps an active appointment.",
)
async def quick_add_job(
    body: QuickJobRequest,
    db: DBSession,
    actor: CurrentActor,
) -> ScheduledJobResponse:
    require_role(actor, ActorType.CONTRACTOR)
    job = unwrap(await run_operation(
        db,
        "quick_add_job",
        schedulingService.quick_add_job(
            db,
            actor.id,
            body.title,
            body.start,
            body.end,
            notes=body.notes,
            location=body.location,
            team_id=body.team_id,
            is_all_day=body.is_all_day,
        ),
    ))
    return ScheduledJobResponse.model_validate(job)


@router.post(
    "/cases/{case_id}/drop",
    response_model=CaseActionResponse,
    summary="Reschedule a case by dropping it on the calendar",
)
async def reschedule_from_drop(
    case_id: uuid.UUID,
    body: DropRescheduleRequest,
    db: DBSession,
    actor: CurrentActor,
) -> CaseActionResponse:
    require_role(actor, ActorType.CONTRACTOR)
    case = unwrap(await run_operation(
        db,
        "reschedule_from_drop",
        schedulingService.reschedule_from_drop(
            db, case_id, actor.id, body.week_start, body.day_index, body.hour,
        ),
    ))
    return CaseActionResponse(
        message="Job rescheduled.",
        case=CaseResponse.model_validate(case),
    )
