"""
Pydantic v2 schemas for the Case Lifecycle API -- CASEFLOW-LIFECYCLE-001
========================================================================

Request bodies for lifecycle transitions and administrative actions, plus
the case and audit-trail representations returned to clients.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from caseflow.models.work_order import CasePriority, CaseStatus, display_priority


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ConfirmJobRequest(BaseModel):
    """Contractor confirms the job start date."""

    confirmed_start_date: date | datetime = Field(
        description="Start date (or date-time) of the work",
    )
    estimated_days: Optional[int] = Field(
        default=None,
        ge=1,
        le=365,
        description="Estimated duration in days; defaults to the case estimate",
    )
    notes: Optional[str] = Field(default=None, max_length=2000)


class CompleteJobRequest(BaseModel):
    completion_notes: Optional[str] = Field(default=None, max_length=5000)


class AssignContractorRequest(BaseModel):
    contractor_id: uuid.UUID
    note: Optional[str] = Field(default=None, max_length=2000)


class ReasonRequest(BaseModel):
    """Optional free-text reason for close / hold."""

    reason: Optional[str] = Field(default=None, max_length=2000)


class PriorityUpdateRequest(BaseModel):
    priority: CasePriority


class CaseNoteRequest(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class CaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    priority: CasePriority
    status: CaseStatus
    resume_status: Optional[CaseStatus] = None
    assigned_contractor_id: Optional[uuid.UUID] = None
    assigned_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    scheduled_start_at: Optional[datetime] = None
    scheduled_end_at: Optional[datetime] = None
    estimated_days: Optional[int] = None
    estimated_cost: Optional[Decimal] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None
    created_at: datetime

    @computed_field
    @property
    def priority_label(self) -> str:
        return display_priority(self.priority)


class CaseActionResponse(BaseModel):
    """Envelope returned by every lifecycle transition."""

    success: bool = True
    message: Optional[str] = None
    case: CaseResponse


class CaseEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_id: uuid.UUID
    event_type: str
    description: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime


class AvailableActionsResponse(BaseModel):
    case_id: uuid.UUID
    status: CaseStatus
    allowed_statuses: list[CaseStatus]
