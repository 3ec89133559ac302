"""
Pydantic v2 schemas for the marketplace and scheduling API.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from caseflow.api.schemas.case import CaseResponse
from caseflow.api.schemas.quote import QuoteResponse
from caseflow.models.scheduling import ScheduledJobStatus


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------

class AcceptCaseRequest(BaseModel):
    """Optional pricing attached to a marketplace accept."""

    price: Optional[Decimal] = Field(default=None, ge=0)
    price_tbd: bool = False
    available_start_date: Optional[date] = None
    available_end_date: Optional[date] = None
    estimated_days: Optional[int] = Field(default=None, ge=1, le=365)
    notes: Optional[str] = Field(default=None, max_length=2000)


class AcceptCaseResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    case: CaseResponse
    quote: Optional[QuoteResponse] = None


class DismissRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class DismissResponse(BaseModel):
    success: bool = True
    message: str
    case_id: uuid.UUID


class DismissedCaseResponse(BaseModel):
    case: CaseResponse
    reason: Optional[str] = None
    dismissed_at: datetime


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class QuickJobRequest(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    start: datetime
    end: datetime
    notes: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=500)
    team_id: Optional[uuid.UUID] = None
    is_all_day: bool = False


class DropRescheduleRequest(BaseModel):
    """A calendar drop: week start + day column + optional hour row."""

    week_start: date
    day_index: int = Field(ge=0, le=6)
    hour: Optional[int] = Field(default=None, ge=0, le=23)


class ScheduledJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_id: Optional[uuid.UUID] = None
    quote_id: Optional[uuid.UUID] = None
    contractor_id: uuid.UUID
    team_id: Optional[uuid.UUID] = None
    title: str
    notes: Optional[str] = None
    location: Optional[str] = None
    scheduled_start_at: datetime
    scheduled_end_at: datetime
    is_all_day: bool
    status: ScheduledJobStatus
