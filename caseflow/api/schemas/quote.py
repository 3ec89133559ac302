"""
Pydantic v2 schemas for the Quote Ledger and negotiation API.

Covers:
- Quote create / update (line items replaced as a set) and single line-item edits
- Send, accept (landlord or approval link) and decline
- Counter-proposal propose / respond / re-counter
- Quote, line-item and counter-proposal output
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from caseflow.models.counter_proposal import CounterProposalStatus
from caseflow.models.quote import PartyRole, QuoteStatus


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LineItemInput(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(ge=0)
    display_order: Optional[int] = Field(default=None, ge=0)


class LineItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    display_order: Optional[int] = Field(default=None, ge=0)


class _QuoteTerms(BaseModel):
    title: Optional[str] = Field(default=None, max_length=300)
    notes: Optional[str] = Field(default=None, max_length=5000)
    customer_id: Optional[uuid.UUID] = None
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    deposit_required: Optional[Decimal] = Field(default=None, ge=0)
    available_start_date: Optional[date] = None
    available_end_date: Optional[date] = None
    estimated_days: Optional[int] = Field(default=None, ge=1, le=365)
    expires_at: Optional[datetime] = None


class CreateQuoteRequest(_QuoteTerms):
    """Request body for a new draft quote."""

    case_id: uuid.UUID
    line_items: list[LineItemInput] = Field(default_factory=list)


class UpdateQuoteRequest(_QuoteTerms):
    """Full or partial update. Omitted fields are left unchanged; a
    ``line_items`` list replaces every existing item."""

    line_items: Optional[list[LineItemInput]] = None


class SendQuoteRequest(BaseModel):
    method: Literal["email", "sms", "link"] = "email"


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class CounterTermsRequest(BaseModel):
    proposed_total: Optional[Decimal] = Field(default=None, ge=0)
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    scope_changes: Optional[str] = Field(default=None, max_length=5000)
    message: Optional[str] = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def _dates_ordered(self) -> "CounterTermsRequest":
        if (
            self.proposed_start_date is not None
            and self.proposed_end_date is not None
            and self.proposed_end_date < self.proposed_start_date
        ):
            raise ValueError("proposed_end_date must not be before proposed_start_date")
        return self


class ProposeCounterRequest(CounterTermsRequest):
    quote_id: uuid.UUID


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    display_order: int


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_id: uuid.UUID
    contractor_id: uuid.UUID
    customer_id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    status: QuoteStatus
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    deposit_required: Optional[Decimal] = None
    available_start_date: Optional[date] = None
    available_end_date: Optional[date] = None
    estimated_days: Optional[int] = None
    has_counter_proposal: bool
    counter_proposal_count: int
    awaiting_party_role: Optional[PartyRole] = None
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    line_items: list[LineItemResponse] = Field(default_factory=list)
    created_at: datetime


class QuoteActionResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    quote: QuoteResponse


class SendQuoteResponse(QuoteActionResponse):
    approval_link: str


class CounterProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    quote_id: uuid.UUID
    proposed_by: uuid.UUID
    proposed_by_role: PartyRole
    proposed_total: Optional[Decimal] = None
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    scope_changes: Optional[str] = None
    message: Optional[str] = None
    status: CounterProposalStatus
    responded_by: Optional[uuid.UUID] = None
    responded_at: Optional[datetime] = None
    response_message: Optional[str] = None
    created_at: datetime


class CounterActionResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    counter_proposal: CounterProposalResponse
    quote: QuoteResponse


class QuoteComparisonResponse(BaseModel):
    quote: QuoteResponse
    latest_counter: Optional[CounterProposalResponse] = None
