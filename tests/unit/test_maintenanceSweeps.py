"""
Unit tests for the periodic maintenance sweep.

The sweep is run against a shifted clock so that quote expiry, dismissal
retention and the confirmation nudge window all fall due together.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from caseflow.events import caseEvents
from caseflow.jobs.maintenanceSweeps import run_sweeps
from caseflow.models.base import utcnow
from caseflow.models.counter_proposal import CounterProposalStatus
from caseflow.models.outbox import OutboxEvent
from caseflow.models.quote import PartyRole, QuoteStatus
from caseflow.services import counterProposalService, marketplaceService, quoteService
from caseflow.services.counterProposalService import CounterTerms

from factories import make_case, make_contractor, make_landlord, make_sent_quote

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def landlord(db_session):
    return await make_landlord(db_session)


@pytest_asyncio.fixture
async def contractor(db_session):
    return await make_contractor(db_session)


async def _outbox_types(db) -> list[str]:
    rows = await db.execute(select(OutboxEvent.event_type).order_by(OutboxEvent.id))
    return list(rows.scalars().all())


async def test_nothing_due(db_session, landlord, contractor):
    case = await make_case(db_session, landlord)
    await make_sent_quote(db_session, case, contractor)

    summary = await run_sweeps(db_session)

    assert summary == {"quotes_expired": 0, "dismissals_purged": 0, "jobs_nudged": 0}


async def test_every_sweep_runs(db_session, landlord, contractor):
    quoted = await make_case(db_session, landlord, title="Quoted")
    open_quote = await make_sent_quote(db_session, quoted, contractor)

    dismissed = await make_case(db_session, landlord, title="Dismissed")
    await marketplaceService.dismiss(db_session, contractor.id, dismissed.id)

    approved_case = await make_case(db_session, landlord, title="Approved")
    approved = await make_sent_quote(db_session, approved_case, contractor)
    await quoteService.accept_quote(db_session, approved.id)

    summary = await run_sweeps(db_session, now=utcnow() + timedelta(days=31))

    assert summary == {"quotes_expired": 1, "dismissals_purged": 1, "jobs_nudged": 1}
    assert open_quote.status == QuoteStatus.EXPIRED
    assert approved.status == QuoteStatus.APPROVED
    types = await _outbox_types(db_session)
    assert caseEvents.QUOTE_EXPIRED in types
    assert caseEvents.JOB_CONFIRMATION_OVERDUE in types


async def test_expiry_settles_open_negotiation(db_session, landlord, contractor):
    case = await make_case(db_session, landlord)
    quote = await make_sent_quote(db_session, case, contractor)
    counter = await counterProposalService.propose(
        db_session, quote.id, landlord.id, PartyRole.LANDLORD, CounterTerms(proposed_total=Decimal("400")),
    )

    await run_sweeps(db_session, now=utcnow() + timedelta(days=31))

    [settled] = await counterProposalService.negotiation_history(db_session, quote.id)
    await db_session.refresh(settled)
    assert settled.id == counter.id
    assert settled.status == CounterProposalStatus.REJECTED
    assert settled.response_message == "Quote expired"
    assert quote.status == QuoteStatus.EXPIRED
    assert quote.awaiting_party_role is None
