"""
Unit tests for the Counter-Proposal Negotiator -- CASEFLOW-QUOTES-004.

Covers the one-pending-round rule, turn taking between landlord and
contractor, accept / decline / re-counter and the read views.
"""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from caseflow.core.errors import (
    AccessDeniedError,
    ConflictingRoundError,
    InvalidStateError,
    InvalidTransitionError,
    ValidationError,
)
from caseflow.models.counter_proposal import CounterProposal, CounterProposalStatus
from caseflow.models.quote import PartyRole, QuoteStatus
from caseflow.services import counterProposalService, quoteService
from caseflow.services.counterProposalService import RECOUNTER_REASON, CounterTerms

from factories import make_case, make_contractor, make_landlord, make_sent_quote

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def landlord(db_session):
    return await make_landlord(db_session)


@pytest_asyncio.fixture
async def contractor(db_session):
    return await make_contractor(db_session)


@pytest_asyncio.fixture
async def quote(db_session, landlord, contractor):
    case = await make_case(db_session, landlord)
    return await make_sent_quote(db_session, case, contractor, total="500.00")


def _price(amount: str) -> CounterTerms:
    return CounterTerms(proposed_total=Decimal(amount))


async def _assert_at_most_one_pending(db, quote_id) -> None:
    pending = await db.scalar(
        select(func.count())
        .select_from(CounterProposal)
        .where(
            CounterProposal.quote_id == quote_id,
            CounterProposal.status == CounterProposalStatus.PENDING,
        )
    )
    assert pending <= 1


# ---------------------------------------------------------------------------
# Propose
# ---------------------------------------------------------------------------


class TestPropose:

    async def test_landlord_proposal_awaits_contractor(self, db_session, landlord, quote):
        counter = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )

        assert counter.status == CounterProposalStatus.PENDING
        assert counter.proposed_total == Decimal("400.00")
        assert quote.status == QuoteStatus.AWAITING_RESPONSE
        assert quote.has_counter_proposal is True
        assert quote.counter_proposal_count == 1
        assert quote.awaiting_party_role == PartyRole.CONTRACTOR

    async def test_contractor_proposal_keeps_quote_sent(self, db_session, contractor, quote):
        await counterProposalService.propose(
            db_session,
            quote.id,
            contractor.id,
            PartyRole.CONTRACTOR,
            CounterTerms(scope_changes="Also replace the tap"),
        )

        assert quote.status == QuoteStatus.SENT
        assert quote.awaiting_party_role == PartyRole.LANDLORD

    async def test_one_pending_round_per_quote(self, db_session, landlord, contractor, quote):
        await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )

        with pytest.raises(ConflictingRoundError):
            await counterProposalService.propose(
                db_session, quote.id, contractor.id, PartyRole.CONTRACTOR, _price("480"),
            )
        assert quote.counter_proposal_count == 1

    async def test_draft_quote_cannot_be_negotiated(self, db_session, landlord, contractor):
        case = await make_case(db_session, landlord, title="Broken boiler")
        draft = await quoteService.create_quote(db_session, contractor.id, case.id)

        with pytest.raises(InvalidStateError):
            await counterProposalService.propose(
                db_session, draft.id, landlord.id, PartyRole.LANDLORD, _price("100"),
            )

    async def test_other_contractor_cannot_negotiate(self, db_session, quote):
        stranger = await make_contractor(db_session, display_name="Someone Else")

        with pytest.raises(AccessDeniedError):
            await counterProposalService.propose(
                db_session, quote.id, stranger.id, PartyRole.CONTRACTOR, _price("300"),
            )

    async def test_terms_must_change_something(self, db_session, landlord, quote):
        with pytest.raises(ValidationError):
            await counterProposalService.propose(
                db_session, quote.id, landlord.id, PartyRole.LANDLORD, CounterTerms(message="Hello"),
            )


# ---------------------------------------------------------------------------
# Respond
# ---------------------------------------------------------------------------


class TestRespond:

    async def test_counter_replaces_pending_round(self, db_session, landlord, contractor, quote):
        opening = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )

        reply = await counterProposalService.counter(
            db_session, opening.id, contractor.id, PartyRole.CONTRACTOR, _price("420"),
        )

        assert opening.status == CounterProposalStatus.REJECTED
        assert opening.response_message == RECOUNTER_REASON
        assert opening.responded_by == contractor.id
        assert reply.status == CounterProposalStatus.PENDING
        assert reply.proposed_by_role == PartyRole.CONTRACTOR
        assert quote.counter_proposal_count == 2
        assert quote.awaiting_party_role == PartyRole.LANDLORD
        assert quote.status == QuoteStatus.AWAITING_RESPONSE

    async def test_cannot_answer_own_proposal(self, db_session, landlord, quote):
        opening = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )

        with pytest.raises(InvalidTransitionError):
            await counterProposalService.accept(
                db_session, opening.id, landlord.id, PartyRole.LANDLORD,
            )

    async def test_accept_applies_terms(self, db_session, landlord, contractor, quote):
        proposal = await counterProposalService.propose(
            db_session, quote.id, contractor.id, PartyRole.CONTRACTOR, _price("450"),
        )

        accepted = await counterProposalService.accept(
            db_session, proposal.id, landlord.id, PartyRole.LANDLORD,
        )

        assert accepted.status == CounterProposalStatus.ACCEPTED
        assert accepted.responded_by == landlord.id
        assert quote.total == Decimal("450.00")
        assert quote.status == QuoteStatus.SENT
        assert quote.has_counter_proposal is False
        assert quote.awaiting_party_role is None

    async def test_accepting_a_re_counter_applies_its_terms(
        self, db_session, landlord, contractor, quote,
    ):
        opening = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )
        await _assert_at_most_one_pending(db_session, quote.id)

        reply = await counterProposalService.counter(
            db_session, opening.id, contractor.id, PartyRole.CONTRACTOR, _price("420"),
        )
        await _assert_at_most_one_pending(db_session, quote.id)

        accepted = await counterProposalService.accept(
            db_session, reply.id, landlord.id, PartyRole.LANDLORD,
        )
        await _assert_at_most_one_pending(db_session, quote.id)

        assert accepted.status == CounterProposalStatus.ACCEPTED
        assert opening.status == CounterProposalStatus.REJECTED
        assert quote.total == Decimal("420.00")
        assert quote.status == QuoteStatus.SENT
        assert quote.has_counter_proposal is False

    async def test_dates_only_counter_leaves_total(self, db_session, landlord, contractor, quote):
        proposal = await counterProposalService.propose(
            db_session,
            quote.id,
            landlord.id,
            PartyRole.LANDLORD,
            CounterTerms(proposed_start_date=date(2024, 7, 1), proposed_end_date=date(2024, 7, 3)),
        )
        await _assert_at_most_one_pending(db_session, quote.id)

        await counterProposalService.accept(
            db_session, proposal.id, contractor.id, PartyRole.CONTRACTOR,
        )
        await _assert_at_most_one_pending(db_session, quote.id)

        assert quote.total == Decimal("500.00")
        assert quote.available_start_date == date(2024, 7, 1)
        assert quote.available_end_date == date(2024, 7, 3)

    async def test_decline_keeps_quote_terms(self, db_session, landlord, contractor, quote):
        proposal = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("300"),
        )

        declined = await counterProposalService.decline(
            db_session, proposal.id, contractor.id, PartyRole.CONTRACTOR, reason="Parts cost more",
        )

        assert declined.status == CounterProposalStatus.REJECTED
        assert declined.response_message == "Parts cost more"
        assert quote.total == Decimal("500.00")
        assert quote.status == QuoteStatus.SENT

    async def test_settled_round_cannot_be_answered_again(
        self, db_session, landlord, contractor, quote,
    ):
        proposal = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("300"),
        )
        await counterProposalService.decline(
            db_session, proposal.id, contractor.id, PartyRole.CONTRACTOR,
        )

        with pytest.raises(InvalidStateError):
            await counterProposalService.accept(
                db_session, proposal.id, contractor.id, PartyRole.CONTRACTOR,
            )

    async def test_new_round_after_settlement(self, db_session, landlord, contractor, quote):
        first = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("300"),
        )
        await counterProposalService.decline(
            db_session, first.id, contractor.id, PartyRole.CONTRACTOR,
        )

        second = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("350"),
        )

        assert second.status == CounterProposalStatus.PENDING
        assert quote.counter_proposal_count == 2


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


class TestViews:

    async def test_pending_lists_follow_the_turn(self, db_session, landlord, contractor, quote):
        opening = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )

        assert [c.id for c in await counterProposalService.list_pending_for_contractor(
            db_session, contractor.id,
        )] == [opening.id]
        assert await counterProposalService.list_pending_for_landlord(db_session, landlord.id) == []

        reply = await counterProposalService.counter(
            db_session, opening.id, contractor.id, PartyRole.CONTRACTOR, _price("420"),
        )

        assert await counterProposalService.list_pending_for_contractor(db_session, contractor.id) == []
        assert [c.id for c in await counterProposalService.list_pending_for_landlord(
            db_session, landlord.id,
        )] == [reply.id]

    async def test_history_keeps_every_round(self, db_session, landlord, contractor, quote):
        opening = await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, _price("400"),
        )
        reply = await counterProposalService.counter(
            db_session, opening.id, contractor.id, PartyRole.CONTRACTOR, _price("420"),
        )

        history = await counterProposalService.negotiation_history(db_session, quote.id)

        assert [c.id for c in history] == [opening.id, reply.id]
        assert [c.status for c in history] == [
            CounterProposalStatus.REJECTED,
            CounterProposalStatus.PENDING,
        ]
