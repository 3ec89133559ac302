"""
Unit tests for the Marketplace Distributor -- CASEFLOW-MARKETPLACE-002.

Eligibility filtering, ranking, first-writer-wins acceptance, dismissals
and the periodic marketplace sweeps.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from caseflow.core.errors import AlreadyAssignedError, InvalidTransitionError, NotFoundError
from caseflow.events import caseEvents
from caseflow.models.base import utcnow
from caseflow.models.outbox import OutboxEvent
from caseflow.models.quote import QuoteStatus
from caseflow.models.work_order import CaseEvent, CasePriority, CaseStatus
from caseflow.services import marketplaceService, quoteService
from caseflow.services.marketplaceService import NUDGE_EVENT_TYPE, PricingHint

from factories import make_case, make_contractor, make_landlord, make_sent_quote

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def landlord(db_session):
    return await make_landlord(db_session)


@pytest_asyncio.fixture
async def plumber(db_session):
    return await make_contractor(db_session, specialties=["Plumbing"])


@pytest_asyncio.fixture
async def rival(db_session):
    return await make_contractor(db_session, display_name="Rival Repairs")


async def _events_of_type(db, case_id, event_type):
    rows = await db.execute(
        select(CaseEvent).where(CaseEvent.case_id == case_id, CaseEvent.event_type == event_type)
    )
    return list(rows.scalars().all())


async def _outbox_count(db, event_type) -> int:
    rows = await db.execute(select(OutboxEvent).where(OutboxEvent.event_type == event_type))
    return len(rows.scalars().all())


# ---------------------------------------------------------------------------
# Eligibility and ranking
# ---------------------------------------------------------------------------


class TestEligibility:

    async def test_filters_by_specialty_status_and_listing(self, db_session, landlord, plumber, rival):
        visible = await make_case(db_session, landlord, category="plumbing")
        await make_case(db_session, landlord, title="Flickering lights", category="Electrical")
        await make_case(db_session, landlord, title="Draft case", posted=False)
        await make_case(
            db_session,
            landlord,
            title="Taken",
            status=CaseStatus.IN_REVIEW,
            assigned_contractor_id=rival.id,
        )

        eligible = await marketplaceService.list_eligible(db_session, plumber.id)

        assert [c.id for c in eligible] == [visible.id]

    async def test_no_specialties_sees_every_category(self, db_session, landlord, rival):
        await make_case(db_session, landlord, category="Plumbing")
        await make_case(db_session, landlord, title="Flickering lights", category="Electrical")

        eligible = await marketplaceService.list_eligible(db_session, rival.id)

        assert len(eligible) == 2

    async def test_inactive_contractor_sees_nothing(self, db_session, landlord):
        idle = await make_contractor(db_session, is_active=False)
        await make_case(db_session, landlord)

        assert await marketplaceService.list_eligible(db_session, idle.id) == []

    async def test_contractor_without_profile_sees_nothing(self, db_session, landlord):
        bare = await make_contractor(db_session, with_profile=False)
        await make_case(db_session, landlord)

        assert await marketplaceService.list_eligible(db_session, bare.id) == []

    async def test_urgent_first_then_most_recent(self, db_session, landlord, rival):
        now = utcnow()
        older_normal = await make_case(db_session, landlord, title="a", posted_at=now - timedelta(hours=5))
        newer_normal = await make_case(db_session, landlord, title="b", posted_at=now - timedelta(hours=1))
        emergency = await make_case(
            db_session,
            landlord,
            title="c",
            priority=CasePriority.EMERGENCY,
            posted_at=now - timedelta(days=2),
        )

        eligible = await marketplaceService.list_eligible(db_session, rival.id)

        assert [c.id for c in eligible] == [emergency.id, newer_normal.id, older_normal.id]


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------


class TestAccept:

    async def test_accept_claims_the_case(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)

        result = await marketplaceService.accept(db_session, plumber.id, case.id)

        assert result.quote is None
        assert result.case.status == CaseStatus.IN_REVIEW
        assert result.case.assigned_contractor_id == plumber.id
        assert result.case.assigned_at is not None
        assert len(await _events_of_type(db_session, case.id, "status_change")) == 1
        assert await _outbox_count(db_session, caseEvents.CASE_ACCEPTED) == 1

    async def test_second_accept_loses(self, db_session, landlord, plumber, rival):
        case = await make_case(db_session, landlord)
        await marketplaceService.accept(db_session, plumber.id, case.id)

        with pytest.raises(AlreadyAssignedError):
            await marketplaceService.accept(db_session, rival.id, case.id)
        assert case.assigned_contractor_id == plumber.id

    async def test_priced_accept_sends_a_quote(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)

        result = await marketplaceService.accept(
            db_session,
            plumber.id,
            case.id,
            PricingHint(price=Decimal("350"), estimated_days=2, notes="Can start Monday"),
        )

        assert result.quote is not None
        assert result.quote.status == QuoteStatus.SENT
        assert result.quote.sent_method == "marketplace"
        assert result.quote.total == Decimal("350.00")
        assert result.case.estimated_days == 2

    async def test_price_tbd_skips_quote(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)

        result = await marketplaceService.accept(
            db_session, plumber.id, case.id, PricingHint(price=Decimal("350"), price_tbd=True),
        )

        assert result.quote is None

    async def test_existing_quote_stands(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)
        existing = await make_sent_quote(db_session, case, plumber, total="280.00")

        result = await marketplaceService.accept(
            db_session, plumber.id, case.id, PricingHint(price=Decimal("350")),
        )

        assert result.quote is None
        assert existing.total == Decimal("280.00")

    async def test_unlisted_case_cannot_be_accepted(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord, posted=False)

        with pytest.raises(InvalidTransitionError):
            await marketplaceService.accept(db_session, plumber.id, case.id)

    async def test_unknown_contractor(self, db_session, landlord):
        case = await make_case(db_session, landlord)

        with pytest.raises(NotFoundError):
            await marketplaceService.accept(db_session, uuid.uuid4(), case.id)


# ---------------------------------------------------------------------------
# Dismissals
# ---------------------------------------------------------------------------


class TestDismissals:

    async def test_dismiss_is_idempotent(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)

        first = await marketplaceService.dismiss(db_session, plumber.id, case.id, reason="Too far")
        second = await marketplaceService.dismiss(db_session, plumber.id, case.id)

        assert first.already_dismissed is False
        assert second.already_dismissed is True
        assert second.dismissal.id == first.dismissal.id
        assert await marketplaceService.list_eligible(db_session, plumber.id) == []

        dismissed = await marketplaceService.list_dismissed(db_session, plumber.id)
        assert [(d.reason, c.id) for d, c in dismissed] == [("Too far", case.id)]

    async def test_undo_restores_the_case(self, db_session, landlord, plumber):
        case = await make_case(db_session, landlord)
        await marketplaceService.dismiss(db_session, plumber.id, case.id)

        assert await marketplaceService.undo_dismiss(db_session, plumber.id, case.id) is True
        assert await marketplaceService.undo_dismiss(db_session, plumber.id, case.id) is False
        assert [c.id for c in await marketplaceService.list_eligible(db_session, plumber.id)] == [case.id]

    async def test_purge_stale_dismissals(self, db_session, landlord, plumber):
        old_case = await make_case(db_session, landlord, title="Old")
        new_case = await make_case(db_session, landlord, title="New")
        old = await marketplaceService.dismiss(db_session, plumber.id, old_case.id)
        await marketplaceService.dismiss(db_session, plumber.id, new_case.id)
        old.dismissal.dismissed_at = utcnow() - timedelta(days=31)
        await db_session.flush()

        purged = await marketplaceService.purge_stale_dismissals(db_session)

        assert purged == 1
        remaining = await marketplaceService.list_dismissed(db_session, plumber.id)
        assert [c.id for _, c in remaining] == [new_case.id]


# ---------------------------------------------------------------------------
# Confirmation nudges
# ---------------------------------------------------------------------------


class TestNudges:

    async def _approved_case(self, db, landlord, contractor, approved_hours_ago):
        case = await make_case(db, landlord)
        quote = await make_sent_quote(db, case, contractor)
        await quoteService.accept_quote(db, quote.id)
        quote.approved_at = utcnow() - timedelta(hours=approved_hours_ago)
        await db.flush()
        return case

    async def test_overdue_job_nudged_once(self, db_session, landlord, plumber):
        case = await self._approved_case(db_session, landlord, plumber, approved_hours_ago=49)

        assert await marketplaceService.nudge_unconfirmed_jobs(db_session) == 1
        assert await marketplaceService.nudge_unconfirmed_jobs(db_session) == 0

        assert len(await _events_of_type(db_session, case.id, NUDGE_EVENT_TYPE)) == 1
        assert await _outbox_count(db_session, caseEvents.JOB_CONFIRMATION_OVERDUE) == 1

    async def test_recent_approval_not_nudged(self, db_session, landlord, plumber):
        await self._approved_case(db_session, landlord, plumber, approved_hours_ago=2)

        assert await marketplaceService.nudge_unconfirmed_jobs(db_session) == 0
