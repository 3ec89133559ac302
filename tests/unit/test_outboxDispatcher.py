"""
Unit tests for the Outbox Dispatcher and notification handlers --
CASEFLOW-NOTIFICATIONS-006.

Side effects (reminders, system messages, notifications) are produced from
committed outbox rows; a failing handler is isolated to its own event and
retried until the attempt budget runs out.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import select

from caseflow.core.config import settings
from caseflow.events import caseEvents
from caseflow.models.notification import (
    ChatMessage,
    MessageThread,
    MessageType,
    Notification,
    NotificationType,
    Reminder,
)
from caseflow.models.outbox import OutboxEvent, OutboxStatus
from caseflow.models.quote import PartyRole
from caseflow.services import (
    counterProposalService,
    jobLifecycleService,
    notificationService,
    outboxDispatcher,
)
from caseflow.services.counterProposalService import CounterTerms

from factories import make_case, make_contractor, make_landlord, make_sent_quote

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def landlord(db_session):
    return await make_landlord(db_session)


@pytest_asyncio.fixture
async def contractor(db_session):
    return await make_contractor(db_session)


@pytest_asyncio.fixture
async def confirmed_case(db_session, landlord, contractor):
    case = await make_case(db_session, landlord)
    await jobLifecycleService.accept_case(db_session, contractor.id, case.id)
    await jobLifecycleService.confirm_job(
        db_session, case.id, contractor.id, date(2024, 6, 1), 3, notes="Bring a ladder",
    )
    return case


async def _all(db, model):
    return list((await db.execute(select(model))).scalars().all())


async def _outbox_by_type(db, event_type) -> OutboxEvent:
    return (
        await db.execute(select(OutboxEvent).where(OutboxEvent.event_type == event_type))
    ).scalar_one()


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TestHandlers:

    async def test_confirmation_side_effects(self, db_session, landlord, contractor, confirmed_case):
        stats = await outboxDispatcher.dispatch_pending(db_session)

        assert (stats.dispatched, stats.failed) == (2, 0)

        [reminder] = await _all(db_session, Reminder)
        assert reminder.user_id == contractor.id
        assert reminder.due_at == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert reminder.lead_days == settings.reminder_lead_days
        assert reminder.title == f"Job starting: {confirmed_case.title}"

        [message] = await _all(db_session, ChatMessage)
        assert message.message_type == MessageType.SYSTEM
        assert message.body == (
            "Bob's Plumbing has confirmed the job and is scheduled to start on "
            "Saturday, June 1 (estimated 3 days).\n\nNote: Bring a ladder"
        )
        [thread] = await _all(db_session, MessageThread)
        assert thread.last_message_preview == message.body[:100]

        notifications = await _all(db_session, Notification)
        assert {n.notification_type for n in notifications} == {
            NotificationType.CASE_ACCEPTED,
            NotificationType.JOB_UPDATE,
        }
        assert all(n.user_id == landlord.id for n in notifications)

        statuses = {e.status for e in await _all(db_session, OutboxEvent)}
        assert statuses == {OutboxStatus.DISPATCHED}

    async def test_started_and_completed_messages_share_thread(
        self, db_session, contractor, confirmed_case,
    ):
        await jobLifecycleService.start_job(db_session, confirmed_case.id, contractor.id)
        await jobLifecycleService.complete_job(
            db_session, confirmed_case.id, contractor.id, "Replaced the trap",
        )

        await outboxDispatcher.dispatch_pending(db_session)

        bodies = [m.body for m in await _all(db_session, ChatMessage)]
        assert "Bob's Plumbing has started work on this job." in bodies
        assert (
            "Bob's Plumbing has marked this job as completed.\n\nCompletion notes: Replaced the trap"
            in bodies
        )
        assert len(await _all(db_session, MessageThread)) == 1

    async def test_counter_proposal_notifies_awaited_party(self, db_session, landlord, contractor):
        case = await make_case(db_session, landlord)
        quote = await make_sent_quote(db_session, case, contractor)
        await counterProposalService.propose(
            db_session, quote.id, landlord.id, PartyRole.LANDLORD, CounterTerms(proposed_total=Decimal("400")),
        )

        await outboxDispatcher.dispatch_pending(db_session)

        notifications = await _all(db_session, Notification)
        by_type = {n.notification_type: n for n in notifications}
        assert by_type[NotificationType.QUOTE_RECEIVED].user_id == landlord.id
        assert by_type[NotificationType.COUNTER_PROPOSAL].user_id == contractor.id
        assert "400.00" in by_type[NotificationType.COUNTER_PROPOSAL].body

    async def test_unhandled_event_type_is_marked_dispatched(self, db_session):
        db_session.add(OutboxEvent(event_type="case.archived", payload={"data": {}}))
        await db_session.flush()

        stats = await outboxDispatcher.dispatch_pending(db_session)

        assert stats.dispatched == 1


# ---------------------------------------------------------------------------
# Failure isolation and retries
# ---------------------------------------------------------------------------


class TestFailures:

    async def test_failing_handler_is_isolated(self, db_session, confirmed_case):
        async def push_gateway_down(db, event):
            db.add(
                Notification(
                    user_id=confirmed_case.reporter_user_id,
                    title="half-written",
                    body="should be rolled back",
                    notification_type=NotificationType.JOB_UPDATE,
                )
            )
            await db.flush()
            raise RuntimeError("push gateway down")

        with patch.dict(notificationService.HANDLERS, {caseEvents.JOB_CONFIRMED: [push_gateway_down]}):
            stats = await outboxDispatcher.dispatch_pending(db_session)

        assert (stats.dispatched, stats.failed) == (1, 1)
        failed = await _outbox_by_type(db_session, caseEvents.JOB_CONFIRMED)
        assert failed.status == OutboxStatus.FAILED
        assert failed.attempts == 1
        assert failed.last_error == "RuntimeError: push gateway down"

        titles = [n.title for n in await _all(db_session, Notification)]
        assert "half-written" not in titles
        assert titles == ["Contractor assigned"]
        assert await _all(db_session, Reminder) == []

    async def test_failed_event_retried_on_next_pass(self, db_session, confirmed_case):
        async def flaky(db, event):
            raise ConnectionError("timeout")

        with patch.dict(notificationService.HANDLERS, {caseEvents.JOB_CONFIRMED: [flaky]}):
            await outboxDispatcher.dispatch_pending(db_session)

        stats = await outboxDispatcher.dispatch_pending(db_session)

        assert (stats.dispatched, stats.failed) == (1, 0)
        retried = await _outbox_by_type(db_session, caseEvents.JOB_CONFIRMED)
        assert retried.status == OutboxStatus.DISPATCHED
        assert retried.attempts == 2
        assert retried.last_error is None
        assert len(await _all(db_session, Reminder)) == 1

    async def test_exhausted_events_are_left_alone(self, db_session, confirmed_case):
        await outboxDispatcher.dispatch_pending(db_session)
        exhausted = await _outbox_by_type(db_session, caseEvents.JOB_CONFIRMED)
        exhausted.status = OutboxStatus.FAILED
        exhausted.attempts = settings.outbox_max_attempts
        await db_session.flush()

        stats = await outboxDispatcher.dispatch_pending(db_session)

        assert stats.total == 0
