"""
Notification Service -- CASEFLOW-NOTIFICATIONS-006
==================================================

Outbox handlers that turn committed domain events into side-channel records:

  - job-start reminders for the contractor (``job.confirmed``)
  - system messages on the case message thread (confirmed / started /
    completed)
  - in-app notifications for whoever has to act next

Handlers run from ``outboxDispatcher`` after the primary transition has
committed; a failure here is retried from the outbox and never touches the
case, quote or negotiation state.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

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
from caseflow.models.base import utcnow
from caseflow.models.user import User
from caseflow.models.work_order import WorkOrder

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, dict[str, Any]], Awaitable[None]]

PREVIEW_LENGTH = 100
FALLBACK_CONTRACTOR_NAME = "Your contractor"


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def contractor_display_name(user: Optional[User]) -> str:
    if user is None:
        return FALLBACK_CONTRACTOR_NAME
    return user.display_name or user.full_name or user.username or FALLBACK_CONTRACTOR_NAME


def format_start_date(value: datetime) -> str:
    """e.g. ``Saturday, June 1``."""
    return f"{value:%A}, {value:%B} {value.day}"


def confirmation_message(
    name: str,
    start: datetime,
    estimated_days: Optional[int],
    notes: Optional[str] = None,
) -> str:
    body = f"{name} has confirmed the job and is scheduled to start on {format_start_date(start)}"
    if estimated_days is not None:
        unit = "day" if estimated_days == 1 else "days"
        body += f" (estimated {estimated_days} {unit})"
    body += "."
    if notes:
        body += f"\n\nNote: {notes}"
    return body


def started_message(name: str) -> str:
    return f"{name} has started work on this job."


def completed_message(name: str, completion_notes: Optional[str] = None) -> str:
    body = f"{name} has marked this job as completed."
    if completion_notes:
        body += f"\n\nCompletion notes: {completion_notes}"
    return body


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _uuid(value: Any) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


async def _load_case(db: AsyncSession, case_id: Optional[uuid.UUID]) -> Optional[WorkOrder]:
    if case_id is None:
        return None
    case = await db.get(WorkOrder, case_id)
    if case is None:
        logger.warning("Outbox event references missing case %s", case_id)
    return case


async def _store_notification(
    db: AsyncSession,
    user_id: Optional[uuid.UUID],
    title: str,
    body: str,
    notification_type: NotificationType,
    data: dict[str, Any] | None = None,
) -> Optional[Notification]:
    """Persist an in-app notification; a missing recipient is skipped."""
    if user_id is None:
        logger.debug("No recipient for %s notification", notification_type.value)
        return None
    notification = Notification(
        user_id=user_id,
        title=title,
        body=body,
        notification_type=notification_type,
        data_json=data,
        read=False,
    )
    db.add(notification)
    await db.flush()
    return notification


async def _get_or_create_thread(
    db: AsyncSession,
    case: WorkOrder,
    contractor_id: uuid.UUID,
) -> MessageThread:
    stmt = select(MessageThread).where(
        MessageThread.case_id == case.id,
        MessageThread.contractor_id == contractor_id,
    )
    thread = (await db.execute(stmt)).scalar_one_or_none()
    if thread is None:
        thread = MessageThread(case_id=case.id, contractor_id=contractor_id, subject=case.title)
        db.add(thread)
        await db.flush()
    return thread


async def post_system_message(
    db: AsyncSession,
    case: WorkOrder,
    contractor_id: uuid.UUID,
    body: str,
) -> ChatMessage:
    """Insert a system message on the case thread and bump its preview."""
    thread = await _get_or_create_thread(db, case, contractor_id)
    message = ChatMessage(
        thread_id=thread.id,
        sender_id=contractor_id,
        body=body,
        message_type=MessageType.SYSTEM,
    )
    db.add(message)
    thread.last_message_at = utcnow()
    thread.last_message_preview = body[:PREVIEW_LENGTH]
    await db.flush()
    return message


async def create_job_reminder(
    db: AsyncSession,
    case: WorkOrder,
    contractor_id: uuid.UUID,
    start_at: datetime,
    notes: Optional[str] = None,
) -> Reminder:
    reminder = Reminder(
        user_id=contractor_id,
        case_id=case.id,
        title=f"Job starting: {case.title}",
        reminder_type="job_start",
        due_at=start_at,
        lead_days=settings.reminder_lead_days,
        payload={
            "caseId": str(case.id),
            "contractorId": str(contractor_id),
            "notes": notes,
        },
    )
    db.add(reminder)
    await db.flush()
    return reminder


# ---------------------------------------------------------------------------
# Case lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_job_confirmed(db: AsyncSession, event: dict[str, Any]) -> None:
    data = event["data"]
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    contractor_id = _uuid(data["contractor_id"])
    start_at = datetime.fromisoformat(data["start_at"])
    contractor = await db.get(User, contractor_id)

    await create_job_reminder(db, case, contractor_id, start_at, data.get("notes"))
    await post_system_message(
        db,
        case,
        contractor_id,
        confirmation_message(
            contractor_display_name(contractor),
            start_at,
            data.get("estimated_days"),
            data.get("notes"),
        ),
    )
    await _store_notification(
        db,
        case.reporter_user_id,
        "Job scheduled",
        f"'{case.title}' is scheduled to start on {format_start_date(start_at)}.",
        NotificationType.JOB_UPDATE,
        {"case_id": str(case.id)},
    )


async def handle_job_started(db: AsyncSession, event: dict[str, Any]) -> None:
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    contractor_id = _uuid(event["data"]["contractor_id"])
    contractor = await db.get(User, contractor_id)
    await post_system_message(
        db, case, contractor_id, started_message(contractor_display_name(contractor)),
    )


async def handle_job_completed(db: AsyncSession, event: dict[str, Any]) -> None:
    data = event["data"]
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    contractor_id = _uuid(data["contractor_id"])
    contractor = await db.get(User, contractor_id)
    await post_system_message(
        db,
        case,
        contractor_id,
        completed_message(contractor_display_name(contractor), data.get("completion_notes")),
    )
    await _store_notification(
        db,
        case.reporter_user_id,
        "Job completed",
        f"'{case.title}' has been marked as completed.",
        NotificationType.JOB_UPDATE,
        {"case_id": str(case.id)},
    )


async def handle_case_accepted(db: AsyncSession, event: dict[str, Any]) -> None:
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    contractor = await db.get(User, _uuid(event["data"]["contractor_id"]))
    await _store_notification(
        db,
        case.reporter_user_id,
        "Contractor assigned",
        f"{contractor_display_name(contractor)} will handle '{case.title}'.",
        NotificationType.CASE_ACCEPTED,
        {"case_id": str(case.id), "quote_id": event["data"].get("quote_id")},
    )


async def handle_case_status(db: AsyncSession, event: dict[str, Any]) -> None:
    """Tell the assigned contractor about close / hold / resume."""
    data = event["data"]
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    body = f"'{case.title}' is now {data['new_status']}."
    if data.get("reason"):
        body += f" Reason: {data['reason']}"
    await _store_notification(
        db,
        _uuid(data.get("contractor_id")),
        "Job update",
        body,
        NotificationType.JOB_UPDATE,
        {"case_id": str(case.id), "event_type": event["event_type"]},
    )


async def handle_confirmation_overdue(db: AsyncSession, event: dict[str, Any]) -> None:
    data = event["data"]
    case = await _load_case(db, _uuid(event["aggregate_id"]))
    if case is None:
        return
    await _store_notification(
        db,
        _uuid(data["contractor_id"]),
        "Please confirm your job",
        f"Your quote for '{case.title}' was approved. Confirm a start date to schedule the work.",
        NotificationType.CONFIRMATION_OVERDUE,
        {"case_id": str(case.id), "quote_id": data["quote_id"]},
    )


# ---------------------------------------------------------------------------
# Quote handlers
# ---------------------------------------------------------------------------

_QUOTE_NOTICES: dict[str, tuple[NotificationType, str]] = {
    caseEvents.QUOTE_APPROVED: (NotificationType.QUOTE_APPROVED, "Quote approved"),
    caseEvents.QUOTE_DECLINED: (NotificationType.QUOTE_DECLINED, "Quote declined"),
    caseEvents.QUOTE_EXPIRED: (NotificationType.QUOTE_EXPIRED, "Quote expired"),
}


async def handle_quote_sent(db: AsyncSession, event: dict[str, Any]) -> None:
    data = event["data"]
    case = await _load_case(db, _uuid(data["case_id"]))
    if case is None:
        return
    await _store_notification(
        db,
        case.reporter_user_id,
        "New quote received",
        f"A quote of {data.get('total')} was submitted for '{case.title}'.",
        NotificationType.QUOTE_RECEIVED,
        {"case_id": str(case.id), "quote_id": event["aggregate_id"]},
    )


async def handle_quote_decision(db: AsyncSession, event: dict[str, Any]) -> None:
    data = event["data"]
    case = await _load_case(db, _uuid(data["case_id"]))
    if case is None:
        return
    notification_type, title = _QUOTE_NOTICES[event["event_type"]]
    body = f"Your quote for '{case.title}': {title.lower()}."
    if data.get("reason"):
        body += f" {data['reason']}"
    await _store_notification(
        db,
        _uuid(data["contractor_id"]),
        title,
        body,
        notification_type,
        {"case_id": str(case.id), "quote_id": event["aggregate_id"]},
    )


# ---------------------------------------------------------------------------
# Negotiation handlers
# ---------------------------------------------------------------------------

async def handle_counter_event(db: AsyncSession, event: dict[str, Any]) -> None:
    """New rounds go to the party now awaited; responses go to the proposer."""
    data = event["data"]
    case = await _load_case(db, _uuid(data["case_id"]))
    if case is None:
        return

    if event["event_type"] in (caseEvents.COUNTER_PROPOSED, caseEvents.COUNTER_COUNTERED):
        if data.get("awaiting_party_role") == "contractor":
            recipient = _uuid(data["contractor_id"])
        else:
            recipient = case.reporter_user_id
        notification_type = NotificationType.COUNTER_PROPOSAL
        title = "New counter-proposal"
        body = f"A counter-proposal was made on the quote for '{case.title}'."
        if data.get("proposed_total"):
            body += f" Proposed total: {data['proposed_total']}."
    else:
        recipient = _uuid(data["proposed_by"])
        notification_type = NotificationType.COUNTER_RESPONSE
        verdict = "accepted" if event["event_type"] == caseEvents.COUNTER_ACCEPTED else "declined"
        title = f"Counter-proposal {verdict}"
        body = f"Your counter-proposal on '{case.title}' was {verdict}."
        if data.get("reason"):
            body += f" Reason: {data['reason']}"

    await _store_notification(
        db,
        recipient,
        title,
        body,
        notification_type,
        {
            "case_id": str(case.id),
            "quote_id": data["quote_id"],
            "counter_proposal_id": event["aggregate_id"],
        },
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, list[Handler]] = {
    caseEvents.CASE_ACCEPTED: [handle_case_accepted],
    caseEvents.CASE_ASSIGNED: [handle_case_accepted],
    caseEvents.CASE_CLOSED: [handle_case_status],
    caseEvents.CASE_ON_HOLD: [handle_case_status],
    caseEvents.CASE_RESUMED: [handle_case_status],
    caseEvents.JOB_CONFIRMED: [handle_job_confirmed],
    caseEvents.JOB_STARTED: [handle_job_started],
    caseEvents.JOB_COMPLETED: [handle_job_completed],
    caseEvents.JOB_CONFIRMATION_OVERDUE: [handle_confirmation_overdue],
    caseEvents.QUOTE_SENT: [handle_quote_sent],
    caseEvents.QUOTE_APPROVED: [handle_quote_decision],
    caseEvents.QUOTE_DECLINED: [handle_quote_decision],
    caseEvents.QUOTE_EXPIRED: [handle_quote_decision],
    caseEvents.COUNTER_PROPOSED: [handle_counter_event],
    caseEvents.COUNTER_COUNTERED: [handle_counter_event],
    caseEvents.COUNTER_ACCEPTED: [handle_counter_event],
    caseEvents.COUNTER_DECLINED: [handle_counter_event],
}
