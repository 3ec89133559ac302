"""
Outbox Dispatcher -- CASEFLOW-NOTIFICATIONS-006
===============================================

Consumes pending ``OutboxEvent`` rows in insertion order and runs the
registered ``notificationService`` handlers for each one.

Each event is handled inside its own SAVEPOINT: a failing handler rolls back
only the side-channel writes of that event, which is then marked ``failed``
with the error text and retried on later passes until
``outbox_max_attempts`` is reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import settings
from caseflow.models.base import utcnow
from caseflow.models.outbox import OutboxEvent, OutboxStatus
from caseflow.services import notificationService

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass
class DispatchStats:
    dispatched: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.dispatched + self.failed


async def dispatch_event(db: AsyncSession, event: OutboxEvent) -> bool:
    """Run every handler for one event. Returns True on success."""
    handlers = notificationService.HANDLERS.get(event.event_type, [])
    event.attempts = (event.attempts or 0) + 1
    try:
        async with db.begin_nested():
            for handler in handlers:
                await handler(db, event.payload)
    except Exception as exc:
        logger.exception(
            "Outbox handler failed for event %s (%s), attempt %d",
            event.id, event.event_type, event.attempts,
        )
        event.status = OutboxStatus.FAILED
        event.last_error = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_LENGTH]
        await db.flush()
        return False

    event.status = OutboxStatus.DISPATCHED
    event.dispatched_at = utcnow()
    event.last_error = None
    await db.flush()
    return True


async def dispatch_pending(
    db: AsyncSession,
    limit: Optional[int] = None,
) -> DispatchStats:
    """Dispatch up to ``limit`` pending or retryable events, oldest first."""
    stmt = (
        select(OutboxEvent)
        .where(
            OutboxEvent.status.in_([OutboxStatus.PENDING, OutboxStatus.FAILED]),
            OutboxEvent.attempts < settings.outbox_max_attempts,
        )
        .order_by(OutboxEvent.id.asc())
        .limit(limit or settings.outbox_batch_size)
        .with_for_update(skip_locked=True)
    )
    events = list((await db.execute(stmt)).scalars().all())

    stats = DispatchStats()
    for event in events:
        if await dispatch_event(db, event):
            stats.dispatched += 1
        else:
            stats.failed += 1

    if stats.total:
        logger.info(
            "Outbox pass: %d dispatched, %d failed", stats.dispatched, stats.failed,
        )
    return stats
