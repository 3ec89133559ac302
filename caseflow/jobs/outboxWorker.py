"""
Outbox Worker -- CASEFLOW-NOTIFICATIONS-006
===========================================

Background task that periodically drains the transactional outbox through
``outboxDispatcher.dispatch_pending``. Started and stopped from the FastAPI
lifespan::

    await start_outbox_worker()
    ...
    await stop_outbox_worker()

Each pass uses its own session and commits once at the end.
"""

from __future__ import annotations

import asyncio
import logging

from caseflow.api.deps import async_session_factory
from caseflow.core.config import settings
from caseflow.services import outboxDispatcher

logger = logging.getLogger(__name__)

# Internal state
_worker_task: asyncio.Task | None = None
_running: bool = False


async def run_once() -> outboxDispatcher.DispatchStats:
    """Drain one batch of the outbox and commit."""
    async with async_session_factory() as db:
        stats = await outboxDispatcher.dispatch_pending(db)
        await db.commit()
    return stats


async def _run_worker() -> None:
    interval = settings.outbox_poll_interval_seconds
    logger.info("Outbox worker started (interval=%ds)", interval)

    while _running:
        try:
            stats = await run_once()
            # A full batch means more may be waiting
            if stats.total >= settings.outbox_batch_size:
                continue
        except Exception:
            logger.exception("Error in outbox worker pass")
        await asyncio.sleep(interval)


async def start_outbox_worker() -> None:
    """Start the background outbox worker task."""
    global _worker_task, _running

    if _worker_task is not None:
        logger.warning("Outbox worker is already running")
        return

    _running = True
    _worker_task = asyncio.create_task(_run_worker())


async def stop_outbox_worker() -> None:
    """Stop the background outbox worker task."""
    global _worker_task, _running

    _running = False

    if _worker_task is not None:
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
        _worker_task = None
        logger.info("Outbox worker stopped")
