"""
Maintenance Sweeps -- Periodic Scheduled Job.

This module provides the periodic sweep that:

1. Expires ``sent`` / ``awaiting_response`` quotes past their ``expires_at``.
2. Purges marketplace dismissals older than the retention window.
3. Nudges contractors whose approved job is still unconfirmed.

It runs in-process from the FastAPI lifespan every
``sweep_interval_seconds``, or once from a cron runner::

    python -m caseflow.jobs.maintenanceSweeps
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps import async_session_factory
from caseflow.core.config import settings
from caseflow.models.base import utcnow
from caseflow.services import marketplaceService, quoteService

logger = logging.getLogger(__name__)

# Internal state
_sweep_task: asyncio.Task | None = None
_running: bool = False


async def run_sweeps(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, int]:
    """Run every sweep against one session. The caller commits."""
    now = now or utcnow()
    summary = {
        "quotes_expired": await quoteService.expire_quotes(db, now),
        "dismissals_purged": await marketplaceService.purge_stale_dismissals(db, now),
        "jobs_nudged": await marketplaceService.nudge_unconfirmed_jobs(db, now),
    }
    logger.info("Maintenance sweep complete: %s", summary)
    return summary


async def run_once() -> dict[str, int]:
    async with async_session_factory() as db:
        summary = await run_sweeps(db)
        await db.commit()
    return summary


async def _run_loop() -> None:
    interval = settings.sweep_interval_seconds
    logger.info("Maintenance sweeps started (interval=%ds)", interval)
    while _running:
        try:
            await run_once()
        except Exception:
            logger.exception("Error in maintenance sweep")
        await asyncio.sleep(interval)


async def start_maintenance_sweeps() -> None:
    global _sweep_task, _running

    if _sweep_task is not None:
        logger.warning("Maintenance sweeps are already running")
        return

    _running = True
    _sweep_task = asyncio.create_task(_run_loop())


async def stop_maintenance_sweeps() -> None:
    global _sweep_task, _running

    _running = False

    if _sweep_task is not None:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None
        logger.info("Maintenance sweeps stopped")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_once())
