"""
Create the caseflow schema on the configured database.

Creates every table, index and constraint declared on ``Base.metadata``
that does not exist yet; existing tables are left untouched, so the script
is safe to re-run.  On PostgreSQL the ``btree_gist`` extension and the
appointment exclusion constraint are emitted with the ``scheduled_jobs``
table.

Usage::

    python -m scripts.init_db
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from caseflow.core.config import settings
from caseflow.models import Base

logger = logging.getLogger(__name__)


async def init_db(engine: Optional[AsyncEngine] = None) -> list[str]:
    """Create missing tables. Returns the names of the tables created."""
    owns_engine = engine is None
    if engine is None:
        engine = create_async_engine(settings.database_url)

    try:
        async with engine.begin() as conn:
            existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
            await conn.run_sync(Base.metadata.create_all)
    finally:
        if owns_engine:
            await engine.dispose()

    created = [t.name for t in Base.metadata.sorted_tables if t.name not in existing]
    for name in created:
        logger.info("Created table %s", name)
    logger.info("Schema ready: %d created, %d already present", len(created), len(existing))
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_db())
