"""
Unit tests for the schema bootstrap script.
"""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from caseflow.models import Base
from scripts.init_db import init_db

pytestmark = pytest.mark.asyncio


async def test_creates_every_table_once(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'schema.db'}")
    try:
        created = await init_db(engine)
        again = await init_db(engine)
    finally:
        await engine.dispose()

    assert set(created) == set(Base.metadata.tables)
    assert "work_orders" in created
    assert "outbox_events" in created
    assert again == []
