"""SQLite settings shared by the database-backed test fixtures."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine


def enable_savepoints(engine: AsyncEngine, begin_sql: str = "BEGIN") -> None:
    """Let SQLAlchemy, not the sqlite3 driver, emit BEGIN so SAVEPOINTs work."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql(begin_sql)
