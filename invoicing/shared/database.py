"""SQLAlchemy engine construction shared by the invoice store and table sync."""

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_database_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite engines get foreign keys enabled and working SAVEPOINT support:
    pysqlite's own transaction handling is switched off and SQLAlchemy emits
    BEGIN itself, as described in the SQLAlchemy pysqlite dialect docs.
    In-memory SQLite shares one connection so every session sees the same data.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Configured Engine
    """
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **options)

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_sqlite(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    logger.debug(f"SQLite engine created for {database_url}")
    return engine
