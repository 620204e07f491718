"""
Query audit log -- records every statement run through the driver:
workspace, SQL text, statement kind, row count, error and latency.

The table is created automatically on first use via `ensure_log_table()`.
"""
from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine

from afmbridge.db.connection import get_engine
from afmbridge.core.logging import get_logger

logger = get_logger(__name__)

_TABLE = "afmbridge_query_logs"
_ensured: set[str] = set()

_CREATE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id              {id_column},
    workspace       VARCHAR(128) NOT NULL,
    statement       TEXT NOT NULL,
    kind            VARCHAR(20) NOT NULL DEFAULT 'query',
    row_count       INTEGER,
    ok              BOOLEAN NOT NULL DEFAULT TRUE,
    error           TEXT,
    latency_ms      INTEGER,
    created_at      VARCHAR(40) NOT NULL
)
"""


def _id_column(engine: Engine) -> str:
    if engine.dialect.name == "sqlite":
        return "INTEGER PRIMARY KEY AUTOINCREMENT"
    return "SERIAL PRIMARY KEY"


def ensure_log_table(engine: Engine | None = None) -> None:
    """Create the query log table if it doesn't exist."""
    engine = engine or get_engine()
    key = str(engine.url)
    if key in _ensured:
        return
    with engine.connect() as conn:
        conn.execute(text(_CREATE_SQL.format(table=_TABLE, id_column=_id_column(engine))))
        conn.commit()
    _ensured.add(key)
    logger.info("Query log table '%s' ensured", _TABLE)


def log_query(
    workspace: str,
    statement: str,
    kind: str,
    row_count: int | None,
    error: str | None,
    latency_ms: int,
    engine: Engine | None = None,
) -> None:
    """Insert one row into the query log table.

    Logging must never break a query, so failures are logged and dropped.
    """
    insert_sql = text(f"""
        INSERT INTO {_TABLE}
            (workspace, statement, kind, row_count, ok, error, latency_ms, created_at)
        VALUES
            (:workspace, :statement, :kind, :row_count, :ok, :error, :latency_ms, :created_at)
    """)

    params = {
        "workspace": workspace,
        "statement": statement,
        "kind": kind,
        "row_count": row_count,
        "ok": error is None,
        "error": error,
        "latency_ms": latency_ms,
        "created_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }

    try:
        engine = engine or get_engine()
        ensure_log_table(engine)
        with engine.connect() as conn:
            conn.execute(insert_sql, params)
            conn.commit()
        logger.debug("Query logged: ws=%s statement=%s", workspace, statement[:80])
    except Exception:
        logger.exception("Failed to log query -- continuing without logging")


def recent_queries(limit: int = 50, workspace: str | None = None, engine: Engine | None = None) -> list[dict[str, Any]]:
    """Most recent log rows, newest first."""
    engine = engine or get_engine()
    ensure_log_table(engine)
    where = "WHERE workspace = :workspace" if workspace else ""
    select_sql = text(f"""
        SELECT id, workspace, statement, kind, row_count, ok, error, latency_ms, created_at
        FROM {_TABLE}
        {where}
        ORDER BY id DESC
        LIMIT :limit
    """)
    with engine.connect() as conn:
        rows = conn.execute(select_sql, {"limit": limit, "workspace": workspace}).mappings().all()
    return [dict(r) for r in rows]
