"""
Integration tests -- query audit log on a throwaway SQLite database.
"""
from __future__ import annotations

import pytest
from sqlalchemy import text

from afmbridge.db.connection import build_engine
from afmbridge.db.query_log import ensure_log_table, log_query, recent_queries


@pytest.fixture
def engine(tmp_path):
    e = build_engine(f"sqlite:///{tmp_path / 'logs' / 'queries.db'}")
    yield e
    e.dispose()



def test_ensure_log_table_idempotent(engine):
    """Calling ensure_log_table() multiple times must not raise."""
    ensure_log_table(engine)
    ensure_log_table(engine)  # second call should be a no-op
    with engine.connect() as conn:
        rows = conn.execute(text(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'afmbridge_query_logs'"
        )).fetchall()
    assert len(rows) == 1


def test_log_query_inserts_row(engine):
    log_query("demo", "SELECT Region FROM demo", "query", 6, None, 12, engine=engine)

    [row] = recent_queries(engine=engine)
    assert row["workspace"] == "demo"
    assert row["statement"] == "SELECT Region FROM demo"
    assert row["kind"] == "query"
    assert row["row_count"] == 6
    assert row["ok"] in (True, 1)
    assert row["error"] is None
    assert row["latency_ms"] == 12
    assert row["created_at"]


def test_log_query_records_errors(engine):
    log_query("demo", "SELECT Nope FROM demo", "query", None, "Column name 'Nope' doesn't exist.", 3, engine=engine)

    [row] = recent_queries(engine=engine)
    assert row["ok"] in (False, 0)
    assert row["row_count"] is None
    assert "Nope" in row["error"]



def test_recent_queries_newest_first_and_filtered(engine):
    for i in range(5):
        log_query("demo", f"SELECT {i}", "query", i, None, 1, engine=engine)
    log_query("other", "SELECT x", "query", 1, None, 1, engine=engine)

    rows = recent_queries(limit=3, workspace="demo", engine=engine)
    assert [r["statement"] for r in rows] == ["SELECT 4", "SELECT 3", "SELECT 2"]
    assert len(recent_queries(engine=engine)) == 6


def test_log_query_never_raises(tmp_path):
    # A directory where the database file should be makes every connect fail
    (tmp_path / "blocked.db").mkdir()
    broken = build_engine(f"sqlite:///{tmp_path / 'blocked.db'}")
    log_query("demo", "SELECT 1", "query", 1, None, 1, engine=broken)
    broken.dispose()
