"""
Unit tests -- Connection / Statement end to end over the in-memory backend.
"""
from decimal import Decimal
from pathlib import Path

import pytest

from afmbridge.backend.memory import InMemoryBackend
from afmbridge.core.config import Settings
from afmbridge.core.errors import (
    CatalogEntryNotFound,
    DuplicateCatalogEntry,
    SqlParseError,
    UnsupportedFilterOperator,
)
from afmbridge.driver.connection import Connection, create_backend
from afmbridge.driver.statement import statement_kind

WORKSPACE_MODEL = Path(__file__).resolve().parents[1] / "fixtures" / "workspace.yml"


@pytest.fixture
def conn(backend, cache):
    c = Connection("demo", backend=backend, cache=cache, settings=Settings(query_log_enabled=False))
    yield c
    c.close()


def test_query_with_filters_and_sort(conn):
    cursor = conn.statement().execute_query(
        "SELECT Region, Revenue FROM demo "
        "WHERE Region IN ('East', 'West') AND Revenue > 60 ORDER BY 2 DESC"
    )
    assert cursor.fetchall() == [
        ("East", Decimal("900")),
        ("West", Decimal("250")),
        ("East", Decimal("100")),
    ]


def test_query_with_datatype_override_and_uri(conn):
    cursor = conn.statement().execute_query(
        "SELECT [/gdc/md/demo/obj/4], Orders::INTEGER FROM demo WHERE [/gdc/md/demo/obj/4] <> 'East'"
    )
    assert [c.title for c in cursor.columns] == ["Region", "Orders"]
    assert cursor.fetchall() == [("West", 10), ("North", 1), ("West", 2), ("South", 8)]


def test_limit_and_offset(conn):
    cursor = conn.statement().execute_query("SELECT Region, Revenue FROM demo LIMIT 2 OFFSET 1")
    assert cursor.total_rows == 6
    assert cursor.row_count == 2
    assert cursor.fetchall() == [("West", Decimal("250")), ("East", Decimal("900"))]


def test_max_rows_caps_limit(conn):
    cursor = conn.statement(max_rows=3).execute_query("SELECT Region FROM demo LIMIT 5")
    assert cursor.row_count == 3
    cursor = conn.statement(max_rows=3).execute_query("SELECT Region FROM demo LIMIT 2")
    assert cursor.row_count == 2


def test_query_errors_leave_catalog_intact(conn):
    with pytest.raises(CatalogEntryNotFound):
        conn.execute("SELECT Nope FROM demo")
    with pytest.raises(UnsupportedFilterOperator):
        conn.execute("SELECT Region FROM demo WHERE Region > 'East'")
    with pytest.raises(SqlParseError):
        conn.execute("SELECT * FROM demo")
    assert conn.execute("SELECT Region FROM demo").row_count == 6


def test_metric_lifecycle(conn, backend):
    created = conn.execute(
        "CREATE METRIC \"East Amount\" AS SELECT SUM(\"Amount\") WHERE \"Region\" = 'East'"
    )
    assert created.kind == "create_metric"
    assert created.update_count == 1
    entry = conn.catalog().find_by_title("East Amount")
    assert backend.get_object(entry.uri).expression == (
        "SELECT SUM([/gdc/md/demo/obj/7]) WHERE [/gdc/md/demo/obj/3] = [/gdc/md/demo/obj/3/elements?id=1]"
    )

    described = conn.execute('DESCRIBE METRIC "East Amount"')
    assert described.message == "SELECT SUM(\"Amount\") WHERE \"Region\" = 'East'"

    conn.execute('ALTER METRIC "East Amount" AS SELECT MAX("Amount")')
    assert backend.get_object(entry.uri).expression == "SELECT MAX([/gdc/md/demo/obj/7])"

    dropped = conn.execute('DROP METRIC "East Amount"')
    assert dropped.kind == "drop_metric"
    with pytest.raises(CatalogEntryNotFound):
        conn.catalog().find_by_title("East Amount")


def test_create_existing_metric(conn):
    with pytest.raises(DuplicateCatalogEntry):
        conn.execute('CREATE METRIC "Revenue" AS SELECT SUM("Amount")')


def test_drop_non_metric(conn):
    with pytest.raises(CatalogEntryNotFound, match="Region"):
        conn.execute('DROP METRIC "Region"')


def test_unknown_element_value(conn):
    with pytest.raises(CatalogEntryNotFound, match="doesn't exist"):
        conn.execute("CREATE METRIC \"X\" AS SELECT SUM(\"Amount\") WHERE \"Region\" = 'Mars'")


def test_statement_kind():
    assert statement_kind("SELECT 1") == "query"
    assert statement_kind('create metric "x" AS SELECT 1') == "create_metric"
    assert statement_kind('DESCRIBE METRIC "x"') == "describe_metric"


def test_connection_lifecycle(backend, cache):
    with Connection("demo", backend=backend, cache=cache, settings=Settings(query_log_enabled=False)) as c:
        assert len(c.catalog()) == 4
    assert c.closed
    with pytest.raises(RuntimeError):
        c.statement()
    # A borrowed cache stays open
    assert cache.get_or_create("demo") is not None


def test_backend_must_match_cache(cache):
    other = InMemoryBackend.from_yaml(WORKSPACE_MODEL)
    with pytest.raises(ValueError):
        Connection("demo", backend=other, cache=cache, settings=Settings(query_log_enabled=False))

    with Connection("demo", cache=cache, settings=Settings(query_log_enabled=False)) as c:
        assert c.backend is cache.backend


def test_create_backend_from_settings():
    assert isinstance(create_backend(Settings(backend="memory")), InMemoryBackend)
    with pytest.raises(ValueError):
        create_backend(Settings(backend="memory", memory_model_path=""))
    with pytest.raises(ValueError):
        create_backend(Settings(backend="carrier-pigeon"))
