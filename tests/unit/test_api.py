"""
API tests -- FastAPI endpoints via TestClient (no live server needed).
"""
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from afmbridge.api.main import create_app
from afmbridge.backend.memory import InMemoryBackend
from afmbridge.catalog.cache import CatalogCache

WORKSPACE_MODEL = Path(__file__).resolve().parents[1] / "fixtures" / "workspace.yml"


@pytest.fixture
def api_backend():
    return InMemoryBackend.from_yaml(WORKSPACE_MODEL)


@pytest.fixture
def client(api_backend):
    cache = CatalogCache(api_backend, use_snapshots=False)
    with TestClient(create_app(cache=cache)) as c:
        yield c
    cache.close()



def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"



def test_catalog_views(client):
    resp = client.get("/workspaces/demo/catalog")
    assert resp.status_code == 200
    data = resp.json()
    assert data["view"] == "afm"
    assert [(e["title"], e["kind"]) for e in data["entries"]] == [
        ("Orders", "metric"),
        ("Product", "attributeDisplayForm"),
        ("Region", "attributeDisplayForm"),
        ("Revenue", "metric"),
    ]
    revenue = data["entries"][-1]
    assert revenue["data_type"] == "DECIMAL(13,2)"

    resp = client.get("/workspaces/demo/catalog", params={"view": "maql"})
    kinds = {e["title"]: e["kind"] for e in resp.json()["entries"]}
    assert kinds["Amount"] == "fact"
    assert kinds["Region"] == "attribute"


def test_catalog_unknown_view(client):
    assert client.get("/workspaces/demo/catalog", params={"view": "sql"}).status_code == 422


def test_catalog_population_failure(client, api_backend):
    api_backend.fail_metadata = True
    resp = client.get("/workspaces/demo/catalog")
    assert resp.status_code == 503
    assert "demo" in resp.json()["detail"]



def test_query(client):
    resp = client.post(
        "/workspaces/demo/query",
        json={"sql": "SELECT Region, Revenue FROM demo WHERE Revenue >= 320 ORDER BY Revenue DESC"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["kind"] == "query"
    assert [c["title"] for c in data["columns"]] == ["Region", "Revenue"]
    assert [(r[0], Decimal(str(r[1]))) for r in data["rows"]] == [
        ("East", Decimal("900")),
        ("North", Decimal("400")),
        ("South", Decimal("320")),
    ]
    assert data["row_count"] == 3
    assert data["total_rows"] == 3


def test_query_max_rows(client):
    resp = client.post("/workspaces/demo/query", json={"sql": "SELECT Region FROM demo", "max_rows": 2})
    data = resp.json()
    assert data["row_count"] == 2
    assert data["total_rows"] == 6


@pytest.mark.parametrize("sql", [
    "SELECT Nope FROM demo",
    "SELECT * FROM demo",
    "SELECT Region FROM demo WHERE Region > 'East'",
])
def test_query_errors(client, sql):
    resp = client.post("/workspaces/demo/query", json={"sql": sql})
    assert resp.status_code == 400


def test_unconvertible_cell_is_a_client_error(client):
    resp = client.post("/workspaces/demo/query", json={"sql": 'SELECT "Region"::INTEGER FROM demo'})
    assert resp.status_code == 400
    assert "East" in resp.json()["detail"]


def test_ambiguous_title(client):
    resp = client.post("/workspaces/dupes/query", json={"sql": "SELECT Revenue FROM dupes"})
    assert resp.status_code == 400
    assert "uniquely" in resp.json()["detail"]


def test_query_population_failure(client, api_backend):
    api_backend.fail_metadata = True
    resp = client.post("/workspaces/demo/query", json={"sql": "SELECT Region FROM demo"})
    assert resp.status_code == 503


def test_metric_definition(client):
    resp = client.post(
        "/workspaces/demo/query",
        json={"sql": 'CREATE METRIC "Avg Amount" AS SELECT AVG("Amount")'},
    )
    assert resp.status_code == 200
    assert resp.json()["kind"] == "create_metric"
    assert resp.json()["row_count"] == 1

    titles = [e["title"] for e in client.get("/workspaces/demo/catalog").json()["entries"]]
    assert "Avg Amount" in titles



def test_refresh_and_stats(client):
    client.get("/workspaces/demo/catalog")
    resp = client.post("/workspaces/demo/catalog/refresh")
    assert resp.status_code == 202
    stats = client.get("/catalog/stats").json()
    assert stats["workspaces"] == ["demo"]
    assert stats["misses"] == 1


def test_recent_queries(client):
    client.post("/workspaces/demo/query", json={"sql": "SELECT Region FROM demo"})
    resp = client.get("/workspaces/demo/queries")
    assert resp.status_code == 200
    queries = resp.json()["queries"]
    assert queries[0]["statement"] == "SELECT Region FROM demo"
    assert queries[0]["row_count"] == 6
