"""
Integration tests -- REST backend against a live analytics service.

Needs AFMBRIDGE_BACKEND_HOST, credentials (AFMBRIDGE_BACKEND_TOKEN or
username / password) and AFMBRIDGE_TEST_WORKSPACE.  Skipped otherwise.
"""
from __future__ import annotations

import os

import pytest

from afmbridge.backend.rest import RestBackend
from afmbridge.catalog.catalog import Catalog
from afmbridge.core.config import Settings
from afmbridge.driver.connection import Connection

WORKSPACE = os.environ.get("AFMBRIDGE_TEST_WORKSPACE", "")

# ── Guard: skip all tests if the backend is unreachable ──
try:
    if not (WORKSPACE and os.environ.get("AFMBRIDGE_BACKEND_HOST")):
        raise RuntimeError("live backend not configured")
    _settings = Settings(backend="rest", query_log_enabled=False)
    _backend = RestBackend(_settings)
    _backend.fetch_workspace_objects(WORKSPACE)
    BACKEND_AVAILABLE = True
except Exception:
    BACKEND_AVAILABLE = False

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not BACKEND_AVAILABLE, reason="Analytics backend not reachable"),
]


def test_catalog_population():
    catalog = Catalog(WORKSPACE)
    catalog.populate(_backend)
    assert len(catalog) > 0
    assert all(e.uri.startswith(f"/gdc/md/{WORKSPACE}/obj/") for e in catalog.afm_entries())


def test_first_metric_by_first_attribute():
    catalog = Catalog(WORKSPACE)
    catalog.populate(_backend)
    entries = catalog.afm_entries()
    metric = next(e for e in entries if e.is_metric)
    attribute = next(e for e in entries if not e.is_metric)

    with Connection(WORKSPACE, backend=_backend, settings=_settings) as conn:
        cursor = conn.statement().execute_query(
            f'SELECT [{attribute.uri}], [{metric.uri}] FROM workspace LIMIT 5'
        )
        rows = cursor.fetchall()
    assert len(rows) == cursor.row_count <= 5
