"""
Shared fixtures.  Settings are pointed at a throwaway directory before any
driver module is imported, so tests never touch ~/.afmbridge.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

FIXTURES = Path(__file__).resolve().parent / "fixtures"
WORKSPACE_MODEL = FIXTURES / "workspace.yml"

_TMP = Path(tempfile.mkdtemp(prefix="afmbridge-tests-"))
os.environ.setdefault("AFMBRIDGE_SNAPSHOT_DIR", str(_TMP / "snapshots"))
os.environ.setdefault("AFMBRIDGE_QUERY_LOG_URL", f"sqlite:///{_TMP / 'queries.db'}")
os.environ.setdefault("AFMBRIDGE_MEMORY_MODEL_PATH", str(WORKSPACE_MODEL))
os.environ.setdefault("AFMBRIDGE_LOG_LEVEL", "WARNING")

from afmbridge.backend.memory import InMemoryBackend  # noqa: E402
from afmbridge.catalog.cache import CatalogCache  # noqa: E402
from afmbridge.catalog.catalog import Catalog  # noqa: E402


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend.from_yaml(WORKSPACE_MODEL)


@pytest.fixture
def catalog(backend) -> Catalog:
    c = Catalog("demo")
    c.populate(backend)
    return c


@pytest.fixture
def cache(backend, tmp_path):
    c = CatalogCache(backend, snapshot_dir=tmp_path, use_snapshots=False, max_workers=2)
    yield c
    c.close()
