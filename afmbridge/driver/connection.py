"""
Connection -- entry point of the driver for one workspace.

Owns (or borrows) a backend and a ``CatalogCache``.  Creating a connection
kicks off catalog population in the background; the first statement that
needs metadata waits for it.
"""
from __future__ import annotations

from typing import Any

from afmbridge.backend.base import AnalyticsBackend
from afmbridge.backend.memory import InMemoryBackend
from afmbridge.backend.rest import RestBackend
from afmbridge.catalog.cache import CatalogCache
from afmbridge.catalog.catalog import Catalog
from afmbridge.core.config import Settings, get_settings
from afmbridge.core.logging import get_logger
from afmbridge.driver.statement import QueryResult, Statement

logger = get_logger(__name__)


def create_backend(settings: Settings | None = None) -> AnalyticsBackend:
    """Build the backend selected by the ``backend`` setting."""
    settings = settings or get_settings()
    if settings.backend == "rest":
        return RestBackend(settings)
    if settings.backend == "memory":
        if not settings.memory_model_path:
            raise ValueError("AFMBRIDGE_MEMORY_MODEL_PATH must point to a workspace model file.")
        return InMemoryBackend.from_yaml(settings.memory_model_path)
    raise ValueError(f"Unknown backend '{settings.backend}', expected 'memory' or 'rest'.")


class Connection:

    def __init__(
        self,
        workspace: str,
        backend: AnalyticsBackend | None = None,
        cache: CatalogCache | None = None,
        settings: Settings | None = None,
    ):
        self.workspace = workspace
        self.settings = settings or get_settings()
        self._owns_backend = False
        if cache is not None and backend is not None and backend is not cache.backend:
            raise ValueError("The backend must be the one the catalog cache populates from.")
        if backend is None and cache is not None:
            backend = cache.backend
        elif backend is None:
            backend = create_backend(self.settings)
            self._owns_backend = True
        self.backend = backend
        self._owns_cache = cache is None
        self.cache = cache or CatalogCache(backend)
        self._closed = False
        self.cache.get_or_create(workspace)
        logger.info("Connection opened ws=%s backend=%s", workspace, type(backend).__name__)

    def catalog(self, timeout: float | None = None) -> Catalog:
        """The workspace catalog, waiting for population if needed."""
        self._check_open()
        return self.cache.get_populated(self.workspace, timeout)

    def statement(self, max_rows: int = 0, fetch_size: int | None = None) -> Statement:
        self._check_open()
        return Statement(self, max_rows=max_rows, fetch_size=fetch_size)

    def execute(self, sql: str) -> QueryResult:
        return self.statement().execute(sql)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_cache:
            self.cache.close()
        if self._owns_backend:
            self.backend.close()
        logger.info("Connection closed ws=%s", self.workspace)

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Connection is closed.")

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
