"""
Catalog caching layer.

Keeps one ``Catalog`` per workspace for the lifetime of the process so the
full metadata fetch is paid once, not per connection or query.

  - get_or_create is an atomic insert-if-absent: concurrent callers for the
    same workspace share one in-flight instance and trigger one population.
  - On a miss a local snapshot is tried first; a missing or corrupted
    snapshot falls back to population in the background pool.
  - A failed background population is recorded on the Catalog (every waiter
    sees it) and the entry is evicted so a later call retries.

The cache is an explicit object owned by whoever builds connections (the API
app, a test); there is no module-level instance.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from afmbridge.backend.base import AnalyticsBackend
from afmbridge.catalog.catalog import Catalog
from afmbridge.catalog.snapshot import deserialize_catalog, serialize_catalog, snapshot_path
from afmbridge.core.config import get_settings
from afmbridge.core.errors import CatalogPopulationFailed, SnapshotError, SnapshotNotFound
from afmbridge.core.logging import get_logger

logger = get_logger(__name__)


class CatalogCache:
    """Thread-safe workspace -> Catalog cache with background population.

    Parameters
    ----------
    backend : AnalyticsBackend
        Source of workspace metadata.
    snapshot_dir : str | Path | None
        Where snapshots live; defaults to the ``snapshot_dir`` setting.
    use_snapshots : bool | None
        Restore from / write snapshots; defaults to the ``use_snapshots`` setting.
    max_workers : int | None
        Size of the population pool; defaults to ``catalog_workers``.
    wait_timeout : float | None
        Default wait for population when a catalog is read.
    """

    def __init__(
        self,
        backend: AnalyticsBackend,
        snapshot_dir: str | Path | None = None,
        use_snapshots: bool | None = None,
        max_workers: int | None = None,
        wait_timeout: float | None = None,
    ):
        settings = get_settings()
        self._backend = backend
        self._snapshot_dir = snapshot_dir if snapshot_dir is not None else settings.snapshot_dir
        self._use_snapshots = settings.use_snapshots if use_snapshots is None else use_snapshots
        self._wait_timeout = wait_timeout if wait_timeout is not None else settings.catalog_wait_timeout
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or settings.catalog_workers,
            thread_name_prefix="afmbridge-catalog",
        )
        self._catalogs: dict[str, Catalog] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._hits = 0
        self._misses = 0
        self._restores = 0
        self._populations = 0
        self._failures = 0

    @property
    def backend(self) -> AnalyticsBackend:
        return self._backend

    # ── Public API ──────────────────────────────────────

    def get_or_create(self, workspace: str) -> Catalog:
        """Return the cached catalog, creating (and populating) it on a miss.

        The returned catalog may still be populating; its read methods wait.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("CatalogCache is closed.")
            catalog = self._catalogs.get(workspace)
            if catalog is not None:
                self._hits += 1
                return catalog
            self._misses += 1

            # Restore reads local disk only and runs under the lock
            restored = self._restore(workspace)
            if restored is not None:
                self._restores += 1
                self._catalogs[workspace] = restored
                return restored

            catalog = Catalog(workspace, wait_timeout=self._wait_timeout)
            self._catalogs[workspace] = catalog
            self._pool.submit(self._populate, workspace, catalog, None)
        logger.info("Catalog population scheduled ws=%s", workspace)
        return catalog

    def get_populated(self, workspace: str, timeout: float | None = None) -> Catalog:
        """Like ``get_or_create`` but wait for population to finish."""
        catalog = self.get_or_create(workspace)
        catalog.wait_until_populated(timeout if timeout is not None else self._wait_timeout)
        return catalog

    def refresh(self, workspace: str) -> Future:
        """Populate a fresh catalog in the background and swap it in on success.

        Until the fresh one is ready, callers keep getting the current one.
        The returned future resolves to the new catalog.
        """
        fresh = Catalog(workspace, wait_timeout=self._wait_timeout)
        with self._lock:
            if self._closed:
                raise RuntimeError("CatalogCache is closed.")
            current = self._catalogs.get(workspace)
            if current is None:
                self._catalogs[workspace] = fresh
            future = self._pool.submit(self._populate, workspace, fresh, current)
        logger.info("Catalog refresh scheduled ws=%s", workspace)
        return future

    def save_snapshot(self, workspace: str) -> None:
        """Persist the cached catalog after in-place changes (metric DDL)."""
        with self._lock:
            catalog = self._catalogs.get(workspace)
        if catalog is None or not catalog.is_populated or not self._use_snapshots:
            return
        try:
            serialize_catalog(workspace, catalog, self._snapshot_dir)
        except OSError as exc:
            logger.warning("Catalog snapshot not written ws=%s: %s", workspace, exc)

    def invalidate(self, workspace: str | None = None) -> int:
        """Forget one workspace (or all) including snapshots. Returns entries removed."""
        with self._lock:
            if workspace is None:
                removed = list(self._catalogs)
                self._catalogs.clear()
            else:
                removed = [workspace] if self._catalogs.pop(workspace, None) is not None else []
        if self._use_snapshots:
            for ws in removed if workspace is None else [workspace]:
                snapshot_path(ws, self._snapshot_dir).unlink(missing_ok=True)
        return len(removed)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._catalogs),
                "hits": self._hits,
                "misses": self._misses,
                "snapshot_restores": self._restores,
                "populations": self._populations,
                "failures": self._failures,
                "workspaces": sorted(self._catalogs),
            }

    def close(self) -> None:
        """Stop the population pool; catalogs never populated fail their waiters."""
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=True, cancel_futures=True)
        with self._lock:
            pending = [c for c in self._catalogs.values() if not c.is_populated and c.error is None]
        for catalog in pending:
            catalog.mark_failed(CatalogPopulationFailed(catalog.workspace, "catalog cache closed"))

    def __enter__(self) -> CatalogCache:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ── Internals ───────────────────────────────────────

    def _restore(self, workspace: str) -> Catalog | None:
        if not self._use_snapshots:
            return None
        try:
            return deserialize_catalog(workspace, self._snapshot_dir)
        except SnapshotNotFound:
            logger.debug("No catalog snapshot ws=%s", workspace)
            return None
        except SnapshotError as exc:
            logger.warning("Ignoring catalog snapshot ws=%s: %s", workspace, exc)
            return None

    def _populate(self, workspace: str, catalog: Catalog, replaces: Catalog | None) -> Catalog:
        try:
            catalog.populate(self._backend)
        except CatalogPopulationFailed:
            with self._lock:
                self._failures += 1
                if replaces is None and self._catalogs.get(workspace) is catalog:
                    del self._catalogs[workspace]
            raise

        with self._lock:
            self._populations += 1
            if replaces is not None and self._catalogs.get(workspace) is replaces:
                self._catalogs[workspace] = catalog

        if self._use_snapshots:
            try:
                serialize_catalog(workspace, catalog, self._snapshot_dir)
            except OSError as exc:
                logger.warning("Catalog snapshot not written ws=%s: %s", workspace, exc)
        return catalog
