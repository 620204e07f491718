"""Shared request dependencies."""
from __future__ import annotations

from fastapi import Request

from afmbridge.catalog.cache import CatalogCache
from afmbridge.driver.connection import create_backend


def get_catalog_cache(request: Request) -> CatalogCache:
    """The app-wide catalog cache, built from settings on first use."""
    state = request.app.state
    if state.cache is None:
        with state.cache_lock:
            if state.cache is None:
                state.cache = CatalogCache(create_backend())
    return state.cache
