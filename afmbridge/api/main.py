"""
FastAPI application entry-point.

The catalog cache lives on ``app.state`` so every request for a workspace
shares one catalog.  ``create_app`` accepts a prebuilt cache (tests, embedding);
otherwise one is built lazily from settings on first use.
"""
from __future__ import annotations

import threading

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from afmbridge.api.routers import catalog, query
from afmbridge.catalog.cache import CatalogCache


def create_app(cache: CatalogCache | None = None) -> FastAPI:
    app = FastAPI(
        title="AFM SQL Bridge",
        version="0.1.0",
        description="SQL over analytical workspaces: titles in, AFM executions out",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.cache = cache
    app.state.cache_lock = threading.Lock()

    app.include_router(query.router, prefix="/workspaces", tags=["Query"])
    app.include_router(catalog.router, tags=["Catalog"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
