"""
GET  /workspaces/{ws}/catalog          -- resolvable objects of a workspace
POST /workspaces/{ws}/catalog/refresh  -- re-read metadata in the background
GET  /catalog/stats                    -- cache statistics
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from afmbridge.api.deps import get_catalog_cache
from afmbridge.catalog.cache import CatalogCache
from afmbridge.catalog.catalog import CatalogView
from afmbridge.core.errors import CatalogPopulationFailed
from afmbridge.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()



class CatalogItem(BaseModel):
    uri: str
    title: str
    kind: str
    identifier: str
    data_type: str


class CatalogResponse(BaseModel):
    workspace: str
    view: str
    entries: list[CatalogItem]


class CacheStatsResponse(BaseModel):
    size: int
    hits: int
    misses: int
    snapshot_restores: int
    populations: int
    failures: int
    workspaces: list[str]



@router.get("/workspaces/{workspace}/catalog", response_model=CatalogResponse)
def workspace_catalog(
    workspace: str,
    view: CatalogView = CatalogView.AFM,
    cache: CatalogCache = Depends(get_catalog_cache),
) -> CatalogResponse:
    """Query-facing (``afm``) or definition-facing (``maql``) objects, sorted by title."""
    try:
        catalog = cache.get_populated(workspace)
    except CatalogPopulationFailed as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    entries = catalog.afm_entries() if view is CatalogView.AFM else catalog.maql_entries()
    return CatalogResponse(
        workspace=workspace,
        view=view.value,
        entries=[
            CatalogItem(
                uri=e.uri,
                title=e.title,
                kind=e.kind.value,
                identifier=e.identifier,
                data_type=str(e.datatype),
            )
            for e in entries
        ],
    )


@router.post("/workspaces/{workspace}/catalog/refresh", status_code=202)
def refresh_catalog(workspace: str, cache: CatalogCache = Depends(get_catalog_cache)) -> dict:
    """Schedule a fresh population; the current catalog keeps serving until it finishes."""
    cache.refresh(workspace)
    logger.info("Catalog refresh requested ws=%s", workspace)
    return {"workspace": workspace, "status": "scheduled"}


@router.get("/catalog/stats", response_model=CacheStatsResponse)
def cache_stats(cache: CatalogCache = Depends(get_catalog_cache)) -> CacheStatsResponse:
    return CacheStatsResponse(**cache.stats())
