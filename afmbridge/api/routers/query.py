"""POST /workspaces/{ws}/query -- run SQL or a metric definition statement."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from afmbridge.api.deps import get_catalog_cache
from afmbridge.catalog.cache import CatalogCache
from afmbridge.core.errors import (
    BackendError,
    CatalogPopulationFailed,
    CursorError,
    QueryError,
)
from afmbridge.core.logging import get_logger
from afmbridge.db.query_log import recent_queries
from afmbridge.driver.connection import Connection

logger = get_logger(__name__)
router = APIRouter()



class QueryRequest(BaseModel):
    sql: str = Field(..., min_length=1, description="SELECT or CREATE/ALTER/DROP/DESCRIBE METRIC")
    max_rows: int = Field(1000, ge=0, description="Caps the rows returned; 0 = no cap")


class ColumnResponse(BaseModel):
    title: str
    kind: str
    uri: str
    data_type: str


class QueryResponse(BaseModel):
    kind: str
    columns: list[ColumnResponse] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    row_count: int = 0
    total_rows: int | None = None
    message: str = ""
    latency_ms: int = 0



@router.post("/{workspace}/query", response_model=QueryResponse)
def run_query(workspace: str, req: QueryRequest, cache: CatalogCache = Depends(get_catalog_cache)):
    """Execute one statement against *workspace*."""
    with Connection(workspace, cache=cache) as connection:
        try:
            result = connection.statement(max_rows=req.max_rows).execute(req.sql)
        except (QueryError, CursorError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except CatalogPopulationFailed as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        except BackendError as exc:
            logger.error("Backend failure ws=%s: %s", workspace, exc)
            raise HTTPException(status_code=502, detail=str(exc))

        if result.cursor is None:
            return QueryResponse(
                kind=result.kind,
                row_count=result.row_count,
                message=result.message,
                latency_ms=result.latency_ms,
            )

        cursor = result.cursor
        try:
            rows = [list(row) for row in cursor.fetchall()]
        except (QueryError, CursorError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except BackendError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return QueryResponse(
            kind=result.kind,
            columns=[
                ColumnResponse(title=c.title, kind=c.kind.value, uri=c.uri, data_type=str(c.datatype))
                for c in cursor.columns
            ],
            rows=rows,
            row_count=cursor.row_count,
            total_rows=cursor.total_rows,
            latency_ms=result.latency_ms,
        )


@router.get("/{workspace}/queries")
def workspace_queries(workspace: str, limit: int = 50) -> dict:
    """Most recent audit log rows for *workspace*."""
    return {"workspace": workspace, "queries": recent_queries(limit=limit, workspace=workspace)}
