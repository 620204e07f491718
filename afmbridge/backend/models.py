"""
Wire-level objects exchanged with the analytical backend.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class DisplayFormRef(BaseModel):
    uri: str
    identifier: str
    title: str = ""


class MetadataObject(BaseModel):
    """A metric, attribute or fact definition as reported by the backend."""

    uri: str
    title: str
    identifier: str
    category: str = Field(..., description="metric | attribute | fact")
    expression: str | None = None
    default_display_form: DisplayFormRef | None = None


class WorkspaceObjects(BaseModel):
    metrics: list[MetadataObject] = Field(default_factory=list)
    attributes: list[MetadataObject] = Field(default_factory=list)
    facts: list[MetadataObject] = Field(default_factory=list)


class ExecutionHandle(BaseModel):
    """Opaque token for a submitted execution, later fetched page by page."""

    workspace: str
    result_uri: str
    dimension_count: int = 2


class ResultPage(BaseModel):
    """One backend-materialised slice of an execution result.

    ``attribute_headers`` holds one list of labels per selected attribute
    (each ``count`` long); ``data`` holds one list of measure cells per row.
    """

    total_rows: int = 0
    offset: int = 0
    count: int = 0
    attribute_headers: list[list[str]] = Field(default_factory=list)
    data: list[list[str | None]] = Field(default_factory=list)


class AttributeElement(BaseModel):
    title: str
    uri: str
