"""
Backend abstraction -- the analytical service the driver talks to.

Implementations:
  memory -- local model loaded from YAML / dict (tests, offline dev)
  rest   -- the real service over HTTP (httpx)

Transport failures are raised as ``BackendError``; implementations never
swallow them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from afmbridge.afm.model import AfmRequest
from afmbridge.backend.models import (
    WorkspaceObjects,
    ExecutionHandle,
    ResultPage,
    MetadataObject,
)


class AnalyticsBackend(ABC):

    @abstractmethod
    def fetch_workspace_objects(self, workspace: str) -> WorkspaceObjects:
        """Return every metric, attribute (with default display form) and fact."""

    @abstractmethod
    def execute(self, workspace: str, request: AfmRequest) -> ExecutionHandle:
        """Submit *request*; the returned handle may still be computing."""

    @abstractmethod
    def fetch_page(self, handle: ExecutionHandle, row_offset: int, row_limit: int) -> ResultPage:
        """Fetch rows ``[row_offset, row_offset + row_limit)`` of an execution."""

    @abstractmethod
    def get_object(self, uri: str) -> MetadataObject:
        """Fetch a single metadata object (metric expression included)."""

    @abstractmethod
    def create_metric(self, workspace: str, title: str, expression: str) -> MetadataObject:
        ...

    @abstractmethod
    def update_metric(self, uri: str, expression: str) -> None:
        ...

    @abstractmethod
    def drop_metric(self, uri: str) -> None:
        ...

    @abstractmethod
    def lookup_attribute_elements(self, display_form_uri: str, values: list[str]) -> dict[str, str]:
        """Map element labels of a display form to their element URIs."""

    @abstractmethod
    def get_attribute_element_text(self, element_uri: str) -> str | None:
        ...

    def close(self) -> None:
        pass
