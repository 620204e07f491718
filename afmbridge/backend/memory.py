"""
In-memory analytical backend.

Loads a workspace model from YAML (or a plain dict) and executes AFM
requests locally over its fact rows:

    workspaces:
      demo:
        metrics:
          - title: Revenue
            expression: SELECT SUM("Amount")
        attributes:
          - title: Region
            display_forms:
              - title: Region name
        facts:
          - title: Amount
        rows:
          - {Region: East, Revenue: 100}

Rows are keyed by object title.  Execution projects the selected
attributes and metrics, applies attribute / measure-value filters and sorts,
and keeps the row order of the model otherwise (no aggregation).
Pages are capped at ``max_page_size`` rows regardless of the requested limit.
"""
from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from afmbridge.afm.model import (
    AfmRequest,
    AttributeSortItem,
    ComparisonCondition,
    ComparisonOperator,
    MeasureSortItem,
    MeasureValueFilter,
    NegativeAttributeFilter,
    PositiveAttributeFilter,
    RangeOperator,
)
from afmbridge.backend.base import AnalyticsBackend
from afmbridge.backend.models import (
    DisplayFormRef,
    ExecutionHandle,
    MetadataObject,
    ResultPage,
    WorkspaceObjects,
)
from afmbridge.core.errors import BackendError
from afmbridge.core.logging import get_logger
from afmbridge.core.utils import workspace_id_from_uri

logger = get_logger(__name__)

DEFAULT_MAX_PAGE_SIZE = 1000


# ── Model ────────────────────────────────────────────────


@dataclass
class _Workspace:
    name: str
    metrics: dict[str, MetadataObject] = field(default_factory=dict)
    attributes: dict[str, MetadataObject] = field(default_factory=dict)
    facts: dict[str, MetadataObject] = field(default_factory=dict)
    display_forms: dict[str, str] = field(default_factory=dict)  # display form uri -> attribute uri
    rows: list[dict[str, Any]] = field(default_factory=list)
    ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def next_uri(self) -> str:
        return f"/gdc/md/{self.name}/obj/{next(self.ids)}"

    def attribute_for(self, uri: str) -> MetadataObject | None:
        """Resolve an attribute from its own URI or one of its display form URIs."""
        if uri in self.attributes:
            return self.attributes[uri]
        attribute_uri = self.display_forms.get(uri)
        return self.attributes.get(attribute_uri) if attribute_uri else None

    def elements(self, attribute: MetadataObject) -> list[str]:
        """Distinct labels of *attribute* in first-seen row order."""
        seen: list[str] = []
        for row in self.rows:
            value = row.get(attribute.title)
            if value is not None and str(value) not in seen:
                seen.append(str(value))
        return seen


def _parse_workspace(name: str, raw: dict[str, Any]) -> _Workspace:
    ws = _Workspace(name=name)

    for m in raw.get("metrics", []) or []:
        uri = ws.next_uri()
        ws.metrics[uri] = MetadataObject(
            uri=uri,
            title=m["title"],
            identifier=m.get("identifier", f"metric.{uri.rsplit('/', 1)[-1]}"),
            category="metric",
            expression=m.get("expression"),
        )

    for a in raw.get("attributes", []) or []:
        uri = ws.next_uri()
        display_form: DisplayFormRef | None = None
        for df in a.get("display_forms", []) or []:
            df_uri = ws.next_uri()
            ws.display_forms[df_uri] = uri
            ref = DisplayFormRef(
                uri=df_uri,
                identifier=df.get("identifier", f"label.{df_uri.rsplit('/', 1)[-1]}"),
                title=df.get("title", a["title"]),
            )
            if display_form is None or df.get("default", False):
                display_form = ref
        ws.attributes[uri] = MetadataObject(
            uri=uri,
            title=a["title"],
            identifier=a.get("identifier", f"attr.{uri.rsplit('/', 1)[-1]}"),
            category="attribute",
            default_display_form=display_form,
        )

    for f in raw.get("facts", []) or []:
        uri = ws.next_uri()
        ws.facts[uri] = MetadataObject(
            uri=uri,
            title=f["title"],
            identifier=f.get("identifier", f"fact.{uri.rsplit('/', 1)[-1]}"),
            category="fact",
        )

    ws.rows = [dict(r) for r in raw.get("rows", []) or []]
    return ws


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _cell(value: Any) -> str | None:
    return None if value is None else str(value)


_COMPARISONS = {
    ComparisonOperator.EQUAL_TO: lambda a, b: a == b,
    ComparisonOperator.NOT_EQUAL_TO: lambda a, b: a != b,
    ComparisonOperator.GREATER_THAN: lambda a, b: a > b,
    ComparisonOperator.GREATER_THAN_OR_EQUAL_TO: lambda a, b: a >= b,
    ComparisonOperator.LESS_THAN: lambda a, b: a < b,
    ComparisonOperator.LESS_THAN_OR_EQUAL_TO: lambda a, b: a <= b,
}


# ── Backend ──────────────────────────────────────────────


class InMemoryBackend(AnalyticsBackend):
    """Local backend over a YAML workspace model; used for tests and offline work."""

    def __init__(self, model: dict[str, Any], max_page_size: int | None = None):
        self._workspaces = {
            name: _parse_workspace(name, raw or {})
            for name, raw in (model.get("workspaces") or {}).items()
        }
        self.max_page_size = max_page_size or model.get("max_page_size", DEFAULT_MAX_PAGE_SIZE)
        self._results: dict[str, list[tuple[list[str], list[str | None]]]] = {}
        self._result_ids = itertools.count(1)
        self._lock = threading.Lock()

        self.fail_metadata = False
        self.metadata_calls = 0
        self.executions = 0
        self.page_fetches = 0
        self.page_requests: list[tuple[int, int]] = []
        self.last_request: AfmRequest | None = None

    @classmethod
    def from_yaml(cls, path: str | Path, max_page_size: int | None = None) -> InMemoryBackend:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        logger.info("Loaded in-memory model from %s", path)
        return cls(raw, max_page_size=max_page_size)

    def _workspace(self, workspace: str) -> _Workspace:
        ws = self._workspaces.get(workspace)
        if ws is None:
            raise BackendError(f"Workspace '{workspace}' not found.", status_code=404)
        return ws

    def _workspace_of(self, uri: str) -> _Workspace:
        object_uri = uri.partition("?")[0].replace("/elements", "")
        try:
            workspace = workspace_id_from_uri(object_uri)
        except ValueError as exc:
            raise BackendError(str(exc), status_code=400) from exc
        return self._workspace(workspace)

    # ── Metadata ────────────────────────────────────

    def fetch_workspace_objects(self, workspace: str) -> WorkspaceObjects:
        with self._lock:
            self.metadata_calls += 1
        if self.fail_metadata:
            raise BackendError(f"Metadata of workspace '{workspace}' unavailable.", status_code=503)
        ws = self._workspace(workspace)
        return WorkspaceObjects(
            metrics=list(ws.metrics.values()),
            attributes=list(ws.attributes.values()),
            facts=list(ws.facts.values()),
        )

    def get_object(self, uri: str) -> MetadataObject:
        ws = self._workspace_of(uri)
        for objects in (ws.metrics, ws.attributes, ws.facts):
            if uri in objects:
                return objects[uri]
        raise BackendError(f"Object '{uri}' not found.", status_code=404)

    def create_metric(self, workspace: str, title: str, expression: str) -> MetadataObject:
        ws = self._workspace(workspace)
        with self._lock:
            uri = ws.next_uri()
            metric = MetadataObject(
                uri=uri,
                title=title,
                identifier=f"metric.{uri.rsplit('/', 1)[-1]}",
                category="metric",
                expression=expression,
            )
            ws.metrics[uri] = metric
        return metric

    def update_metric(self, uri: str, expression: str) -> None:
        ws = self._workspace_of(uri)
        with self._lock:
            metric = ws.metrics.get(uri)
            if metric is None:
                raise BackendError(f"Metric '{uri}' not found.", status_code=404)
            ws.metrics[uri] = metric.model_copy(update={"expression": expression})

    def drop_metric(self, uri: str) -> None:
        ws = self._workspace_of(uri)
        with self._lock:
            if ws.metrics.pop(uri, None) is None:
                raise BackendError(f"Metric '{uri}' not found.", status_code=404)

    def lookup_attribute_elements(self, display_form_uri: str, values: list[str]) -> dict[str, str]:
        ws = self._workspace_of(display_form_uri)
        attribute = ws.attribute_for(display_form_uri)
        if attribute is None:
            raise BackendError(f"Display form '{display_form_uri}' not found.", status_code=404)
        elements = ws.elements(attribute)
        return {
            value: f"{attribute.uri}/elements?id={elements.index(value) + 1}"
            for value in values
            if value in elements
        }

    def get_attribute_element_text(self, element_uri: str) -> str | None:
        path, _, query = element_uri.partition("?")
        ws = self._workspace_of(path)
        attribute = ws.attribute_for(path.replace("/elements", ""))
        if attribute is None or not query.startswith("id="):
            return None
        elements = ws.elements(attribute)
        try:
            index = int(query[len("id="):]) - 1
        except ValueError:
            return None
        return elements[index] if 0 <= index < len(elements) else None

    # ── Execution ───────────────────────────────────

    def execute(self, workspace: str, request: AfmRequest) -> ExecutionHandle:
        ws = self._workspace(workspace)
        titles = self._titles(ws, request)
        rows = [r for r in ws.rows if self._matches(ws, r, request)]
        rows = self._sort(rows, request, titles)

        result = [
            (
                [_cell(row.get(titles[a.local_identifier])) or "" for a in request.attributes],
                [_cell(row.get(titles[m.local_identifier])) for m in request.measures],
            )
            for row in rows
        ]
        with self._lock:
            self.executions += 1
            self.last_request = request
            result_uri = f"/gdc/app/projects/{workspace}/executionResults/{next(self._result_ids)}"
            self._results[result_uri] = result
        logger.info("Executed request workspace=%s rows=%d", workspace, len(result))
        return ExecutionHandle(workspace=workspace, result_uri=result_uri)

    def fetch_page(self, handle: ExecutionHandle, row_offset: int, row_limit: int) -> ResultPage:
        result = self._results.get(handle.result_uri)
        if result is None:
            raise BackendError(f"Execution result '{handle.result_uri}' not found.", status_code=404)

        limit = max(0, min(row_limit, self.max_page_size))
        rows = result[row_offset:row_offset + limit]
        with self._lock:
            self.page_fetches += 1
            self.page_requests.append((row_offset, row_limit))

        width = len(rows[0][0]) if rows else 0
        return ResultPage(
            total_rows=len(result),
            offset=row_offset,
            count=len(rows),
            attribute_headers=[[labels[i] for labels, _ in rows] for i in range(width)],
            data=[cells for _, cells in rows],
        )

    # ── Helpers ─────────────────────────────────────

    @staticmethod
    def _titles(ws: _Workspace, request: AfmRequest) -> dict[str, str]:
        """Map local identifiers to the row keys (object titles)."""
        titles: dict[str, str] = {}
        for a in request.attributes:
            attribute = ws.attribute_for(a.display_form_uri)
            if attribute is None:
                raise BackendError(f"Display form '{a.display_form_uri}' not found.", status_code=400)
            titles[a.local_identifier] = attribute.title
        for m in request.measures:
            metric = ws.metrics.get(m.metric_uri)
            if metric is None:
                raise BackendError(f"Metric '{m.metric_uri}' not found.", status_code=400)
            titles[m.local_identifier] = metric.title
        return titles

    @staticmethod
    def _matches(ws: _Workspace, row: dict[str, Any], request: AfmRequest) -> bool:
        for f in request.filters:
            if isinstance(f, (PositiveAttributeFilter, NegativeAttributeFilter)):
                attribute = ws.attribute_for(f.display_form_uri)
                if attribute is None:
                    raise BackendError(f"Display form '{f.display_form_uri}' not found.", status_code=400)
                label = _cell(row.get(attribute.title))
                inside = label in f.values
                if isinstance(f, PositiveAttributeFilter) and not inside:
                    return False
                if isinstance(f, NegativeAttributeFilter) and inside:
                    return False
            elif isinstance(f, MeasureValueFilter):
                metric = ws.metrics.get(f.measure_uri)
                if metric is None:
                    raise BackendError(f"Metric '{f.measure_uri}' not found.", status_code=400)
                value = _decimal(row.get(metric.title))
                if value is None:
                    return False
                condition = f.condition
                if isinstance(condition, ComparisonCondition):
                    if not _COMPARISONS[condition.operator](value, condition.value):
                        return False
                else:
                    inside = condition.start <= value <= condition.end
                    if inside != (condition.operator is RangeOperator.BETWEEN):
                        return False
        return True

    @staticmethod
    def _sort(rows: list[dict[str, Any]], request: AfmRequest, titles: dict[str, str]) -> list[dict[str, Any]]:
        # Stable sorts applied last-to-first give ORDER BY semantics
        for item in reversed(request.sorts):
            reverse = item.direction == "desc"
            if isinstance(item, AttributeSortItem):
                title = titles[item.attribute_identifier]
                rows = sorted(rows, key=lambda r: _cell(r.get(title)) or "", reverse=reverse)
            elif isinstance(item, MeasureSortItem):
                title = titles[item.measure_identifier]
                rows = sorted(
                    rows,
                    key=lambda r: (_decimal(r.get(title)) is not None, _decimal(r.get(title)) or Decimal(0)),
                    reverse=reverse,
                )
        return rows
