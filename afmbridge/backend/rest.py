"""
REST backend -- talks to the analytical service over HTTP with httpx.

Endpoints used:
  POST /gdc/account/login, GET /gdc/account/token   authentication
  GET  /gdc/md/{ws}/query/{metrics|attributes|facts} object listings
  GET  <object uri>                                  object detail
  POST /gdc/md/{ws}/obj?createAndGet=true            create metric
  POST /gdc/md/{ws}/labels                           element label -> uri
  POST /gdc/app/projects/{ws}/executeAfm             submit execution
  GET  <execution result uri>?offset=..&limit=..     poll result page

A result page answering ``202`` is still computing and is polled again;
``204`` is an empty result.
"""
from __future__ import annotations

import time
from typing import Any

import httpx

from afmbridge.afm.model import AfmRequest
from afmbridge.backend.base import AnalyticsBackend
from afmbridge.backend.models import (
    DisplayFormRef,
    ExecutionHandle,
    MetadataObject,
    ResultPage,
    WorkspaceObjects,
)
from afmbridge.core.config import Settings, get_settings
from afmbridge.core.errors import BackendError
from afmbridge.core.logging import get_logger
from afmbridge.core.utils import workspace_id_from_uri

logger = get_logger(__name__)

_MAX_MEASURE_COLUMNS = 1000
_USER_AGENT = "afmbridge/0.1"


class RestBackend(AnalyticsBackend):

    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None):
        self._settings = settings or get_settings()
        self._client = client or httpx.Client(
            base_url=self._settings.backend_host,
            timeout=self._settings.backend_timeout,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
        )
        self._element_texts: dict[str, str] = {}
        self._authenticated = False

    # ── Transport ───────────────────────────────────

    def _authenticate(self) -> None:
        if self._authenticated:
            return
        s = self._settings
        sst = s.backend_token
        if not sst and s.backend_username:
            login = self._send("POST", "/gdc/account/login", json={
                "postUserLogin": {
                    "login": s.backend_username,
                    "password": s.backend_password,
                    "remember": 0,
                    "verify_level": 2,
                }
            }, authenticate=False)
            sst = login.json()["userLogin"]["token"]
        if sst:
            token = self._send(
                "GET", "/gdc/account/token", headers={"X-GDC-AuthSST": sst}, authenticate=False
            )
            self._client.headers["X-GDC-AuthTT"] = token.json()["userToken"]["token"]
        self._authenticated = True

    def _send(self, method: str, url: str, authenticate: bool = True, **kwargs: Any) -> httpx.Response:
        if authenticate:
            self._authenticate()
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Backend request failed %s %s: %s", method, url, exc)
            raise BackendError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.error("Backend answered %d for %s %s", response.status_code, method, url)
            raise BackendError(
                f"{method} {url} failed with status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, url: str, **kwargs: Any) -> dict[str, Any]:
        return self._send("GET", url, **kwargs).json()

    def close(self) -> None:
        self._client.close()

    # ── Metadata ────────────────────────────────────

    def _query(self, workspace: str, category: str) -> list[dict[str, Any]]:
        body = self._get_json(f"/gdc/md/{workspace}/query/{category}")
        return body.get("query", {}).get("entries", [])

    def fetch_workspace_objects(self, workspace: str) -> WorkspaceObjects:
        metrics = [
            _from_entry(e, "metric") for e in self._query(workspace, "metrics")
        ]
        facts = [
            _from_entry(e, "fact") for e in self._query(workspace, "facts")
        ]
        attributes = [
            self.get_object(e["link"]) for e in self._query(workspace, "attributes")
        ]
        logger.info(
            "Fetched workspace objects ws=%s metrics=%d attributes=%d facts=%d",
            workspace, len(metrics), len(attributes), len(facts),
        )
        return WorkspaceObjects(metrics=metrics, attributes=attributes, facts=facts)

    def get_object(self, uri: str) -> MetadataObject:
        body = self._get_json(uri)
        category, payload = next(iter(body.items()))
        meta = payload.get("meta", {})
        content = payload.get("content", {})
        display_form: DisplayFormRef | None = None
        forms = content.get("displayForms") or []
        if forms:
            form_meta = forms[0].get("meta", {})
            display_form = DisplayFormRef(
                uri=form_meta["uri"],
                identifier=form_meta.get("identifier", ""),
                title=form_meta.get("title", ""),
            )
        return MetadataObject(
            uri=meta.get("uri", uri),
            title=meta.get("title", ""),
            identifier=meta.get("identifier", ""),
            category=category,
            expression=content.get("expression"),
            default_display_form=display_form,
        )

    def create_metric(self, workspace: str, title: str, expression: str) -> MetadataObject:
        body = self._send(
            "POST",
            f"/gdc/md/{workspace}/obj",
            params={"createAndGet": "true"},
            json={"metric": {"meta": {"title": title}, "content": {"expression": expression, "format": "#,##0.00"}}},
        ).json()
        meta = body["metric"]["meta"]
        return MetadataObject(
            uri=meta["uri"],
            title=meta.get("title", title),
            identifier=meta.get("identifier", ""),
            category="metric",
            expression=expression,
        )

    def update_metric(self, uri: str, expression: str) -> None:
        body = self._get_json(uri)
        body["metric"]["content"]["expression"] = expression
        self._send("PUT", uri, json=body)

    def drop_metric(self, uri: str) -> None:
        self._send("DELETE", uri)

    def lookup_attribute_elements(self, display_form_uri: str, values: list[str]) -> dict[str, str]:
        workspace = workspace_id_from_uri(display_form_uri)
        body = self._send("POST", f"/gdc/md/{workspace}/labels", json={
            "elementLabelToUri": [{"mode": "EXACT", "labelUri": display_form_uri, "patterns": list(values)}]
        }).json()
        found: dict[str, str] = {}
        for result in body["elementLabelUri"][0].get("result", []):
            for row in result.get("elementLabels", []):
                found[row["elementLabel"]] = row["uri"]
        return found

    def get_attribute_element_text(self, element_uri: str) -> str | None:
        if element_uri in self._element_texts:
            return self._element_texts[element_uri]
        elements = self._get_json(element_uri).get("attributeElements", {}).get("elements", [])
        if not elements:
            return None
        text = elements[0]["title"]
        self._element_texts[element_uri] = text
        return text

    # ── Execution ───────────────────────────────────

    def execute(self, workspace: str, request: AfmRequest) -> ExecutionHandle:
        body = self._send(
            "POST", f"/gdc/app/projects/{workspace}/executeAfm", json=request.to_execution()
        ).json()
        result_uri = body["executionResponse"]["links"]["executionResult"]
        logger.info("Submitted execution ws=%s result=%s", workspace, result_uri)
        return ExecutionHandle(
            workspace=workspace,
            result_uri=result_uri,
            dimension_count=2 if request.measures else 1,
        )

    def fetch_page(self, handle: ExecutionHandle, row_offset: int, row_limit: int) -> ResultPage:
        if handle.dimension_count == 2:
            params = {"offset": f"{row_offset},0", "limit": f"{row_limit},{_MAX_MEASURE_COLUMNS}"}
        else:
            params = {"offset": str(row_offset), "limit": str(row_limit)}

        deadline = time.monotonic() + self._settings.poll_timeout
        while True:
            response = self._send("GET", handle.result_uri, params=params)
            if response.status_code == 204:
                return ResultPage(total_rows=0, offset=row_offset, count=0)
            if response.status_code != 202:
                break
            if time.monotonic() >= deadline:
                raise BackendError(
                    f"Execution result '{handle.result_uri}' not ready after "
                    f"{self._settings.poll_timeout} seconds.",
                    status_code=202,
                )
            time.sleep(self._settings.poll_interval)

        return _parse_result(response.json(), row_offset)


# ── Response parsing ─────────────────────────────────────


def _from_entry(entry: dict[str, Any], category: str) -> MetadataObject:
    return MetadataObject(
        uri=entry["link"],
        title=entry.get("title", ""),
        identifier=entry.get("identifier", ""),
        category=category,
    )


def _parse_result(body: dict[str, Any], row_offset: int) -> ResultPage:
    result = body.get("executionResult", {})
    paging = result.get("paging", {})
    total = _first(paging.get("total"), 0)
    count = _first(paging.get("count"), 0)
    offset = _first(paging.get("offset"), row_offset)

    headers: list[list[str]] = []
    header_items = result.get("headerItems") or []
    if header_items:
        for attribute in header_items[0]:
            headers.append([
                item.get("attributeHeaderItem", {}).get("name", "") for item in attribute
            ])

    data: list[list[str | None]] = []
    if len(header_items) > 1 or not headers:
        data = [_cells(row) for row in result.get("data") or []]
    if not data:
        data = [[] for _ in range(count)]

    return ResultPage(
        total_rows=total, offset=offset, count=count, attribute_headers=headers, data=data,
    )


def _first(value: Any, default: int) -> int:
    """Paging values are per-dimension lists; rows are the first dimension."""
    if value is None:
        return default
    if isinstance(value, list):
        return int(value[0]) if value else default
    return int(value)


def _cells(row: Any) -> list[str | None]:
    # A single-dimension result carries one scalar per row instead of a list
    if not isinstance(row, list):
        row = [row]
    return [None if cell is None else str(cell) for cell in row]
