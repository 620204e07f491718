"""
Unit tests -- REST backend against a mocked httpx transport.
"""
from decimal import Decimal

import httpx
import pytest

from afmbridge.afm.model import AfmRequest
from afmbridge.backend.rest import RestBackend
from afmbridge.catalog.entry import CatalogEntry, ObjectKind
from afmbridge.core.config import Settings
from afmbridge.core.errors import BackendError
from afmbridge.cursor.result_cursor import ResultCursor

HOST = "https://backend.test"
RESULT_URI = "/gdc/app/projects/ws/executionResults/42"

REGION = CatalogEntry.create("/gdc/md/ws/obj/4", "Region", ObjectKind.ATTRIBUTE_DISPLAY_FORM, "label.4")
REVENUE = CatalogEntry.create("/gdc/md/ws/obj/1", "Revenue", ObjectKind.METRIC, "metric.1")


def _settings(**overrides):
    values = {"backend_host": HOST, "poll_interval": 0, "poll_timeout": 5}
    values.update(overrides)
    return Settings(**values)


def _backend(handler, **overrides):
    client = httpx.Client(base_url=HOST, transport=httpx.MockTransport(handler))
    return RestBackend(_settings(**overrides), client=client)


def _result(labels, cells, offset, total):
    return {
        "executionResult": {
            "headerItems": [
                [[{"attributeHeaderItem": {"name": label, "uri": f"/e/{label}"}} for label in labels]],
                [[{"measureHeaderItem": {"name": "Revenue", "order": 0}}]],
            ],
            "data": [[c] for c in cells],
            "paging": {"count": [len(labels), 1], "offset": [offset, 0], "total": [total, 1]},
        }
    }


# ── Metadata ─────────────────────────────────────────────


def test_fetch_workspace_objects():
    def handler(request):
        path = request.url.path
        if path == "/gdc/md/ws/query/metrics":
            return httpx.Response(200, json={"query": {"entries": [
                {"link": "/gdc/md/ws/obj/1", "title": "Revenue", "identifier": "metric.1"},
            ]}})
        if path == "/gdc/md/ws/query/facts":
            return httpx.Response(200, json={"query": {"entries": []}})
        if path == "/gdc/md/ws/query/attributes":
            return httpx.Response(200, json={"query": {"entries": [{"link": "/gdc/md/ws/obj/3"}]}})
        if path == "/gdc/md/ws/obj/3":
            return httpx.Response(200, json={"attribute": {
                "meta": {"uri": "/gdc/md/ws/obj/3", "title": "Region", "identifier": "attr.3"},
                "content": {"displayForms": [
                    {"meta": {"uri": "/gdc/md/ws/obj/4", "title": "Region name", "identifier": "label.4"}},
                ]},
            }})
        return httpx.Response(404)

    objects = _backend(handler).fetch_workspace_objects("ws")
    assert [m.title for m in objects.metrics] == ["Revenue"]
    region = objects.attributes[0]
    assert (region.title, region.category) == ("Region", "attribute")
    assert region.default_display_form.uri == "/gdc/md/ws/obj/4"
    assert objects.facts == []


def test_error_status_raises():
    backend = _backend(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(BackendError) as excinfo:
        backend.get_object("/gdc/md/ws/obj/1")
    assert excinfo.value.status_code == 500


def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(BackendError):
        _backend(handler).get_object("/gdc/md/ws/obj/1")


def test_token_authentication():
    seen = []

    def handler(request):
        seen.append((request.url.path, request.headers.get("X-GDC-AuthSST"), request.headers.get("X-GDC-AuthTT")))
        if request.url.path == "/gdc/account/token":
            return httpx.Response(200, json={"userToken": {"token": "tt-1"}})
        return httpx.Response(200, json={"metric": {"meta": {"uri": "/gdc/md/ws/obj/1", "title": "Revenue"}}})

    backend = _backend(handler, backend_token="sst-1")
    backend.get_object("/gdc/md/ws/obj/1")
    backend.get_object("/gdc/md/ws/obj/1")
    assert seen == [
        ("/gdc/account/token", "sst-1", None),
        ("/gdc/md/ws/obj/1", None, "tt-1"),
        ("/gdc/md/ws/obj/1", None, "tt-1"),
    ]


def test_elements():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path == "/gdc/md/ws/labels":
            return httpx.Response(200, json={"elementLabelUri": [{"result": [{"elementLabels": [
                {"elementLabel": "East", "uri": "/gdc/md/ws/obj/3/elements?id=1"},
            ]}]}]})
        return httpx.Response(200, json={"attributeElements": {"elements": [{"title": "East"}]}})

    backend = _backend(handler)
    assert backend.lookup_attribute_elements("/gdc/md/ws/obj/4", ["East", "Mars"]) == {
        "East": "/gdc/md/ws/obj/3/elements?id=1",
    }
    assert backend.get_attribute_element_text("/gdc/md/ws/obj/4/elements?id=1") == "East"
    assert backend.get_attribute_element_text("/gdc/md/ws/obj/4/elements?id=1") == "East"
    assert calls.count("/gdc/md/ws/obj/4/elements") == 1


# ── Execution ────────────────────────────────────────────


def test_execute_and_poll():
    polls = []

    def handler(request):
        if request.method == "POST":
            assert request.url.path == "/gdc/app/projects/ws/executeAfm"
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        polls.append(dict(request.url.params))
        if len(polls) == 1:
            return httpx.Response(202)
        return httpx.Response(200, json=_result(["East", "West"], ["100", "250"], 0, 6))

    backend = _backend(handler)
    handle = backend.execute("ws", AfmRequest.build([REGION, REVENUE]))
    assert handle.dimension_count == 2
    page = backend.fetch_page(handle, 0, 2)

    assert polls == [{"offset": "0,0", "limit": "2,1000"}] * 2
    assert (page.total_rows, page.offset, page.count) == (6, 0, 2)
    assert page.attribute_headers == [["East", "West"]]
    assert page.data == [["100"], ["250"]]


def test_attribute_only_execution_uses_one_dimension():
    params = []

    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        params.append(dict(request.url.params))
        return httpx.Response(200, json={"executionResult": {
            "headerItems": [[[{"attributeHeaderItem": {"name": "East"}}]]],
            "paging": {"count": [1], "offset": [3], "total": [4]},
        }})

    backend = _backend(handler)
    page = backend.fetch_page(backend.execute("ws", AfmRequest.build([REGION])), 3, 10)
    assert params == [{"offset": "3", "limit": "10"}]
    assert page.attribute_headers == [["East"]]
    assert page.data == [[]]


def test_empty_result():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        return httpx.Response(204)

    backend = _backend(handler)
    page = backend.fetch_page(backend.execute("ws", AfmRequest.build([REGION, REVENUE])), 0, 10)
    assert (page.total_rows, page.count) == (0, 0)


def test_poll_timeout():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        return httpx.Response(202)

    backend = _backend(handler, poll_timeout=0)
    handle = backend.execute("ws", AfmRequest.build([REGION, REVENUE]))
    with pytest.raises(BackendError, match="not ready"):
        backend.fetch_page(handle, 0, 10)


def test_cursor_pages_through_rest_results():
    rows = [("East", "100"), ("West", "250"), ("North", "400"), ("South", "320"), ("East", "900")]

    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        offset = int(request.url.params["offset"].split(",")[0])
        limit = int(request.url.params["limit"].split(",")[0])
        chunk = rows[offset:offset + min(limit, 2)]
        return httpx.Response(200, json=_result([r[0] for r in chunk], [r[1] for r in chunk], offset, len(rows)))

    cursor = ResultCursor(
        _backend(handler), "ws", AfmRequest.build([REGION, REVENUE]), [REGION, REVENUE],
        limit=3, offset=1, page_size=10,
    )
    assert cursor.row_count == 3
    assert [row[0] for row in cursor.fetchall()] == ["West", "North", "South"]


def test_measures_only_result_with_scalar_rows():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"executionResponse": {"links": {"executionResult": RESULT_URI}}})
        return httpx.Response(200, json={"executionResult": {
            "headerItems": [[]],
            "data": [10, 20],
            "paging": {"count": [2], "offset": [0], "total": [2]},
        }})

    backend = _backend(handler)
    request = AfmRequest.build([REVENUE])
    page = backend.fetch_page(backend.execute("ws", request), 0, 10)
    assert page.data == [["10"], ["20"]]
    assert page.attribute_headers == []

    cursor = ResultCursor(backend, "ws", request, [REVENUE], page_size=10)
    assert [row[0] for row in cursor.fetchall()] == [Decimal("10"), Decimal("20")]
