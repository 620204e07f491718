"""
Statement -- runs SQL queries and metric definition statements.

  SELECT ...                 parse -> resolve -> AFM request -> ResultCursor
  CREATE / ALTER METRIC      MAQL with titles replaced by object URIs
  DROP / DESCRIBE METRIC

Every ``execute`` call is timed and written to the query audit log.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from afmbridge.afm.model import AfmRequest
from afmbridge.catalog.catalog import Catalog, CatalogView
from afmbridge.catalog.entry import CatalogEntry, ObjectKind
from afmbridge.core.errors import AfmBridgeError, CatalogEntryNotFound, DuplicateCatalogEntry
from afmbridge.core.logging import get_logger
from afmbridge.core.utils import timer
from afmbridge.cursor.result_cursor import ResultCursor
from afmbridge.db.query_log import log_query
from afmbridge.parsing.maql_parser import (
    is_definition_statement,
    parse_create_or_alter_metric,
    parse_drop_or_describe,
)
from afmbridge.parsing.sql_parser import parse_query

if TYPE_CHECKING:
    from afmbridge.driver.connection import Connection

logger = get_logger(__name__)

_LEADING_KEYWORD_RE = re.compile(r"^\s*(\w+)", re.IGNORECASE)


@dataclass
class QueryResult:
    kind: str  # query | create_metric | alter_metric | drop_metric | describe_metric
    cursor: ResultCursor | None = None
    message: str = ""
    update_count: int = 0
    latency_ms: int = 0

    @property
    def row_count(self) -> int:
        return self.cursor.row_count if self.cursor is not None else self.update_count


def statement_kind(sql: str) -> str:
    if is_definition_statement(sql):
        return f"{_LEADING_KEYWORD_RE.match(sql).group(1).lower()}_metric"
    return "query"


class Statement:

    def __init__(self, connection: Connection, max_rows: int = 0, fetch_size: int | None = None):
        self._connection = connection
        self.max_rows = max_rows
        self.fetch_size = fetch_size or connection.settings.fetch_size

    @property
    def workspace(self) -> str:
        return self._connection.workspace

    # ── Queries ─────────────────────────────────────

    def execute_query(self, sql: str) -> ResultCursor:
        """Run a SELECT and return a cursor over its rows."""
        parsed = parse_query(sql)
        catalog = self._connection.catalog()

        columns = catalog.resolve_columns(parsed.columns)
        filters = catalog.resolve_filters(parsed.filters)
        sorts = catalog.resolve_order_bys(parsed.order_bys, columns)
        request = AfmRequest.build(columns, [f.fragment for f in filters], sorts)

        limit = parsed.limit
        if self.max_rows > 0:
            limit = self.max_rows if limit is None else min(limit, self.max_rows)

        logger.info(
            "Executing query ws=%s columns=%d filters=%d sorts=%d limit=%s offset=%d",
            self.workspace, len(columns), len(filters), len(sorts), limit, parsed.offset,
        )
        return ResultCursor(
            self._connection.backend,
            self.workspace,
            request,
            columns,
            limit=limit,
            offset=parsed.offset,
            page_size=self.fetch_size,
        )

    def execute(self, sql: str) -> QueryResult:
        """Run any supported statement and record it in the audit log."""
        kind = statement_kind(sql)
        try:
            with timer() as t:
                if kind == "query":
                    result = QueryResult(kind, cursor=self.execute_query(sql))
                else:
                    result = self._execute_definition(sql, kind)
        except AfmBridgeError as exc:
            self._audit(sql, kind, None, str(exc), t["elapsed_ms"])
            raise

        result.latency_ms = t["elapsed_ms"]
        self._audit(sql, kind, result.row_count, None, result.latency_ms)
        return result

    # ── Metric definitions ──────────────────────────

    def describe_metric(self, title: str) -> str:
        """MAQL of metric *title* with object URIs rendered back as titles."""
        catalog = self._connection.catalog()
        entry = _metric(catalog, title)
        metric = self._connection.backend.get_object(entry.uri)
        return catalog.describe(metric.expression or "", self._connection.backend)

    def _execute_definition(self, sql: str, kind: str) -> QueryResult:
        catalog = self._connection.catalog()
        backend = self._connection.backend

        if kind in ("create_metric", "alter_metric"):
            definition = parse_create_or_alter_metric(sql)
            expression = catalog.substitute_titles(definition, backend)
            if kind == "create_metric":
                try:
                    catalog.find_by_title(definition.name, CatalogView.MAQL)
                except CatalogEntryNotFound:
                    pass
                else:
                    raise DuplicateCatalogEntry(f"Object '{definition.name}' already exists.")
                metric = backend.create_metric(self.workspace, definition.name, expression)
                catalog.add_metric(metric)
                message = f"Metric '{definition.name}' created ({metric.uri})."
            else:
                entry = _metric(catalog, definition.name)
                backend.update_metric(entry.uri, expression)
                message = f"Metric '{definition.name}' altered ({entry.uri})."
            self._connection.cache.save_snapshot(self.workspace)
            logger.info(message)
            return QueryResult(kind, message=message, update_count=1)

        reference = parse_drop_or_describe(sql)
        if reference.action == "DESCRIBE":
            return QueryResult(kind, message=self.describe_metric(reference.name))

        entry = _metric(catalog, reference.name)
        backend.drop_metric(entry.uri)
        catalog.remove_entry(entry.uri)
        self._connection.cache.save_snapshot(self.workspace)
        message = f"Metric '{reference.name}' dropped ({entry.uri})."
        logger.info(message)
        return QueryResult(kind, message=message, update_count=1)

    # ── Audit ───────────────────────────────────────

    def _audit(self, sql: str, kind: str, row_count: int | None, error: str | None, latency_ms: int) -> None:
        if not self._connection.settings.query_log_enabled:
            return
        log_query(self.workspace, sql, kind, row_count, error, latency_ms)


def _metric(catalog: Catalog, title: str) -> CatalogEntry:
    entry = catalog.find_by_title(title, CatalogView.MAQL)
    if entry.kind is not ObjectKind.METRIC:
        raise CatalogEntryNotFound(f"Metric '{title}' doesn't exist ('{title}' is of kind '{entry.kind.value}').")
    return entry
