"""
Workspace object catalog -- resolves human-readable column titles used in SQL
to typed backend objects and translates parsed columns, filters and ORDER BY
items into AFM request fragments.

Two keyed views over the same backend objects:
  afm   (query-facing)      display forms + metrics, used by SELECT / WHERE
  maql  (definition-facing) attributes + metrics + facts, used by metric
                            definitions (CREATE / ALTER METRIC)

Both views are keyed by object URI and are replaced together, so a reader
never sees one view updated and the other stale.  Entries handed to callers
are copies; per-query datatype overrides never touch the shared instance.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from afmbridge.afm.model import (
    ComparisonCondition,
    ComparisonOperator,
    RangeCondition,
    RangeOperator,
    MeasureValueFilter,
    PositiveAttributeFilter,
    NegativeAttributeFilter,
    FilterFragment,
    AttributeSortItem,
    MeasureSortItem,
    SortItem,
    local_identifier,
)
from afmbridge.backend.base import AnalyticsBackend
from afmbridge.backend.models import MetadataObject
from afmbridge.catalog.entry import CatalogEntry, ObjectKind
from afmbridge.core.errors import (
    CatalogEntryNotFound,
    CatalogPopulationFailed,
    DuplicateCatalogEntry,
    InvalidColumnFormat,
    InvalidOrderBy,
    QueryError,
    UnsupportedFilterOperator,
)
from afmbridge.core.logging import get_logger
from afmbridge.parsing.datatypes import parse_column_with_datatype, parse_decimal
from afmbridge.parsing.maql_parser import MetricDefinition
from afmbridge.parsing.query import FilterExpression, FilterOperator, OrderByExpression

logger = get_logger(__name__)

_URI_REFERENCE_RE = re.compile(r"^\[\s*(/gdc/md/[^/\]\s]+/obj/[^/\]\s?]+)\s*\]$")
_OBJECT_URI_IN_TEXT_RE = re.compile(r"\[(/gdc/md/[^/\]\s]+/obj/[^/\]\s?]+)\]")
_ELEMENT_URI_IN_TEXT_RE = re.compile(r"\[(/gdc/md/[^/\]\s]+/obj/[^/\]\s?]+/elements\?[^\]\s]+)\]")

METRIC_FILTER_OPERATORS: tuple[FilterOperator, ...] = (
    FilterOperator.EQUAL,
    FilterOperator.NOT_EQUAL,
    FilterOperator.GREATER,
    FilterOperator.GREATER_OR_EQUAL,
    FilterOperator.LOWER,
    FilterOperator.LOWER_OR_EQUAL,
    FilterOperator.BETWEEN,
    FilterOperator.NOT_BETWEEN,
)

ATTRIBUTE_FILTER_OPERATORS: tuple[FilterOperator, ...] = (
    FilterOperator.EQUAL,
    FilterOperator.NOT_EQUAL,
    FilterOperator.IN,
    FilterOperator.NOT_IN,
)

_COMPARISON_OPERATORS: dict[FilterOperator, ComparisonOperator] = {
    FilterOperator.EQUAL: ComparisonOperator.EQUAL_TO,
    FilterOperator.NOT_EQUAL: ComparisonOperator.NOT_EQUAL_TO,
    FilterOperator.GREATER: ComparisonOperator.GREATER_THAN,
    FilterOperator.GREATER_OR_EQUAL: ComparisonOperator.GREATER_THAN_OR_EQUAL_TO,
    FilterOperator.LOWER: ComparisonOperator.LESS_THAN,
    FilterOperator.LOWER_OR_EQUAL: ComparisonOperator.LESS_THAN_OR_EQUAL_TO,
}

_RANGE_OPERATORS: dict[FilterOperator, RangeOperator] = {
    FilterOperator.BETWEEN: RangeOperator.BETWEEN,
    FilterOperator.NOT_BETWEEN: RangeOperator.NOT_BETWEEN,
}


class CatalogView(str, Enum):
    AFM = "afm"
    MAQL = "maql"


@dataclass(frozen=True)
class ResolvedFilter:
    """A WHERE predicate translated to a backend filter fragment.

    ``operator`` and ``values`` keep the parsed predicate so callers can
    rebuild the request without re-parsing.
    """
    entry: CatalogEntry
    operator: FilterOperator
    values: tuple[Any, ...]
    fragment: FilterFragment


def is_uri_reference(name: str) -> bool:
    return name.strip().startswith("[")


def parse_uri_reference(name: str) -> str:
    """Return the URI inside ``[/gdc/md/<ws>/obj/<id>]``."""
    m = _URI_REFERENCE_RE.match(name.strip())
    if not m:
        raise InvalidColumnFormat(f"Invalid URI column reference '{name}'.")
    return m.group(1)


class Catalog:
    """Metadata store and resolver for a single workspace."""

    def __init__(self, workspace: str, wait_timeout: float | None = None):
        self.workspace = workspace
        self._wait_timeout = wait_timeout
        self._afm: dict[str, CatalogEntry] = {}
        self._maql: dict[str, CatalogEntry] = {}
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._error: CatalogPopulationFailed | None = None

    @classmethod
    def from_entries(
        cls,
        workspace: str,
        afm_entries: Iterable[CatalogEntry],
        maql_entries: Iterable[CatalogEntry],
    ) -> Catalog:
        """Build an already-populated catalog (snapshot restore, tests)."""
        catalog = cls(workspace)
        catalog._replace_views(
            {e.uri: e for e in afm_entries},
            {e.uri: e for e in maql_entries},
        )
        return catalog

    # ── Population state ────────────────────────────

    @property
    def is_populated(self) -> bool:
        return self._done.is_set() and self._error is None

    @property
    def error(self) -> CatalogPopulationFailed | None:
        return self._error

    def wait_until_populated(self, timeout: float | None = None) -> None:
        """Block until population finishes; raise its error if it failed."""
        if timeout is None:
            timeout = self._wait_timeout
        if not self._done.wait(timeout):
            raise CatalogPopulationFailed(
                self.workspace, f"population did not finish within {timeout} seconds"
            )
        if self._error is not None:
            raise self._error

    def mark_failed(self, error: CatalogPopulationFailed) -> None:
        self._error = error
        self._done.set()

    def _replace_views(self, afm: dict[str, CatalogEntry], maql: dict[str, CatalogEntry]) -> None:
        with self._lock:
            self._afm = afm
            self._maql = maql
            self._error = None
        self._done.set()

    def _views(self) -> tuple[dict[str, CatalogEntry], dict[str, CatalogEntry]]:
        self.wait_until_populated()
        with self._lock:
            return self._afm, self._maql

    def _view(self, view: CatalogView) -> dict[str, CatalogEntry]:
        afm, maql = self._views()
        return afm if view is CatalogView.AFM else maql

    # ── Population ──────────────────────────────────

    def populate(self, backend: AnalyticsBackend) -> None:
        """Fetch every metric, attribute and fact and rebuild both views."""
        logger.info("Populating catalog for workspace '%s'", self.workspace)
        try:
            objects = backend.fetch_workspace_objects(self.workspace)
        except Exception as exc:
            error = CatalogPopulationFailed(self.workspace, str(exc))
            logger.exception("Catalog population failed workspace=%s", self.workspace)
            if not self._done.is_set():
                self.mark_failed(error)
            raise error from exc

        afm: dict[str, CatalogEntry] = {}
        maql: dict[str, CatalogEntry] = {}

        for metric in objects.metrics:
            entry = _metric_entry(metric)
            afm[entry.uri] = entry
            maql[entry.uri] = entry

        for attribute in objects.attributes:
            display_form = attribute.default_display_form
            if display_form is None:
                logger.info("Skipping attribute without display form title='%s'", attribute.title)
                continue
            afm[display_form.uri] = CatalogEntry.create(
                uri=display_form.uri,
                title=attribute.title,
                kind=ObjectKind.ATTRIBUTE_DISPLAY_FORM,
                identifier=display_form.identifier,
                default_display_form_uri=display_form.uri,
                attribute_uri=attribute.uri,
            )
            maql[attribute.uri] = CatalogEntry.create(
                uri=attribute.uri,
                title=attribute.title,
                kind=ObjectKind.ATTRIBUTE,
                identifier=attribute.identifier,
                default_display_form_uri=display_form.uri,
            )

        for fact in objects.facts:
            maql[fact.uri] = CatalogEntry.create(
                uri=fact.uri, title=fact.title, kind=ObjectKind.FACT, identifier=fact.identifier,
            )

        self._replace_views(afm, maql)
        logger.info(
            "Catalog population finished workspace=%s afm=%d maql=%d",
            self.workspace, len(afm), len(maql),
        )

    # ── Listings ────────────────────────────────────

    def afm_entries(self) -> list[CatalogEntry]:
        """Query-facing entries sorted by title."""
        return _sorted(self._view(CatalogView.AFM).values())

    def maql_entries(self) -> list[CatalogEntry]:
        """Definition-facing entries sorted by title."""
        return _sorted(self._view(CatalogView.MAQL).values())

    def get(self, uri: str, view: CatalogView = CatalogView.AFM) -> CatalogEntry | None:
        return self._view(view).get(uri)

    def __len__(self) -> int:
        return len(self._view(CatalogView.AFM))

    # ── Lookups ─────────────────────────────────────

    def find_by_title(self, title: str, view: CatalogView = CatalogView.AFM) -> CatalogEntry:
        wanted = title.strip().casefold()
        matches = [e for e in self._view(view).values() if e.title.casefold() == wanted]
        if len(matches) > 1:
            raise DuplicateCatalogEntry(
                f"Column name '{title}' can't be uniquely resolved. "
                f"There are {len(matches)} catalog objects with this title."
            )
        if not matches:
            raise CatalogEntryNotFound(f"Column name '{title}' doesn't exist.")
        # Entries are immutable, a copy is made whenever a caller overrides the datatype
        return matches[0]

    def find_by_uri_reference(self, reference: str, view: CatalogView = CatalogView.AFM) -> CatalogEntry:
        uri = parse_uri_reference(reference)
        entry = self._view(view).get(uri)
        if entry is None:
            raise CatalogEntryNotFound(f"Catalog object with uri '{uri}' not found.")
        return entry

    def find_column(self, name: str, view: CatalogView = CatalogView.AFM) -> CatalogEntry:
        if is_uri_reference(name):
            return self.find_by_uri_reference(name, view)
        return self.find_by_title(name, view)

    # ── Translation ─────────────────────────────────

    def resolve_columns(self, columns: list[str]) -> list[CatalogEntry]:
        """Resolve SELECT list items, in order, applying ``::TYPE`` overrides."""
        resolved: list[CatalogEntry] = []
        for raw in columns:
            name, datatype = parse_column_with_datatype(raw)
            entry = self.find_column(name)
            if datatype is not None:
                resolved.append(entry.with_datatype(datatype))
            else:
                resolved.append(entry.with_default_datatype())
        return resolved

    def resolve_filters(self, filters: list[FilterExpression]) -> list[ResolvedFilter]:
        resolved: list[ResolvedFilter] = []
        for expression in filters:
            name, _ = parse_column_with_datatype(expression.column)
            entry = self.find_column(name)
            if entry.kind is ObjectKind.METRIC:
                resolved.append(_metric_filter(entry, expression))
            elif entry.kind is ObjectKind.ATTRIBUTE_DISPLAY_FORM:
                resolved.append(_attribute_filter(entry, expression))
            elif entry.kind in (ObjectKind.ATTRIBUTE, ObjectKind.FACT):
                raise QueryError(
                    f"Column '{entry.title}' of kind '{entry.kind.value}' can't be used in WHERE."
                )
        return resolved

    def resolve_order_bys(
        self,
        order_bys: list[OrderByExpression],
        columns: list[CatalogEntry],
    ) -> list[SortItem]:
        """Translate ORDER BY items against the resolved SELECT *columns*."""
        sorts: list[SortItem] = []
        for order_by in order_bys:
            position = _order_position(order_by.column, columns)
            column = columns[position]
            direction = order_by.direction.value.lower()
            if column.kind is ObjectKind.METRIC:
                sorts.append(MeasureSortItem(direction, local_identifier(position)))
            elif column.kind is ObjectKind.ATTRIBUTE_DISPLAY_FORM:
                sorts.append(AttributeSortItem(direction, local_identifier(position)))
            elif column.kind in (ObjectKind.ATTRIBUTE, ObjectKind.FACT):
                raise InvalidOrderBy(f"ORDER BY column '{order_by.column}' can't be sorted.")
        return sorts

    # ── Metric definitions ──────────────────────────

    def add_metric(self, metric: MetadataObject) -> CatalogEntry:
        """Register a newly created metric in both views."""
        entry = _metric_entry(metric)
        with self._lock:
            afm = dict(self._afm)
            maql = dict(self._maql)
            afm[entry.uri] = entry
            maql[entry.uri] = entry
            self._afm, self._maql = afm, maql
        logger.info("Metric added to catalog title='%s' uri=%s", entry.title, entry.uri)
        return entry

    def remove_entry(self, uri: str) -> None:
        with self._lock:
            afm = {k: v for k, v in self._afm.items() if k != uri}
            maql = {k: v for k, v in self._maql.items() if k != uri}
            self._afm, self._maql = afm, maql
        logger.info("Entry removed from catalog uri=%s", uri)

    def substitute_titles(self, definition: MetricDefinition, backend: AnalyticsBackend) -> str:
        """Replace ``"Title"`` references and ``'element'`` values with backend URIs."""
        expression = definition.expression
        for title in definition.object_titles:
            entry = self.find_by_title(title, CatalogView.MAQL)
            expression = expression.replace(f'"{title}"', f"[{entry.uri}]")

        for value in definition.element_values:
            attribute_title = definition.element_attributes.get(value)
            if attribute_title is None:
                raise CatalogEntryNotFound(
                    f"The value '{value}' can't be associated with any attribute."
                )
            attribute = self.find_by_title(attribute_title, CatalogView.MAQL)
            if attribute.default_display_form_uri is None:
                raise CatalogEntryNotFound(
                    f"Object '{attribute_title}' has no display form to look up '{value}'."
                )
            lookup = backend.lookup_attribute_elements(attribute.default_display_form_uri, [value])
            element_uri = lookup.get(value)
            if not element_uri:
                raise CatalogEntryNotFound(f"The value '{value}' doesn't exist in '{attribute_title}'.")
            expression = expression.replace(f"'{value}'", f"[{element_uri}]")
        return expression

    def describe(self, expression: str, backend: AnalyticsBackend) -> str:
        """Inverse of ``substitute_titles`` -- render URIs as titles / element labels."""
        afm, maql = self._views()
        for uri in _OBJECT_URI_IN_TEXT_RE.findall(expression):
            entry = maql.get(uri) or afm.get(uri)
            if entry is not None:
                expression = expression.replace(f"[{uri}]", f'"{entry.title}"')

        for element_uri in _ELEMENT_URI_IN_TEXT_RE.findall(expression):
            path, _, query = element_uri.partition("?")
            attribute = maql.get(path.replace("/elements", ""))
            if attribute is None or attribute.default_display_form_uri is None:
                raise CatalogEntryNotFound(f"Attribute for element uri '{element_uri}' not found.")
            text = backend.get_attribute_element_text(
                f"{attribute.default_display_form_uri}/elements?{query}"
            )
            if text is not None:
                expression = expression.replace(f"[{element_uri}]", f"'{text}'")
        return expression


# ── Helpers ──────────────────────────────────────────────


def _sorted(entries: Iterable[CatalogEntry]) -> list[CatalogEntry]:
    return sorted(entries, key=lambda e: (e.title.casefold(), e.uri))


def _metric_entry(metric: MetadataObject) -> CatalogEntry:
    return CatalogEntry.create(
        uri=metric.uri, title=metric.title, kind=ObjectKind.METRIC, identifier=metric.identifier,
    )


def _operator_names(operators: Iterable[FilterOperator]) -> list[str]:
    return [op.value for op in operators]


def _metric_filter(entry: CatalogEntry, expression: FilterExpression) -> ResolvedFilter:
    operator = expression.operator
    if operator not in METRIC_FILTER_OPERATORS:
        raise UnsupportedFilterOperator(
            operator.value, "metric", _operator_names(METRIC_FILTER_OPERATORS)
        )

    if operator in _RANGE_OPERATORS:
        if len(expression.values) != 2:
            raise QueryError(
                f"{operator.value} filter on '{entry.title}' needs exactly two values."
            )
        start = parse_decimal(expression.values[0])
        end = parse_decimal(expression.values[1])
        condition: ComparisonCondition | RangeCondition = RangeCondition(
            _RANGE_OPERATORS[operator], start, end
        )
        values: tuple[Any, ...] = (start, end)
    else:
        if len(expression.values) != 1:
            raise QueryError(f"{operator.value} filter on '{entry.title}' needs exactly one value.")
        value = parse_decimal(expression.values[0])
        condition = ComparisonCondition(_COMPARISON_OPERATORS[operator], value)
        values = (value,)

    return ResolvedFilter(entry, operator, values, MeasureValueFilter(entry.uri, condition))


def _attribute_filter(entry: CatalogEntry, expression: FilterExpression) -> ResolvedFilter:
    operator = expression.operator
    if operator not in ATTRIBUTE_FILTER_OPERATORS:
        raise UnsupportedFilterOperator(
            operator.value, "attribute", _operator_names(ATTRIBUTE_FILTER_OPERATORS)
        )
    if not expression.values:
        raise QueryError(f"{operator.value} filter on '{entry.title}' needs at least one value.")

    values = tuple(expression.values)
    fragment: FilterFragment
    if operator in (FilterOperator.EQUAL, FilterOperator.IN):
        fragment = PositiveAttributeFilter(entry.uri, values)
    else:
        fragment = NegativeAttributeFilter(entry.uri, values)
    return ResolvedFilter(entry, operator, values, fragment)


def _order_position(column: str, columns: list[CatalogEntry]) -> int:
    text = column.strip()
    if text.isdigit():
        position = int(text)
        if position <= 0 or position > len(columns):
            raise InvalidOrderBy(f"ORDER BY column '{text}' is out of the SELECT list range.")
        return position - 1

    if is_uri_reference(text):
        uri = parse_uri_reference(text)
        matches = [i for i, c in enumerate(columns) if c.uri == uri]
    else:
        name, _ = parse_column_with_datatype(text)
        wanted = name.casefold()
        matches = [i for i, c in enumerate(columns) if c.title.casefold() == wanted]

    if len(matches) != 1:
        raise InvalidOrderBy(f"Can't uniquely resolve the ORDER BY column '{column}'.")
    return matches[0]
