"""
Analytical execution request fragments (AFM).

Each fragment is an immutable value with a ``to_afm()`` method rendering the
JSON structure the backend expects.  ``AfmRequest`` assembles the selected
attributes, measures, filters and (optional) sorts into one execution.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from afmbridge.catalog.entry import CatalogEntry, ObjectKind

MEASURE_GROUP = "measureGroup"


def local_identifier(position: int) -> str:
    """Local identifier of the column at 0-based SELECT *position*."""
    return f"c{position}"


def _number(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


class ComparisonOperator(str, Enum):
    EQUAL_TO = "EQUAL_TO"
    NOT_EQUAL_TO = "NOT_EQUAL_TO"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL_TO = "GREATER_THAN_OR_EQUAL_TO"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL_TO = "LESS_THAN_OR_EQUAL_TO"


class RangeOperator(str, Enum):
    BETWEEN = "BETWEEN"
    NOT_BETWEEN = "NOT_BETWEEN"


# ── Filter fragments ────────────────────────────────────


@dataclass(frozen=True)
class ComparisonCondition:
    operator: ComparisonOperator
    value: Decimal

    def to_afm(self) -> dict[str, Any]:
        return {"comparison": {"operator": self.operator.value, "value": _number(self.value)}}


@dataclass(frozen=True)
class RangeCondition:
    operator: RangeOperator
    start: Decimal
    end: Decimal

    def to_afm(self) -> dict[str, Any]:
        return {
            "range": {
                "operator": self.operator.value,
                "from": _number(self.start),
                "to": _number(self.end),
            }
        }


@dataclass(frozen=True)
class MeasureValueFilter:
    measure_uri: str
    condition: ComparisonCondition | RangeCondition

    def to_afm(self) -> dict[str, Any]:
        return {
            "measureValueFilter": {
                "measure": {"uri": self.measure_uri},
                "condition": self.condition.to_afm(),
            }
        }


@dataclass(frozen=True)
class PositiveAttributeFilter:
    display_form_uri: str
    values: tuple[str, ...]

    def to_afm(self) -> dict[str, Any]:
        return {
            "positiveAttributeFilter": {
                "displayForm": {"uri": self.display_form_uri},
                "in": {"values": list(self.values)},
            }
        }


@dataclass(frozen=True)
class NegativeAttributeFilter:
    display_form_uri: str
    values: tuple[str, ...]

    def to_afm(self) -> dict[str, Any]:
        return {
            "negativeAttributeFilter": {
                "displayForm": {"uri": self.display_form_uri},
                "notIn": {"values": list(self.values)},
            }
        }


FilterFragment = Union[MeasureValueFilter, PositiveAttributeFilter, NegativeAttributeFilter]


# ── Sorts ────────────────────────────────────────────────


@dataclass(frozen=True)
class AttributeSortItem:
    direction: str  # asc | desc
    attribute_identifier: str

    def to_afm(self) -> dict[str, Any]:
        return {
            "attributeSortItem": {
                "direction": self.direction,
                "attributeIdentifier": self.attribute_identifier,
            }
        }


@dataclass(frozen=True)
class MeasureSortItem:
    direction: str  # asc | desc
    measure_identifier: str

    def to_afm(self) -> dict[str, Any]:
        return {
            "measureSortItem": {
                "direction": self.direction,
                "locators": [
                    {"measureLocatorItem": {"measureIdentifier": self.measure_identifier}}
                ],
            }
        }


SortItem = Union[AttributeSortItem, MeasureSortItem]


# ── Request ──────────────────────────────────────────────


@dataclass(frozen=True)
class AttributeItem:
    display_form_uri: str
    local_identifier: str

    def to_afm(self) -> dict[str, Any]:
        return {"displayForm": {"uri": self.display_form_uri}, "localIdentifier": self.local_identifier}


@dataclass(frozen=True)
class MeasureItem:
    metric_uri: str
    local_identifier: str
    alias: str | None = None

    def to_afm(self) -> dict[str, Any]:
        raw: dict[str, Any] = {
            "definition": {"measure": {"item": {"uri": self.metric_uri}}},
            "localIdentifier": self.local_identifier,
        }
        if self.alias:
            raw["alias"] = self.alias
        return raw


@dataclass(frozen=True)
class AfmRequest:
    attributes: tuple[AttributeItem, ...] = ()
    measures: tuple[MeasureItem, ...] = ()
    filters: tuple[FilterFragment, ...] = ()
    sorts: tuple[SortItem, ...] = field(default=())

    @classmethod
    def build(
        cls,
        columns: list[CatalogEntry],
        filters: list[FilterFragment] | None = None,
        sorts: list[SortItem] | None = None,
    ) -> AfmRequest:
        """Assemble a request from resolved SELECT columns (in SELECT order)."""
        attributes: list[AttributeItem] = []
        measures: list[MeasureItem] = []
        for position, column in enumerate(columns):
            if column.kind is ObjectKind.METRIC:
                measures.append(MeasureItem(column.uri, local_identifier(position), column.title))
            elif column.kind is ObjectKind.ATTRIBUTE_DISPLAY_FORM:
                attributes.append(AttributeItem(column.uri, local_identifier(position)))
            elif column.kind in (ObjectKind.ATTRIBUTE, ObjectKind.FACT):
                raise ValueError(
                    f"Column '{column.title}' of kind '{column.kind.value}' can't be selected."
                )
        return cls(
            attributes=tuple(attributes),
            measures=tuple(measures),
            filters=tuple(filters or ()),
            sorts=tuple(sorts or ()),
        )

    def to_execution(self) -> dict[str, Any]:
        afm: dict[str, Any] = {}
        if self.attributes:
            afm["attributes"] = [a.to_afm() for a in self.attributes]
        if self.measures:
            afm["measures"] = [m.to_afm() for m in self.measures]
        if self.filters:
            afm["filters"] = [f.to_afm() for f in self.filters]
        execution: dict[str, Any] = {"afm": afm}
        # Without sorts the backend picks the default layout: attributes x measureGroup
        if self.sorts:
            execution["resultSpec"] = {
                "dimensions": [
                    {"itemIdentifiers": [a.local_identifier for a in self.attributes]},
                    {"itemIdentifiers": [MEASURE_GROUP]},
                ],
                "sorts": [s.to_afm() for s in self.sorts],
            }
        return {"execution": execution}
