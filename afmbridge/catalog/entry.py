"""
Catalog entry -- one resolved backend object (display form, attribute,
metric or fact) together with its SQL-visible datatype.

Entries are immutable.  A per-query datatype override produces a modified
copy, so the instance held by a shared catalog is never changed.
"""
from __future__ import annotations

from dataclasses import dataclass, replace, asdict
from enum import Enum
from typing import Any

from afmbridge.parsing.datatypes import parse_sql_datatype, SqlDataType

DEFAULT_ATTRIBUTE_DATATYPE = "VARCHAR(255)"
DEFAULT_METRIC_DATATYPE = "DECIMAL(13,2)"


class ObjectKind(str, Enum):
    ATTRIBUTE_DISPLAY_FORM = "attributeDisplayForm"
    ATTRIBUTE = "attribute"
    METRIC = "metric"
    FACT = "fact"

    @property
    def default_datatype(self) -> str:
        if self is ObjectKind.METRIC:
            return DEFAULT_METRIC_DATATYPE
        if self in (ObjectKind.ATTRIBUTE_DISPLAY_FORM, ObjectKind.ATTRIBUTE, ObjectKind.FACT):
            return DEFAULT_ATTRIBUTE_DATATYPE
        raise ValueError(f"Unknown object kind '{self}'")


@dataclass(frozen=True)
class CatalogEntry:
    uri: str
    title: str
    kind: ObjectKind
    identifier: str
    data_type: str = DEFAULT_ATTRIBUTE_DATATYPE
    size: int = 255
    precision: int = 0
    default_display_form_uri: str | None = None
    attribute_uri: str | None = None

    @classmethod
    def create(
        cls,
        uri: str,
        title: str,
        kind: ObjectKind,
        identifier: str,
        datatype: str | None = None,
        default_display_form_uri: str | None = None,
        attribute_uri: str | None = None,
    ) -> CatalogEntry:
        """Build an entry with the kind's default datatype (or *datatype*)."""
        parsed = parse_sql_datatype(datatype or kind.default_datatype)
        return cls(
            uri=uri,
            title=title,
            kind=kind,
            identifier=identifier,
            data_type=parsed.name,
            size=parsed.size,
            precision=parsed.precision,
            default_display_form_uri=default_display_form_uri,
            attribute_uri=attribute_uri,
        )

    @property
    def datatype(self) -> SqlDataType:
        return SqlDataType(self.data_type, self.size, self.precision)

    @property
    def is_metric(self) -> bool:
        return self.kind is ObjectKind.METRIC

    def with_datatype(self, datatype: str) -> CatalogEntry:
        """Return a copy carrying *datatype* (e.g. ``"INTEGER"`` or ``"DECIMAL(15,4)"``)."""
        parsed = parse_sql_datatype(datatype)
        return replace(self, data_type=parsed.name, size=parsed.size, precision=parsed.precision)

    def with_default_datatype(self) -> CatalogEntry:
        return self.with_datatype(self.kind.default_datatype)

    # ── Serialisation ────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        raw["kind"] = self.kind.value
        return raw

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CatalogEntry:
        return cls(
            uri=raw["uri"],
            title=raw["title"],
            kind=ObjectKind(raw["kind"]),
            identifier=raw["identifier"],
            data_type=raw["data_type"],
            size=int(raw["size"]),
            precision=int(raw["precision"]),
            default_display_form_uri=raw.get("default_display_form_uri"),
            attribute_uri=raw.get("attribute_uri"),
        )
