"""
Unit tests -- CatalogEntry value semantics.
"""
import dataclasses

import pytest

from afmbridge.catalog.entry import CatalogEntry, ObjectKind


def _metric() -> CatalogEntry:
    return CatalogEntry.create("/gdc/md/ws/obj/1", "Revenue", ObjectKind.METRIC, "metric.revenue")


def test_metric_default_datatype():
    entry = _metric()
    assert str(entry.datatype) == "DECIMAL(13,2)"
    assert entry.is_metric


@pytest.mark.parametrize("kind", [ObjectKind.ATTRIBUTE_DISPLAY_FORM, ObjectKind.ATTRIBUTE, ObjectKind.FACT])
def test_non_metric_default_datatype(kind):
    entry = CatalogEntry.create("/gdc/md/ws/obj/2", "Region", kind, "x")
    assert str(entry.datatype) == "VARCHAR(255)"


def test_with_datatype_returns_copy():
    entry = _metric()
    overridden = entry.with_datatype("INTEGER")
    assert overridden.data_type == "INTEGER"
    assert entry.data_type == "DECIMAL"
    assert overridden is not entry


def test_entry_is_immutable():
    entry = _metric()
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.title = "Other"  # type: ignore[misc]


def test_dict_round_trip():
    entry = CatalogEntry.create(
        "/gdc/md/ws/obj/4", "Region", ObjectKind.ATTRIBUTE_DISPLAY_FORM, "label.region",
        default_display_form_uri="/gdc/md/ws/obj/4", attribute_uri="/gdc/md/ws/obj/3",
    )
    raw = entry.to_dict()
    assert raw["kind"] == "attributeDisplayForm"
    assert CatalogEntry.from_dict(raw) == entry
