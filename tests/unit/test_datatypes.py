"""
Unit tests -- datatype parsing and scalar coercion.
"""
import datetime
from decimal import Decimal

import pytest

from afmbridge.core.errors import InvalidColumnFormat, ValueCoercionError
from afmbridge.parsing.datatypes import (
    SqlDataType,
    parse_sql_datatype,
    parse_column_with_datatype,
    parse_decimal,
    parse_int,
    parse_float,
    parse_boolean,
    parse_value,
    python_type_for,
)


def test_plain_datatype():
    assert parse_sql_datatype("varchar") == SqlDataType("VARCHAR", 0, 0)


def test_datatype_with_size_and_precision():
    dt = parse_sql_datatype(" DECIMAL( 15 , 4 ) ")
    assert dt == SqlDataType("DECIMAL", 15, 4)
    assert str(dt) == "DECIMAL(15,4)"


def test_int_is_normalised_to_integer():
    assert parse_sql_datatype("INT").name == "INTEGER"


def test_unknown_datatype_rejected():
    with pytest.raises(InvalidColumnFormat):
        parse_sql_datatype("BLOB")


def test_malformed_datatype_rejected():
    with pytest.raises(InvalidColumnFormat):
        parse_sql_datatype("DECIMAL(13,")


def test_column_without_datatype():
    assert parse_column_with_datatype("Revenue") == ("Revenue", None)


def test_column_with_datatype():
    assert parse_column_with_datatype("Revenue::DECIMAL(13,2)") == ("Revenue", "DECIMAL(13,2)")


def test_column_with_empty_datatype_rejected():
    with pytest.raises(InvalidColumnFormat):
        parse_column_with_datatype("Revenue::")


def test_python_types():
    assert python_type_for("varchar") is str
    assert python_type_for("DECIMAL") is Decimal
    assert python_type_for("INTEGER") is int
    assert python_type_for("DATE") is datetime.date


def test_scalar_parsers():
    assert parse_decimal(" 12.50 ") == Decimal("12.50")
    assert parse_int("7") == 7
    assert parse_float("1.5") == 1.5
    assert parse_boolean("TRUE") is True
    assert parse_boolean("0") is False


@pytest.mark.parametrize("parser, text", [
    (parse_decimal, "abc"),
    (parse_decimal, "NaN"),
    (parse_int, "1.5"),
    (parse_float, "x"),
    (parse_boolean, "maybe"),
])
def test_scalar_parsers_reject_garbage(parser, text):
    with pytest.raises(ValueCoercionError):
        parser(text)


def test_parse_value_by_datatype():
    assert parse_value("East", "VARCHAR") == "East"
    assert parse_value("12.00", "INTEGER") == 12
    assert parse_value("12.5", "DECIMAL") == Decimal("12.5")
    assert parse_value("2024-03-01", "DATE") == datetime.date(2024, 3, 1)
    assert parse_value(None, "DECIMAL") is None


def test_parse_value_bad_date():
    with pytest.raises(ValueCoercionError):
        parse_value("yesterday", "DATE")
