"""
Scalar literal coercion and SQL datatype parsing.

Column references may carry an explicit type annotation, e.g.
``Revenue::DECIMAL(15,4)``.  The annotation is split off here and parsed into
a ``(name, size, precision)`` triple; literal strings coming from WHERE
clauses and from backend result cells are converted to Python values.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from afmbridge.core.errors import InvalidColumnFormat, ValueCoercionError

_DATATYPE_RE = re.compile(
    r"^\s*([a-zA-Z]+)\s*(?:\(\s*([0-9]+)\s*(?:,\s*([0-9]+)\s*)?\))?\s*$"
)

_PYTHON_TYPES: dict[str, type] = {
    "VARCHAR": str,
    "CHAR": str,
    "NUMERIC": Decimal,
    "DECIMAL": Decimal,
    "DOUBLE": float,
    "FLOAT": float,
    "INTEGER": int,
    "INT": int,
    "DATE": datetime.date,
    "TIME": datetime.time,
    "DATETIME": datetime.datetime,
    "TIMESTAMP": datetime.datetime,
}

# Spellings normalised to one canonical name
_ALIASES = {"INT": "INTEGER"}

_TRUE_VALUES = ("1", "true", "t")
_FALSE_VALUES = ("0", "false", "f")


@dataclass(frozen=True)
class SqlDataType:
    name: str
    size: int = 0
    precision: int = 0

    def __str__(self) -> str:
        if self.size and self.precision:
            return f"{self.name}({self.size},{self.precision})"
        if self.size:
            return f"{self.name}({self.size})"
        return self.name


# ── Datatypes ────────────────────────────────────────────


def parse_sql_datatype(text: str) -> SqlDataType:
    """Parse ``NAME``, ``NAME(size)`` or ``NAME(size, precision)``."""
    m = _DATATYPE_RE.match(text or "")
    if not m:
        raise InvalidColumnFormat(f"Invalid datatype format '{text}'.")
    name = m.group(1).upper()
    name = _ALIASES.get(name, name)
    if name not in _PYTHON_TYPES:
        raise InvalidColumnFormat(
            f"Data type '{name}' is not supported. "
            f"Allowed: {', '.join(sorted(_PYTHON_TYPES))}"
        )
    size = int(m.group(2)) if m.group(2) else 0
    precision = int(m.group(3)) if m.group(3) else 0
    return SqlDataType(name=name, size=size, precision=precision)


def python_type_for(datatype_name: str) -> type:
    try:
        return _PYTHON_TYPES[datatype_name.upper()]
    except KeyError:
        raise InvalidColumnFormat(f"Data type '{datatype_name}' is not supported.") from None


def parse_column_with_datatype(raw: str) -> tuple[str, str | None]:
    """Split ``name::TYPE`` into ``(name, TYPE)``; ``(name, None)`` without a suffix."""
    if "::" not in raw:
        return raw.strip(), None
    parts = [p.strip() for p in raw.split("::")]
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidColumnFormat(f"Invalid column name format '{raw}'.")
    return parts[0], parts[1]


# ── Scalars ──────────────────────────────────────────────


def parse_decimal(text: str) -> Decimal:
    try:
        value = Decimal(text.strip())
    except (InvalidOperation, AttributeError):
        raise ValueCoercionError(f"The value '{text}' can't be converted to a number.") from None
    if not value.is_finite():
        raise ValueCoercionError(f"The value '{text}' can't be converted to a number.")
    return value


def parse_int(text: str) -> int:
    try:
        return int(text.strip())
    except (ValueError, AttributeError):
        raise ValueCoercionError(f"The value '{text}' can't be converted to an integer.") from None


def parse_float(text: str) -> float:
    try:
        return float(text.strip())
    except (ValueError, AttributeError):
        raise ValueCoercionError(f"The value '{text}' can't be converted to a float.") from None


def parse_boolean(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueCoercionError(f"The value '{text}' can't be converted to boolean.")


def parse_value(text: str | None, datatype_name: str) -> Any:
    """Convert a backend cell / header label to the Python type of *datatype_name*."""
    if text is None:
        return None
    target = python_type_for(datatype_name)
    if target is str:
        return text
    if target is Decimal:
        return parse_decimal(text)
    if target is int:
        # Metric cells come back as decimals ("12.00"), INTEGER overrides truncate them.
        return int(parse_decimal(text))
    if target is float:
        return parse_float(text)
    try:
        if target is datetime.datetime:
            return datetime.datetime.fromisoformat(text.strip())
        if target is datetime.date:
            return datetime.date.fromisoformat(text.strip())
        return datetime.time.fromisoformat(text.strip())
    except ValueError:
        raise ValueCoercionError(
            f"The value '{text}' can't be converted to {datatype_name.upper()}."
        ) from None
