"""
Metric definition statements.

  CREATE METRIC "Name" AS <maql>[;]
  ALTER  METRIC "Name" AS <maql>[;]
  DROP     METRIC "Name"[;]
  DESCRIBE METRIC "Name"[;]

Inside a definition, double-quoted strings are object titles (metrics,
attributes, facts); single-quoted strings in the WHERE clause are attribute
element values belonging to the closest preceding quoted attribute title.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from afmbridge.core.errors import MaqlParseError

_CREATE_OR_ALTER_RE = re.compile(
    r'^\s*(create|alter)\s+metric\s+"(.*?)"\s+as\s+(.*?)\s*;?\s*$',
    re.IGNORECASE | re.DOTALL,
)
_DROP_OR_DESCRIBE_RE = re.compile(
    r'^\s*(drop|describe)\s+(metric)\s+"(.*?)"\s*;?\s*$',
    re.IGNORECASE | re.DOTALL,
)
_DEFINITION_STATEMENT_RE = re.compile(
    r"^\s*(create|alter|drop|describe)\s+metric\b", re.IGNORECASE
)
_QUOTED_TITLE_RE = re.compile(r'"(.*?)"')
_WHERE_RE = re.compile(r"\bwhere\s+(.*)$", re.IGNORECASE | re.DOTALL)
_QUOTED_TOKEN_RE = re.compile(r"""("[^"]*"|'[^']*')""")


@dataclass(frozen=True)
class MetricDefinition:
    action: str  # CREATE | ALTER
    name: str
    expression: str
    object_titles: list[str] = field(default_factory=list)
    element_values: list[str] = field(default_factory=list)
    element_attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectReference:
    action: str  # DROP | DESCRIBE
    kind: str  # METRIC
    name: str


def is_definition_statement(text: str) -> bool:
    """True for CREATE / ALTER / DROP / DESCRIBE METRIC statements."""
    return bool(_DEFINITION_STATEMENT_RE.match(text))


def parse_metric_expression(name: str, expression: str, action: str = "CREATE") -> MetricDefinition:
    titles: list[str] = []
    for title in _QUOTED_TITLE_RE.findall(expression):
        if title not in titles:
            titles.append(title)

    element_values: list[str] = []
    element_attributes: dict[str, str] = {}
    where = _WHERE_RE.search(expression)
    if where:
        leading_attribute: str | None = None
        for token in _QUOTED_TOKEN_RE.findall(where.group(1)):
            if token.startswith('"'):
                leading_attribute = token.strip('"')
                continue
            value = token.strip("'")
            if leading_attribute is None:
                raise MaqlParseError(
                    f"Wrong WHERE syntax: '{where.group(1)}'. "
                    f"The '{value}' value can't be matched with any attribute."
                )
            element_values.append(value)
            element_attributes[value] = leading_attribute

    return MetricDefinition(
        action=action.upper(),
        name=name,
        expression=expression,
        object_titles=titles,
        element_values=element_values,
        element_attributes=element_attributes,
    )


def parse_create_or_alter_metric(text: str) -> MetricDefinition:
    m = _CREATE_OR_ALTER_RE.match(text)
    if not m:
        raise MaqlParseError(
            "Wrong CREATE METRIC syntax (e.g. no quoted names of metrics or identifiers): "
            f"'{text}'"
        )
    return parse_metric_expression(m.group(2), m.group(3), action=m.group(1))


def parse_drop_or_describe(text: str) -> ObjectReference:
    m = _DROP_OR_DESCRIBE_RE.match(text)
    if not m:
        raise MaqlParseError(
            "Wrong DROP METRIC syntax (e.g. no quoted names of metrics or identifiers): "
            f"'{text}'"
        )
    return ObjectReference(action=m.group(1).upper(), kind=m.group(2).upper(), name=m.group(3))
