"""
SQL -> ParsedQuery.

Only single-table style SELECTs over the virtual workspace table are
accepted:

    SELECT "Region", "Revenue"::DECIMAL(15,2), [/gdc/md/ws/obj/12]
    FROM workspace
    WHERE "Region" IN ('East', 'West') AND "Revenue" BETWEEN 10 AND 100
    ORDER BY 2 DESC
    LIMIT 100 OFFSET 20

Bracketed object URIs are turned into quoted identifiers before sqlglot sees
them and come back out unchanged.  ``SELECT * FROM (<query>) alias ...`` (the
schema lookup some BI tools send) is answered by the inner query.
"""
from __future__ import annotations

import re

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from afmbridge.core.errors import SqlParseError
from afmbridge.core.logging import get_logger
from afmbridge.parsing.query import (
    FilterExpression,
    FilterOperator,
    OrderByExpression,
    ParsedQuery,
    SortDirection,
)

logger = get_logger(__name__)

# Quoted literals and identifiers are matched first so brackets inside them are left alone
_BRACKET_URI_RE = re.compile(
    r"'(?:[^']|'')*'"
    r"|\"(?:[^\"]|\"\")*\""
    r"|\[(/gdc/md/[^\]\s\"']+)\]"
)

_COMPARISONS: dict[type[exp.Expression], FilterOperator] = {
    exp.EQ: FilterOperator.EQUAL,
    exp.NEQ: FilterOperator.NOT_EQUAL,
    exp.GT: FilterOperator.GREATER,
    exp.GTE: FilterOperator.GREATER_OR_EQUAL,
    exp.LT: FilterOperator.LOWER,
    exp.LTE: FilterOperator.LOWER_OR_EQUAL,
}

# ``5 < x`` is read as ``x > 5``
_MIRRORED = {
    FilterOperator.EQUAL: FilterOperator.EQUAL,
    FilterOperator.NOT_EQUAL: FilterOperator.NOT_EQUAL,
    FilterOperator.GREATER: FilterOperator.LOWER,
    FilterOperator.GREATER_OR_EQUAL: FilterOperator.LOWER_OR_EQUAL,
    FilterOperator.LOWER: FilterOperator.GREATER,
    FilterOperator.LOWER_OR_EQUAL: FilterOperator.GREATER_OR_EQUAL,
}


def _quote_bracket_uri(match: re.Match) -> str:
    uri = match.group(1)
    return match.group(0) if uri is None else f'"[{uri}]"'


def parse_query(sql: str) -> ParsedQuery:
    """Parse one SELECT statement; raise ``SqlParseError`` on anything unsupported."""
    logger.debug("Parsing query '%s'", sql)
    protected = _BRACKET_URI_RE.sub(_quote_bracket_uri, sql)
    try:
        statements = [s for s in sqlglot.parse(protected) if s is not None]
    except SqlglotError as exc:
        raise SqlParseError(f"Can't parse query '{sql}': {exc}") from exc

    if len(statements) != 1:
        raise SqlParseError(f"Expected exactly one statement, got {len(statements)}.")
    statement = statements[0]
    if not isinstance(statement, exp.Select):
        raise SqlParseError(f"Only SELECT statements are supported, got '{statement.key.upper()}'.")
    return _parse_select(statement)


# ── Clauses ──────────────────────────────────────────────


def _parse_select(select: exp.Select) -> ParsedQuery:
    source = select.find(exp.From)
    if source is not None and isinstance(source.this, exp.Subquery):
        inner = source.this.this
        if not isinstance(inner, exp.Select):
            raise SqlParseError("Wrong subquery format, only a plain SELECT can be wrapped.")
        return _parse_select(inner)

    if select.args.get("joins"):
        raise SqlParseError("JOIN queries aren't supported.")
    if select.args.get("group") or select.args.get("having"):
        raise SqlParseError("GROUP BY / HAVING aren't supported, metrics are aggregated by the backend.")

    columns = [_select_item(item) for item in select.expressions]
    tables = [t.name for t in select.find_all(exp.Table)]

    filters: list[FilterExpression] = []
    where = select.args.get("where")
    if where is not None:
        for predicate in _conjuncts(where.this):
            filters.append(_filter(predicate))

    order_bys: list[OrderByExpression] = []
    order = select.args.get("order")
    if order is not None:
        for ordered in order.expressions:
            order_bys.append(OrderByExpression(
                column=_order_column(ordered.this),
                direction=SortDirection.DESC if ordered.args.get("desc") else SortDirection.ASC,
            ))

    limit = select.args.get("limit")
    offset = select.args.get("offset")
    return ParsedQuery(
        columns=columns,
        tables=tables,
        filters=filters,
        order_bys=order_bys,
        limit=_non_negative(limit.expression, "LIMIT") if limit is not None else None,
        offset=_non_negative(offset.expression, "OFFSET") if offset is not None else 0,
    )


def _select_item(item: exp.Expression) -> str:
    if isinstance(item, exp.Alias):
        item = item.this
    if isinstance(item, exp.Star) or (isinstance(item, exp.Column) and isinstance(item.this, exp.Star)):
        raise SqlParseError("SELECT * isn't supported, list the columns explicitly.")
    if isinstance(item, exp.AggFunc) or item.find(exp.AggFunc) is not None:
        raise SqlParseError(f"Aggregate functions aren't supported: '{item.sql()}'.")
    return _column_name(item)


def _column_name(node: exp.Expression) -> str:
    if isinstance(node, exp.Paren):
        return _column_name(node.this)
    if isinstance(node, exp.Column):
        return node.name
    if isinstance(node, exp.Cast) and isinstance(node.this, exp.Column):
        return f"{node.this.name}::{node.to.sql()}"
    raise SqlParseError(f"Unsupported column expression '{node.sql()}'.")


def _order_column(node: exp.Expression) -> str:
    if isinstance(node, exp.Literal) and not node.is_string:
        return node.name
    return _column_name(node)


def _non_negative(node: exp.Expression | None, clause: str) -> int:
    if not isinstance(node, exp.Literal) or node.is_string:
        raise SqlParseError(f"{clause} must be a non-negative integer.")
    try:
        value = int(node.name)
    except ValueError as exc:
        raise SqlParseError(f"{clause} must be a non-negative integer.") from exc
    if value < 0:
        raise SqlParseError(f"{clause} must be a non-negative integer.")
    return value


# ── WHERE ────────────────────────────────────────────────


def _conjuncts(node: exp.Expression) -> list[exp.Expression]:
    if isinstance(node, exp.Paren):
        return _conjuncts(node.this)
    if isinstance(node, exp.And):
        return _conjuncts(node.left) + _conjuncts(node.right)
    if isinstance(node, exp.Or):
        raise SqlParseError("OR conditions aren't supported, combine filters with AND.")
    return [node]


def _filter(node: exp.Expression) -> FilterExpression:
    if isinstance(node, exp.Not):
        inner = node.this
        if isinstance(inner, exp.Paren):
            inner = inner.this
        if isinstance(inner, exp.In):
            return _in_filter(inner, FilterOperator.NOT_IN)
        if isinstance(inner, exp.Between):
            return _between_filter(inner, FilterOperator.NOT_BETWEEN)
        raise SqlParseError(f"Unsupported NOT condition '{node.sql()}'.")

    if isinstance(node, exp.In):
        return _in_filter(node, FilterOperator.IN)
    if isinstance(node, exp.Between):
        return _between_filter(node, FilterOperator.BETWEEN)

    operator = _COMPARISONS.get(type(node))
    if operator is None:
        raise SqlParseError(f"Unsupported WHERE condition '{node.sql()}'.")
    left, right = node.left, node.right
    if _is_literal(left) and not _is_literal(right):
        left, right = right, left
        operator = _MIRRORED[operator]
    return FilterExpression(column=_column_name(left), operator=operator, values=[_literal(right)])


def _in_filter(node: exp.In, operator: FilterOperator) -> FilterExpression:
    if node.args.get("query") is not None:
        raise SqlParseError("IN (subquery) isn't supported.")
    values = [_literal(v) for v in node.expressions]
    if not values:
        raise SqlParseError(f"{operator.value} needs at least one value.")
    return FilterExpression(column=_column_name(node.this), operator=operator, values=values)


def _between_filter(node: exp.Between, operator: FilterOperator) -> FilterExpression:
    return FilterExpression(
        column=_column_name(node.this),
        operator=operator,
        values=[_literal(node.args["low"]), _literal(node.args["high"])],
    )


def _is_literal(node: exp.Expression) -> bool:
    return isinstance(node, (exp.Literal, exp.Neg, exp.Boolean))


def _literal(node: exp.Expression) -> str:
    if isinstance(node, exp.Paren):
        return _literal(node.this)
    if isinstance(node, exp.Literal):
        return node.name
    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and not node.this.is_string:
        return f"-{node.this.name}"
    if isinstance(node, exp.Boolean):
        return "true" if node.this else "false"
    raise SqlParseError(f"Expected a literal value, got '{node.sql()}'.")
