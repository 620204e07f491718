"""
ParsedQuery -- the structured intermediate representation between SQL text
and the catalog resolver.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class FilterOperator(str, Enum):
    EQUAL = "="
    NOT_EQUAL = "<>"
    GREATER = ">"
    GREATER_OR_EQUAL = ">="
    LOWER = "<"
    LOWER_OR_EQUAL = "<="
    IN = "IN"
    NOT_IN = "NOT IN"
    BETWEEN = "BETWEEN"
    NOT_BETWEEN = "NOT BETWEEN"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class FilterExpression(BaseModel):
    column: str = Field(..., description="Column title, 'title::TYPE' or bracketed URI")
    operator: FilterOperator
    values: list[str] = Field(default_factory=list, description="Unquoted literal values")


class OrderByExpression(BaseModel):
    column: str = Field(..., description="Column title, bracketed URI or 1-based SELECT position")
    direction: SortDirection = SortDirection.ASC


class ParsedQuery(BaseModel):
    """Parsed representation of a single SELECT statement."""

    columns: list[str] = Field(default_factory=list, description="Raw SELECT list, in order")
    tables: list[str] = Field(default_factory=list)
    filters: list[FilterExpression] = Field(default_factory=list)
    order_bys: list[OrderByExpression] = Field(default_factory=list)
    limit: int | None = Field(None, description="None = unlimited")
    offset: int = Field(0, ge=0)
