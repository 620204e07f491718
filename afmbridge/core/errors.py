"""
Exception hierarchy shared by every layer of the driver.

``QueryError`` subclasses abort the single query being prepared and leave the
shared catalog untouched.  ``CatalogPopulationFailed`` crosses the background
population boundary and is raised to every waiter of the failed catalog.
"""
from __future__ import annotations

from typing import Iterable


class AfmBridgeError(Exception):
    """Base class for all driver errors."""


# ── Query preparation ───────────────────────────────────


class QueryError(AfmBridgeError):
    """A resolution / translation problem in one query."""


class CatalogEntryNotFound(QueryError):
    pass


class DuplicateCatalogEntry(QueryError):
    pass


class UnsupportedFilterOperator(QueryError):
    def __init__(self, operator: str, kind: str, allowed: Iterable[str]):
        self.operator = operator
        self.kind = kind
        self.allowed = list(allowed)
        super().__init__(
            f"Operator '{operator}' is not supported for {kind} columns. "
            f"Only {', '.join(self.allowed)} operators are supported."
        )


class InvalidColumnFormat(QueryError):
    pass


class InvalidOrderBy(QueryError):
    pass


class ValueCoercionError(QueryError):
    pass


class SqlParseError(QueryError):
    pass


class MaqlParseError(QueryError):
    pass


# ── Catalog population ──────────────────────────────────


class CatalogPopulationFailed(AfmBridgeError):
    def __init__(self, workspace: str, reason: str):
        self.workspace = workspace
        self.reason = reason
        super().__init__(f"Catalog population for workspace '{workspace}' failed: {reason}")


# ── Cursor ──────────────────────────────────────────────


class CursorError(AfmBridgeError):
    pass


class CursorOutOfRange(CursorError):
    pass


class ColumnOutOfRange(CursorError):
    pass


# ── Transport ───────────────────────────────────────────


class BackendError(AfmBridgeError):
    """The analytical backend rejected a call or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ── Local snapshots ─────────────────────────────────────


class SnapshotError(AfmBridgeError):
    pass


class SnapshotNotFound(SnapshotError):
    pass


class SnapshotCorrupted(SnapshotError):
    pass
