"""
ResultCursor -- scrollable, paged view over one backend execution.

The backend lays a result out as two parallel blocks: one list of labels per
selected attribute and one row of measure cells per data row.  The cursor
maps each SELECT column to its slot in one of the blocks and fetches pages on
demand, starting at whatever backend row is requested (backward seeks and
jumps re-fetch; rows already buffered never do).

Client LIMIT / OFFSET are invisible to callers: row 1 of the cursor is
backend row ``offset`` and ``row_count`` is ``min(total - offset, limit)``.
"""
from __future__ import annotations

from typing import Any, Iterator

from afmbridge.afm.model import AfmRequest
from afmbridge.backend.base import AnalyticsBackend
from afmbridge.backend.models import ResultPage
from afmbridge.catalog.entry import CatalogEntry, ObjectKind
from afmbridge.core.config import get_settings
from afmbridge.core.errors import ColumnOutOfRange, CursorOutOfRange
from afmbridge.core.logging import get_logger
from afmbridge.parsing.datatypes import parse_value

logger = get_logger(__name__)

_ATTRIBUTE_BLOCK = "attribute"
_MEASURE_BLOCK = "measure"


class ResultCursor:
    """JDBC-style cursor.  Rows are 1-based in the positioning API,
    columns are 0-based in the getters.
    """

    def __init__(
        self,
        backend: AnalyticsBackend,
        workspace: str,
        request: AfmRequest,
        columns: list[CatalogEntry],
        limit: int | None = None,
        offset: int = 0,
        page_size: int | None = None,
    ):
        self._backend = backend
        self._columns = list(columns)
        self._offset = offset
        self._page_size = page_size or get_settings().fetch_size
        self._layout = _column_layout(self._columns)
        self._row = -1

        self._handle = backend.execute(workspace, request)
        first_limit = self._page_size if limit is None else min(self._page_size, max(limit, 1))
        self._page = self._fetch(offset, first_limit)

        self._total_rows = self._page.total_rows
        available = max(0, self._total_rows - offset)
        self._row_count = available if limit is None else min(available, limit)
        logger.debug(
            "Cursor opened total=%d offset=%d limit=%s rows=%d",
            self._total_rows, offset, limit, self._row_count,
        )

    # ── Metadata ────────────────────────────────────

    @property
    def columns(self) -> list[CatalogEntry]:
        return list(self._columns)

    @property
    def column_count(self) -> int:
        return len(self._columns)

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def total_rows(self) -> int:
        """Rows the backend computed, before OFFSET / LIMIT."""
        return self._total_rows

    def find_column(self, title: str) -> int:
        wanted = title.casefold()
        for index, column in enumerate(self._columns):
            if column.title.casefold() == wanted:
                return index
        raise ColumnOutOfRange(f"Column '{title}' is not part of the result.")

    # ── Positioning ─────────────────────────────────

    @property
    def row_number(self) -> int:
        """1-based current row, 0 when not on a row."""
        return self._row + 1 if 0 <= self._row < self._row_count else 0

    def next(self) -> bool:
        if self._row < self._row_count:
            self._row += 1
        return self._row < self._row_count

    def previous(self) -> bool:
        if self._row >= 0:
            self._row -= 1
        return self._row >= 0

    def absolute(self, row: int) -> bool:
        """Move to 1-based *row* (negative counts from the end)."""
        if row < 0:
            row = self._row_count + row + 1
        if 1 <= row <= self._row_count:
            self._row = row - 1
            return True
        return False

    def relative(self, rows: int) -> bool:
        target = self._row + rows
        if 0 <= target < self._row_count:
            self._row = target
            return True
        return False

    def first(self) -> bool:
        return self.absolute(1)

    def last(self) -> bool:
        return self.absolute(self._row_count) if self._row_count else False

    def before_first(self) -> None:
        self._row = -1

    def after_last(self) -> None:
        self._row = self._row_count

    def is_before_first(self) -> bool:
        return self._row_count > 0 and self._row == -1

    def is_after_last(self) -> bool:
        return self._row_count > 0 and self._row == self._row_count

    def is_first(self) -> bool:
        return self._row_count > 0 and self._row == 0

    def is_last(self) -> bool:
        return self._row_count > 0 and self._row == self._row_count - 1

    def backend_row(self, row: int) -> int:
        """Backend-absolute index of 0-based logical *row*."""
        if not 0 <= row < self._row_count:
            raise CursorOutOfRange(f"Row {row} is outside [0, {self._row_count}).")
        return self._offset + row

    # ── Values ──────────────────────────────────────

    def get_text(self, column: int) -> str | None:
        """Raw text of *column* in the current row."""
        if not 0 <= self._row < self._row_count:
            raise CursorOutOfRange(
                f"Cursor is not on a row (row {self._row + 1} of {self._row_count})."
            )
        if not 0 <= column < len(self._columns):
            raise ColumnOutOfRange(f"Column {column} is outside [0, {len(self._columns)}).")

        absolute = self.backend_row(self._row)
        page = self._ensure_page(absolute)
        index = absolute - page.offset
        block, position = self._layout[column]
        try:
            if block == _ATTRIBUTE_BLOCK:
                return page.attribute_headers[position][index]
            return page.data[index][position]
        except IndexError:
            raise CursorOutOfRange(
                f"Backend page at offset {page.offset} has no cell for row {absolute}, column {column}."
            ) from None

    def get_value(self, column: int) -> Any:
        """Value of *column* coerced by the column's datatype."""
        return parse_value(self.get_text(column), self._columns[column].data_type)

    def get_row(self) -> tuple[Any, ...]:
        return tuple(self.get_value(i) for i in range(len(self._columns)))

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        while self.next():
            yield self.get_row()

    def fetchall(self) -> list[tuple[Any, ...]]:
        """Remaining rows from the current position."""
        return list(self)

    def close(self) -> None:
        self._row = self._row_count

    # ── Paging ──────────────────────────────────────

    def _contains(self, absolute: int) -> bool:
        return self._page.offset <= absolute < self._page.offset + self._page.count

    def _ensure_page(self, absolute: int) -> ResultPage:
        if not self._contains(absolute):
            remaining = self._offset + self._row_count - absolute
            self._page = self._fetch(absolute, min(self._page_size, remaining))
        return self._page

    def _fetch(self, absolute: int, limit: int) -> ResultPage:
        logger.debug("Fetching page offset=%d limit=%d", absolute, limit)
        return self._backend.fetch_page(self._handle, absolute, limit)


def _column_layout(columns: list[CatalogEntry]) -> list[tuple[str, int]]:
    """Per SELECT column: which block it lives in and its index there."""
    layout: list[tuple[str, int]] = []
    attributes = measures = 0
    for column in columns:
        if column.kind is ObjectKind.METRIC:
            layout.append((_MEASURE_BLOCK, measures))
            measures += 1
        elif column.kind is ObjectKind.ATTRIBUTE_DISPLAY_FORM:
            layout.append((_ATTRIBUTE_BLOCK, attributes))
            attributes += 1
        else:
            raise ColumnOutOfRange(
                f"Column '{column.title}' of kind '{column.kind.value}' has no place in a result."
            )
    return layout
