"""Loaded rows of the Records tab, with sort, filter and selection state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .clipboard import Clipboard
from .config import DEFAULT_MAX_RETAINED_ROWS
from .db.models import (
    Cell,
    OrderBy,
    PageRequest,
    ResultPage,
    Row,
    SortDirection,
    SqlRequest,
    TableRef,
    TableRequest,
)
from .errors import QueryError
from .guardrails import is_wrappable
from .logging_utils import log_extra

SORT_ICONS = {SortDirection.ASC: "↑", SortDirection.DESC: "↓"}

HALF_PAGE = 10


@dataclass(frozen=True)
class CellPos:
    row: int
    column: int


@dataclass(frozen=True)
class SelectionRange:
    """Rectangle spanned by an anchor cell and the focus cell."""

    anchor: CellPos
    focus: CellPos

    @classmethod
    def single(cls, row: int, column: int) -> SelectionRange:
        pos = CellPos(row, column)
        return cls(anchor=pos, focus=pos)

    @property
    def top(self) -> int:
        return min(self.anchor.row, self.focus.row)

    @property
    def bottom(self) -> int:
        return max(self.anchor.row, self.focus.row)

    @property
    def left(self) -> int:
        return min(self.anchor.column, self.focus.column)

    @property
    def right(self) -> int:
        return max(self.anchor.column, self.focus.column)

    @property
    def is_single(self) -> bool:
        return self.anchor == self.focus

    def contains(self, row: int, column: int) -> bool:
        return self.top <= row <= self.bottom and self.left <= column <= self.right

    def shifted(self, rows: int) -> SelectionRange:
        return SelectionRange(
            anchor=CellPos(self.anchor.row + rows, self.anchor.column),
            focus=CellPos(self.focus.row + rows, self.focus.column),
        )


@dataclass(frozen=True)
class SortSpec:
    column: int
    direction: SortDirection


class RecordTableModel:
    """Rows of one Records view.

    ``rows`` holds the retained window of the result; ``row_offset`` is the
    absolute position of its first row. Selection coordinates index into
    ``rows`` and always stay inside it.

    A statement that cannot be wrapped as a derived table (``INSERT``,
    ``PRAGMA``, ``CALL`` and the like) runs once; ``runs_once`` is set and
    the model refuses sort, filter and further pages for it.
    """

    def __init__(
        self,
        source: TableRef | str,
        max_retained_rows: int = DEFAULT_MAX_RETAINED_ROWS,
    ) -> None:
        self.source = source
        # Raises QueryError for an empty statement.
        self.runs_once = isinstance(source, str) and not is_wrappable(source)
        self.max_retained_rows = max_retained_rows
        self.headers: tuple[str, ...] = ()
        self.rows: list[Row] = []
        self.row_offset = 0
        self.has_more = False
        self.total_estimate: Optional[int] = None
        self.affected_rows: Optional[int] = None
        self.sort: Optional[SortSpec] = None
        self.filter = ""
        self.selection: Optional[SelectionRange] = None
        self.loaded = False
        self.loading_more = False
        self.error: Optional[QueryError] = None
        self._log = logging.getLogger(__name__)

    @property
    def table(self) -> Optional[TableRef]:
        return self.source if isinstance(self.source, TableRef) else None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    @property
    def next_offset(self) -> int:
        return self.row_offset + len(self.rows)

    # -- requests -------------------------------------------------------

    def request(self) -> PageRequest:
        order = None
        if self.sort is not None and self.sort.column < len(self.headers):
            order = OrderBy(self.headers[self.sort.column], self.sort.direction)
        if isinstance(self.source, TableRef):
            return TableRequest(self.source, filter=self.filter, order=order)
        return SqlRequest(self.source, filter=self.filter, order=order)

    def apply_sort(self, column: int, direction: SortDirection | None) -> Optional[PageRequest]:
        if self.runs_once:
            return None
        self.sort = None if direction is None else SortSpec(column, direction)
        self.loading_more = False
        return self.request()

    def toggle_sort(self, column: int) -> Optional[PageRequest]:
        """Cycle the sort on ``column`` through ascending, descending and off.

        Returns the request to issue, or None when the source cannot be
        re-queried.
        """
        if self.runs_once:
            return None
        if self.sort is None or self.sort.column != column:
            direction: SortDirection | None = SortDirection.ASC
        elif self.sort.direction is SortDirection.ASC:
            direction = SortDirection.DESC
        else:
            direction = None
        return self.apply_sort(column, direction)

    def apply_filter(self, text: str) -> Optional[PageRequest]:
        if self.runs_once:
            return None
        self.filter = text.strip()
        self.loading_more = False
        return self.request()

    # -- loading --------------------------------------------------------

    def load_page(self, page: ResultPage, append: bool = False) -> None:
        if append and self.loaded:
            self.rows.extend(page.rows)
            self.loading_more = False
            overflow = len(self.rows) - self.max_retained_rows
            if overflow > 0:
                del self.rows[:overflow]
                self.row_offset += overflow
                if self.selection is not None:
                    self.selection = self.selection.shifted(-overflow)
                self._log.debug(
                    "Rows evicted",
                    extra=log_extra(evicted=overflow, row_offset=self.row_offset),
                )
        else:
            self.rows = list(page.rows)
            self.row_offset = page.offset
            self.loading_more = False
            if self.selection is None and self.rows:
                self.selection = SelectionRange.single(0, 0)
        self.headers = page.headers
        self.has_more = page.has_more
        self.total_estimate = page.total_estimate
        self.affected_rows = page.affected_rows
        self.error = None
        self.loaded = True
        self._clamp_selection()

    def fail(self, error: QueryError, append: bool = False) -> None:
        self.error = error
        self.loading_more = False
        if not append:
            self.loaded = True

    def _clamp_selection(self) -> None:
        if not self.rows or not self.headers:
            self.selection = None
            return
        if self.selection is None:
            return
        self.selection = SelectionRange(
            anchor=self._clamp(self.selection.anchor),
            focus=self._clamp(self.selection.focus),
        )

    def _clamp(self, pos: CellPos) -> CellPos:
        return CellPos(
            max(0, min(pos.row, len(self.rows) - 1)),
            max(0, min(pos.column, len(self.headers) - 1)),
        )

    # -- selection ------------------------------------------------------

    @property
    def focus(self) -> Optional[CellPos]:
        return self.selection.focus if self.selection else None

    def focus_cell(self) -> Optional[Cell]:
        pos = self.focus
        if pos is None:
            return None
        return self.rows[pos.row][pos.column]

    def move(self, rows: int = 0, columns: int = 0) -> bool:
        """Move the focus, collapsing the selection to one cell.

        Returns True when the move ran past the last loaded row and the next
        page should be requested.
        """
        if self.selection is None:
            return False
        target = CellPos(self.selection.focus.row + rows, self.selection.focus.column + columns)
        wants_more = self._wants_more(target.row)
        pos = self._clamp(target)
        self.selection = SelectionRange(anchor=pos, focus=pos)
        return wants_more

    def extend(self, rows: int = 0, columns: int = 0) -> bool:
        if self.selection is None:
            return False
        target = CellPos(self.selection.focus.row + rows, self.selection.focus.column + columns)
        wants_more = self._wants_more(target.row)
        self.selection = replace(self.selection, focus=self._clamp(target))
        return wants_more

    def move_to(self, row: int | None = None, column: int | None = None) -> bool:
        if self.selection is None:
            return False
        focus = self.selection.focus
        return self.move(
            0 if row is None else row - focus.row,
            0 if column is None else column - focus.column,
        )

    def scroll_to_top(self) -> None:
        self.move_to(row=0)

    def scroll_to_bottom(self) -> bool:
        return self.move_to(row=len(self.rows))

    def half_page(self, down: bool = True) -> bool:
        return self.move(HALF_PAGE if down else -HALF_PAGE)

    def head_of_line(self) -> None:
        self.move_to(column=0)

    def tail_of_line(self) -> None:
        self.move_to(column=len(self.headers) - 1)

    def select_row(self) -> None:
        if self.selection is None:
            return
        row = self.selection.focus.row
        self.selection = SelectionRange(
            anchor=CellPos(row, 0), focus=CellPos(row, len(self.headers) - 1)
        )

    def _wants_more(self, target_row: int) -> bool:
        if target_row < len(self.rows) or not self.has_more or self.loading_more:
            return False
        if self.runs_once:
            return False
        self.loading_more = True
        return True

    # -- copy -----------------------------------------------------------

    def focus_text(self) -> Optional[str]:
        cell = self.focus_cell()
        if cell is None:
            return None
        return "" if cell.is_null else cell.display

    def copy_value(self, clipboard: Clipboard) -> Optional[str]:
        text = self.focus_text()
        if text is not None:
            clipboard.set_text(text)
        return text

    def selected_text(self) -> Optional[str]:
        """The selection rectangle as tab-separated lines."""
        if self.selection is None:
            return None
        sel = self.selection
        lines = []
        for row in self.rows[sel.top:sel.bottom + 1]:
            lines.append(
                "\t".join("" if c.is_null else c.display for c in row[sel.left:sel.right + 1])
            )
        return "\n".join(lines)

    def copy_selection(self, clipboard: Clipboard) -> Optional[str]:
        text = self.selected_text()
        if text is not None:
            clipboard.set_text(text)
        return text

    # -- presentation ---------------------------------------------------

    def header_labels(self) -> list[str]:
        labels = list(self.headers)
        if self.sort is not None and self.sort.column < len(labels):
            labels[self.sort.column] = f"{labels[self.sort.column]} {SORT_ICONS[self.sort.direction]}"
        return labels

    def position_label(self) -> str:
        if self.selection is None:
            return "0/0"
        total = self.total_estimate if self.total_estimate is not None else self.next_offset
        suffix = "+" if self.has_more and self.total_estimate is None else ""
        return f"{self.row_offset + self.selection.focus.row + 1}/{total}{suffix}"
