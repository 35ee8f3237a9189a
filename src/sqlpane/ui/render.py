"""Formatted-text rendering of the navigator state.

Every function returns prompt_toolkit style fragments (``(style, text)``
pairs) computed from the navigator alone, so a frame can be built and
inspected without a terminal.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple

from prompt_toolkit.styles import Style

from ..db.models import METADATA_RECORDS, Tab
from ..keymap import ACTION_DESCRIPTIONS, Mode
from ..navigation import Focus, Navigator, Overlay, SlotStatus, TableView

Fragments = List[Tuple[str, str]]

MAX_CELL_WIDTH = 30

TAB_LABELS = {
    Tab.RECORDS: "Records",
    Tab.COLUMNS: "Columns",
    Tab.CONSTRAINTS: "Constraints",
    Tab.FOREIGN_KEYS: "Foreign keys",
    Tab.INDEXES: "Indexes",
}

_SLOT_MARKS = {
    SlotStatus.CONNECTING: "…",
    SlotStatus.CONNECTED: "●",
    SlotStatus.RECONNECT_REQUIRED: "!",
    SlotStatus.FAILED: "x",
}

style = Style.from_dict(
    {
        "title": "bold underline",
        "menu": "bold",
        "selected": "reverse",
        "error": "fg:red bold",
        "success": "fg:green bold",
        "hint": "fg:#888888",
        "header": "bold",
    }
)


def _clip(text: str, width: int) -> str:
    text = text.replace("\n", " ").replace("\t", " ")
    if len(text) > width:
        return text[:max(width - 1, 0)] + "…"
    return text.ljust(width)


def render_connections(nav: Navigator) -> Fragments:
    result: Fragments = [("class:title", "Connections\n")]
    focused = nav.focus is Focus.CONNECTION_LIST and not nav.overlays
    for i, connection_id in enumerate(nav.connection_cursor.items):
        slot = nav.slots[connection_id]
        selected = i == nav.connection_cursor.index
        prefix = "➤ " if selected else "  "
        mark = _SLOT_MARKS.get(slot.status, " ")
        style_name = "class:selected" if focused and selected else ""
        result.append((style_name, f"{prefix}{mark} {slot.descriptor.display_name}\n"))
    return result


def render_tables(nav: Navigator, height: int = 40) -> Fragments:
    width = nav.left_panel_width
    result: Fragments = [("class:title", _clip("Tables", width) + "\n")]
    cursor = nav.table_cursor
    if not cursor.items:
        result.append(("class:hint", _clip("(no tables)", width) + "\n"))
        return result
    focused = nav.focus is Focus.TABLE_LIST
    start = max(0, min(cursor.index - height // 2, len(cursor.items) - height))
    for i in range(start, min(len(cursor.items), start + height)):
        table = cursor.items[i]
        selected = i == cursor.index
        style_name = "class:selected" if focused and selected else ""
        result.append((style_name, _clip(table.label, width) + "\n"))
    return result


def _column_widths(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[int]:
    widths = [len(h) for h in headers]
    for row in rows:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(value))
    return [min(max(w, 1), MAX_CELL_WIDTH) for w in widths]


def _visible_columns(widths: Sequence[int], focus_column: int, width: int) -> range:
    """The window of columns that fits ``width`` and includes the focus."""
    start = 0
    while start < focus_column and sum(w + 1 for w in widths[start:focus_column + 1]) > width:
        start += 1
    end = start
    used = 0
    while end < len(widths) and used + widths[end] + 1 <= max(width, widths[start] + 1):
        used += widths[end] + 1
        end += 1
    return range(start, max(end, start + 1))


def render_grid(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    selected: Optional[Callable[[int, int], bool]] = None,
    focus_row: int = 0,
    focus_column: int = 0,
    width: int = 120,
    height: int = 30,
) -> Fragments:
    result: Fragments = []
    if not headers:
        return result
    widths = _column_widths(headers, rows)
    columns = _visible_columns(widths, focus_column, width)
    line = " ".join(_clip(headers[c], widths[c]) for c in columns)
    result.append(("class:header", line + "\n"))
    start = max(0, min(focus_row - height // 2, len(rows) - height))
    for r in range(start, min(len(rows), start + height)):
        for c in columns:
            cell_style = "class:selected" if selected is not None and selected(r, c) else ""
            result.append((cell_style, _clip(rows[r][c], widths[c])))
            result.append(("", " "))
        result.append(("", "\n"))
    return result


def render_records(view: TableView, width: int = 120, height: int = 30) -> Fragments:
    model = view.records
    result: Fragments = []
    if model.filter:
        result.append(("class:hint", f"WHERE {model.filter}\n"))
    if model.error is not None:
        result.append(("class:error", f"{model.error.kind}: {model.error}\n"))
    if not model.loaded:
        result.append(("class:hint", "loading…\n"))
        return result
    if model.affected_rows is not None and not model.headers:
        result.append(("class:success", f"{model.affected_rows} row(s) affected\n"))
        return result
    rows = [[cell.display for cell in row] for row in model.rows]
    focus = model.focus
    selection = model.selection
    result.extend(
        render_grid(
            model.header_labels(),
            rows,
            selected=selection.contains if selection is not None else None,
            focus_row=focus.row if focus else 0,
            focus_column=focus.column if focus else 0,
            width=width,
            height=height,
        )
    )
    if not model.rows:
        result.append(("class:hint", "(no rows)\n"))
    return result


def render_metadata(nav: Navigator, view: TableView, width: int = 120, height: int = 30) -> Fragments:
    error = view.metadata_errors.get(view.tab)
    if error is not None:
        return [("class:error", f"{error.kind}: {error}\n")]
    records = nav.metadata_for(view, view.tab)
    if records is None:
        return [("class:hint", "loading…\n")]
    index = view.metadata_cursor.get(view.tab, 0)
    rows = [list(record.as_row()) for record in records]
    return render_grid(
        METADATA_RECORDS[view.tab].HEADERS,
        rows,
        selected=lambda r, c: r == index,
        focus_row=index,
        width=width,
        height=height,
    ) or [("class:hint", "(none)\n")]


def render_tab_bar(view: TableView) -> Fragments:
    result: Fragments = []
    for number, tab in enumerate(Tab, start=1):
        style_name = "class:selected" if tab is view.tab else "class:menu"
        result.append((style_name, f" {number} {TAB_LABELS[tab]} "))
        result.append(("", " "))
    result.append(("", "\n"))
    return result


def render_view(nav: Navigator, width: int = 120, height: int = 30) -> Fragments:
    view = nav.active_view
    if view is None:
        return [("class:hint", "Select a table\n")]
    title = view.table.label if view.table is not None else "SQL"
    result: Fragments = [("class:title", f"{title}\n")]
    result.extend(render_tab_bar(view))
    if view.tab is Tab.RECORDS:
        result.extend(render_records(view, width, height))
    else:
        result.extend(render_metadata(nav, view, width, height))
    return result


def render_help(nav: Navigator) -> Fragments:
    result: Fragments = [("class:title", "Help\n")]
    for mode in (Mode.CONNECTION_LIST, Mode.TABLE_LIST, Mode.RECORD_VIEW, Mode.FILTER_INPUT):
        result.append(("class:menu", f"\n[{mode.value}]\n"))
        seen = {}
        for chord, action in nav.keymap.bindings_for(mode):
            seen.setdefault(action, []).append(chord)
        for action, chords in seen.items():
            keys = ", ".join(chords)
            result.append(("", f"  {keys:<16} {ACTION_DESCRIPTIONS[action]}\n"))
    result.append(("class:hint", "\nPress ? or Esc to close\n"))
    return result


def render_status(nav: Navigator) -> Fragments:
    slot = nav.active_slot
    parts: Fragments = []
    if slot is not None:
        parts.append(("class:menu", f" {slot.descriptor.display_name} "))
        if slot.status is SlotStatus.RECONNECT_REQUIRED:
            parts.append(("class:error", " reconnect required "))
    view = nav.active_view
    if view is not None and view.tab is Tab.RECORDS:
        parts.append(("", f" {view.records.position_label()} "))
    if nav.status_message:
        parts.append(("class:hint", f" {nav.status_message} "))
    parts.append(("class:hint", f" [{nav.mode.value}] ? help"))
    return parts


def render_frame(nav: Navigator, width: int = 120, height: int = 40) -> Fragments:
    """The whole screen for the current state, top to bottom."""
    body_height = max(height - 4, 1)
    top = nav.overlays[-1] if nav.overlays else None
    if top is Overlay.HELP:
        return render_help(nav)
    if top is Overlay.ERROR:
        return [("class:error", "Error\n"), ("", f"{nav.error_message}\n"), ("class:hint", "\nPress Esc to close\n")]

    result: Fragments = []
    if nav.focus is Focus.CONNECTION_LIST or nav.active_slot is None:
        result.extend(render_connections(nav))
    else:
        left = render_tables(nav, body_height)
        right = render_view(nav, max(width - nav.left_panel_width - 3, 10), body_height)
        result.extend(_side_by_side(left, right, nav.left_panel_width))
    if top in (Overlay.FILTER, Overlay.SQL):
        prompt, text = ("WHERE ", nav.filter_input) if top is Overlay.FILTER else ("SQL> ", nav.sql_input)
        result.append(("class:menu", f"\n{prompt}"))
        result.append(("", text.text[:text.cursor]))
        result.append(("class:selected", text.text[text.cursor:text.cursor + 1] or " "))
        result.append(("", text.text[text.cursor + 1:] + "\n"))
    result.append(("", "\n"))
    result.extend(render_status(nav))
    return result


def _lines(fragments: Fragments) -> List[Fragments]:
    lines: List[Fragments] = [[]]
    for style_name, text in fragments:
        pieces = text.split("\n")
        for i, piece in enumerate(pieces):
            if i:
                lines.append([])
            if piece:
                lines[-1].append((style_name, piece))
    return lines


def _side_by_side(left: Fragments, right: Fragments, left_width: int) -> Fragments:
    left_lines = _lines(left)
    right_lines = _lines(right)
    result: Fragments = []
    for i in range(max(len(left_lines), len(right_lines))):
        left_line = left_lines[i] if i < len(left_lines) else []
        used = sum(len(text) for _, text in left_line)
        result.extend(left_line)
        result.append(("", " " * max(left_width - used, 0) + " │ "))
        if i < len(right_lines):
            result.extend(right_lines[i])
        result.append(("", "\n"))
    return result
