from sqlpane.clipboard import MemoryClipboard
from sqlpane.db.models import ResultPage, SortDirection, SqlRequest, TableRef, TableRequest, to_row
from sqlpane.table_model import CellPos, RecordTableModel, SelectionRange

USERS = TableRef(database="main", name="users")
HEADERS = ("id", "name", "email")


def make_page(start: int, count: int, offset: int = 0, has_more: bool = False) -> ResultPage:
    rows = tuple(
        to_row((i, f"user{i}", None if i % 2 else f"u{i}@example.com"))
        for i in range(start, start + count)
    )
    return ResultPage(headers=HEADERS, rows=rows, offset=offset, has_more=has_more)


def loaded_model(count: int = 3, has_more: bool = False, **kwargs) -> RecordTableModel:
    model = RecordTableModel(USERS, **kwargs)
    model.load_page(make_page(0, count, has_more=has_more))
    return model


def test_first_page_focuses_first_cell() -> None:
    model = loaded_model()
    assert model.selection == SelectionRange.single(0, 0)
    assert model.focus_cell().display == "0"


def test_selection_stays_inside_loaded_bounds() -> None:
    model = loaded_model()
    model.extend(rows=10, columns=10)
    assert model.selection.anchor == CellPos(0, 0)
    assert model.selection.focus == CellPos(2, 2)

    model.extend(rows=-20, columns=-20)
    assert model.selection.focus == CellPos(0, 0)

    model.move(rows=-1)
    assert model.selection.is_single
    assert model.focus == CellPos(0, 0)


def test_extension_builds_rectangle() -> None:
    model = loaded_model(5)
    model.move(rows=1, columns=1)
    model.extend(rows=2)
    model.extend(columns=-1)
    sel = model.selection
    assert (sel.top, sel.bottom, sel.left, sel.right) == (1, 3, 0, 1)
    assert sel.contains(2, 0)
    assert not sel.contains(4, 0)


def test_extending_past_last_row_requests_one_page() -> None:
    model = loaded_model(3, has_more=True)
    model.move_to(row=2)
    assert model.extend(rows=1) is True
    assert model.extend(rows=1) is False
    assert model.scroll_to_bottom() is False

    model.load_page(make_page(3, 3, offset=3), append=True)
    assert model.row_count == 6
    assert model.has_more is False
    assert model.extend(rows=5) is False
    assert model.selection.focus.row == 5


def test_no_page_request_without_more_rows() -> None:
    model = loaded_model(3, has_more=False)
    assert model.scroll_to_bottom() is False
    assert model.move(rows=1) is False
    assert model.focus == CellPos(2, 0)


def test_empty_page_clears_selection() -> None:
    model = loaded_model()
    model.load_page(ResultPage(headers=HEADERS, rows=()))
    assert model.selection is None
    assert model.focus_cell() is None
    assert model.move(rows=1) is False
    assert model.extend(rows=1) is False


def test_copy_without_focus_is_a_no_op() -> None:
    clipboard = MemoryClipboard()
    model = RecordTableModel(USERS)
    assert model.copy_value(clipboard) is None
    assert model.copy_selection(clipboard) is None
    assert clipboard.history == []


def test_copy_value_and_selection() -> None:
    clipboard = MemoryClipboard()
    model = loaded_model()
    model.move(columns=1)
    assert model.copy_value(clipboard) == "user0"

    model.move(columns=1, rows=1)
    assert model.copy_value(clipboard) == ""

    model.move_to(row=0, column=0)
    model.extend(rows=1, columns=2)
    assert model.copy_selection(clipboard) == "0\tuser0\tu0@example.com\n1\tuser1\t"
    assert clipboard.text == "0\tuser0\tu0@example.com\n1\tuser1\t"


def test_toggle_sort_cycles_and_resets_offset() -> None:
    model = loaded_model()
    model.move(columns=1)

    request = model.toggle_sort(1)
    assert isinstance(request, TableRequest)
    assert request.order.column == "name"
    assert request.order.direction is SortDirection.ASC
    assert model.header_labels()[1] == "name ↑"

    assert model.toggle_sort(1).order.direction is SortDirection.DESC
    assert model.header_labels()[1] == "name ↓"

    assert model.toggle_sort(1).order is None
    assert model.header_labels() == list(HEADERS)


def test_filter_builds_request() -> None:
    model = loaded_model()
    request = model.apply_filter("  id > 1 ")
    assert request.filter == "id > 1"
    assert request.table == USERS


def test_ad_hoc_statement_requests() -> None:
    model = RecordTableModel("SELECT 1 AS one")
    request = model.request()
    assert isinstance(request, SqlRequest)
    assert request.sql == "SELECT 1 AS one"
    assert model.table is None


def test_row_eviction_keeps_selection_on_same_row() -> None:
    model = loaded_model(4, has_more=True, max_retained_rows=5)
    model.move_to(row=3)
    model.load_page(make_page(4, 4, offset=4, has_more=True), append=True)

    assert model.row_count == 5
    assert model.row_offset == 3
    assert model.next_offset == 8
    assert model.focus_cell().display == "3"
    assert model.rows[0][0].display == "3"


def test_reload_clamps_existing_selection() -> None:
    model = loaded_model(5)
    model.move_to(row=4, column=2)
    model.load_page(make_page(0, 2))
    assert model.focus == CellPos(1, 2)


def test_position_label() -> None:
    model = loaded_model(3, has_more=True)
    model.move(rows=1)
    assert model.position_label() == "2/3+"
    model.total_estimate = 10
    assert model.position_label() == "2/10"


def test_statement_source_refuses_requery() -> None:
    model = RecordTableModel("PRAGMA table_info(users)")
    model.load_page(make_page(0, 3, has_more=True))

    assert model.runs_once is True
    assert model.toggle_sort(1) is None
    assert model.apply_filter("id > 1") is None
    assert model.sort is None
    assert model.filter == ""
    assert model.header_labels() == list(HEADERS)
    assert model.scroll_to_bottom() is False
    assert model.move(rows=1) is False


def test_select_source_can_be_requeried() -> None:
    model = RecordTableModel("WITH t AS (SELECT 1) SELECT * FROM t")
    assert model.runs_once is False
    assert isinstance(model.apply_filter("x = 1"), SqlRequest)
