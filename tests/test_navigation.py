import asyncio
import sqlite3
from pathlib import Path

from sqlpane.clipboard import MemoryClipboard
from sqlpane.config import ConnectionDescriptor, Engine
from sqlpane.db.models import Tab
from sqlpane.errors import ClipboardError
from sqlpane.navigation import (
    LEFT_PANEL_MAX_WIDTH,
    LEFT_PANEL_MIN_WIDTH,
    Focus,
    Navigator,
    NavState,
    SlotStatus,
)


def create_navigator(*descriptors: ConnectionDescriptor) -> Navigator:
    return Navigator(descriptors, clipboard=MemoryClipboard())


async def settle(nav: Navigator) -> None:
    await nav.executor.wait_idle()
    nav.pump()


async def press(nav: Navigator, *keys: str) -> None:
    for key in keys:
        nav.handle_key(key)
    await settle(nav)


async def open_users(nav: Navigator) -> None:
    """Connect to the first connection and open the ``users`` table."""
    await press(nav, "enter")
    names = [t.name for t in nav.table_cursor.items]
    nav.table_cursor.index = names.index("users")
    await press(nav, "enter")


def test_open_table_loads_first_page(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        assert nav.state is NavState.NO_CONNECTION

        await press(nav, "enter")
        assert nav.state is NavState.TABLE_LIST
        assert nav.active_slot.status is SlotStatus.CONNECTED
        assert [t.name for t in nav.table_cursor.items] == ["orders", "users"]

        nav.handle_key("j")
        await press(nav, "enter")
        assert nav.state is NavState.RECORD_VIEW
        view = nav.active_view
        await nav.shutdown()
        return view

    view = asyncio.run(scenario())
    model = view.records
    assert model.row_count == 3
    assert model.row_offset == 0
    assert model.has_more is False
    assert model.headers == ("id", "name", "email", "score")
    assert model.focus_cell().display == "1"


def test_tab_switch_does_not_requery(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        view = nav.active_view
        rows = list(view.records.rows)
        columns_key = view.task_key(Tab.COLUMNS)

        await press(nav, "2")
        assert view.tab is Tab.COLUMNS
        columns = nav.metadata_for(view, Tab.COLUMNS)
        assert [c.name for c in columns] == ["id", "name", "email", "score"]

        await press(nav, "1")
        assert view.records.rows == rows
        assert not nav.executor.is_in_flight(view.task_key(Tab.RECORDS))

        seq = nav.executor.latest_seq(columns_key)
        await press(nav, "2")
        assert nav.executor.latest_seq(columns_key) == seq
        assert nav.metadata_for(view, Tab.COLUMNS) is columns

        await nav.shutdown()

    asyncio.run(scenario())


def test_metadata_tabs(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        await press(nav, "enter")
        assert nav.active_view.table.name == "orders"

        await press(nav, "4")
        foreign_keys = nav.metadata_for(nav.active_view, Tab.FOREIGN_KEYS)
        await press(nav, "5")
        indexes = nav.metadata_for(nav.active_view, Tab.INDEXES)
        nav.handle_key("y")
        await nav.shutdown()
        return nav, foreign_keys, indexes

    nav, foreign_keys, indexes = asyncio.run(scenario())
    assert [(fk.column_name, fk.ref_table, fk.ref_column) for fk in foreign_keys] == [
        ("user_id", "users", "id")
    ]
    assert [(i.name, i.column_name) for i in indexes] == [("idx_orders_user", "user_id")]
    assert nav.clipboard.text == "idx_orders_user\tuser_id\tNO\tCREATE INDEX"


def test_filter_confirm_and_cancel(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)

        nav.handle_key("/")
        assert nav.state is NavState.FILTER_INPUT
        for char in "id > 1":
            nav.handle_key(char)
        assert nav.filter_input.text == "id > 1"
        await press(nav, "enter")
        assert nav.state is NavState.RECORD_VIEW
        filtered = [row[1].display for row in nav.active_view.records.rows]

        nav.handle_key("/")
        nav.handle_key("backspace")
        nav.handle_key("9")
        await press(nav, "esc")
        after_cancel = (nav.active_view.records.filter, nav.active_view.records.row_count)
        state = nav.state

        await nav.shutdown()
        return filtered, after_cancel, state

    filtered, after_cancel, state = asyncio.run(scenario())
    assert filtered == ["bob", "carol"]
    assert after_cancel == ("id > 1", 2)
    assert state is NavState.RECORD_VIEW


def test_filter_matching_nothing_clears_selection(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        nav.handle_key("/")
        for char in "id > 100":
            nav.handle_key(char)
        await press(nav, "enter")
        model = nav.active_view.records
        nav.handle_key("y")
        nav.handle_key("Y")
        await nav.shutdown()
        return nav, model

    nav, model = asyncio.run(scenario())
    assert model.row_count == 0
    assert model.selection is None
    assert model.headers == ("id", "name", "email", "score")
    assert nav.clipboard.history == []


def test_sort_by_focused_column(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        await press(nav, "l", "s")
        ascending = [row[1].display for row in nav.active_view.records.rows]
        await press(nav, "s")
        descending = [row[1].display for row in nav.active_view.records.rows]
        labels = nav.active_view.records.header_labels()
        await nav.shutdown()
        return ascending, descending, labels

    ascending, descending, labels = asyncio.run(scenario())
    assert ascending == ["alice", "bob", "carol"]
    assert descending == ["carol", "bob", "alice"]
    assert labels[1] == "name ↓"


def test_scrolling_past_loaded_rows_fetches_next_page(sqlite_path: Path) -> None:
    descriptor = ConnectionDescriptor(engine=Engine.SQLITE, name="paged", path=sqlite_path, limit_size=2)

    async def scenario():
        nav = create_navigator(descriptor)
        await open_users(nav)
        model = nav.active_view.records
        first = (model.row_count, model.has_more)
        await press(nav, "G")
        second = (model.row_count, model.has_more)
        nav.handle_key("j")
        await nav.shutdown()
        return model, first, second

    model, first, second = asyncio.run(scenario())
    assert first == (2, True)
    assert second == (3, False)
    assert model.focus_cell().display == "3"


def test_copy_focused_cell(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        nav.handle_key("l")
        nav.handle_key("y")
        nav.handle_key("J")
        nav.handle_key("Y")
        await nav.shutdown()
        return nav

    nav = asyncio.run(scenario())
    assert nav.clipboard.history == ["alice", "alice\nbob"]
    assert nav.status_message == "Copied selection"


def test_help_overlay_and_escape(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)

        nav.handle_key("esc")
        assert nav.state is NavState.RECORD_VIEW

        nav.handle_key("?")
        assert nav.state is NavState.HELP_OVERLAY
        assert nav.handle_key("j") is None
        nav.handle_key("?")
        assert nav.state is NavState.RECORD_VIEW

        nav.handle_key("?")
        nav.handle_key("esc")
        assert nav.state is NavState.RECORD_VIEW
        await nav.shutdown()

    asyncio.run(scenario())


def test_missing_sqlite_file_shows_error(tmp_path: Path) -> None:
    descriptor = ConnectionDescriptor(engine=Engine.SQLITE, name="gone", path=tmp_path / "missing.db")

    async def scenario():
        nav = create_navigator(descriptor)
        await press(nav, "enter")
        states = [nav.state]
        message = nav.error_message
        nav.handle_key("enter")
        states.append(nav.state)
        await nav.shutdown()
        return nav, states, message

    nav, states, message = asyncio.run(scenario())
    assert states == [NavState.ERROR_OVERLAY, NavState.NO_CONNECTION]
    assert "not found" in message
    assert nav.slots["gone"].status is SlotStatus.FAILED
    assert nav.focus is Focus.CONNECTION_LIST
    assert nav.error_message is None


def test_lost_connection_requires_reconnect(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        slot = nav.active_slot
        slot.client._conn.close()

        await press(nav, "r")
        lost = (slot.status, nav.active_view.records.error.kind)

        nav.handle_key("s")
        sort_error = nav.active_view.records.error.kind

        await press(nav, "c", "enter")
        reconnected = (slot.status, nav.state)
        await nav.shutdown()
        return lost, sort_error, reconnected

    lost, sort_error, reconnected = asyncio.run(scenario())
    assert lost == (SlotStatus.RECONNECT_REQUIRED, "connection_lost")
    assert sort_error == "connection_lost"
    assert reconnected == (SlotStatus.CONNECTED, NavState.TABLE_LIST)


def test_switching_connection_tears_down_previous(sqlite_path: Path) -> None:
    first = ConnectionDescriptor(engine=Engine.SQLITE, name="first", path=sqlite_path)
    second = ConnectionDescriptor(engine=Engine.SQLITE, name="second", path=sqlite_path)

    async def scenario():
        nav = create_navigator(first, second)
        await open_users(nav)
        old_client = nav.active_slot.client

        await press(nav, "c", "j", "enter")
        result = (
            nav.active_connection_id,
            nav.slots["first"].status,
            nav.slots["first"].client,
            old_client.connected,
            nav.catalog.tables("first"),
            list(nav.views),
        )
        await nav.shutdown()
        return result

    active, status, client, old_connected, tables, views = asyncio.run(scenario())
    assert active == "second"
    assert status is SlotStatus.DISCONNECTED
    assert client is None
    assert old_connected is False
    assert tables is None
    assert views == []


def test_ad_hoc_sql_view(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        nav.run_sql("SELECT name FROM users WHERE id < 3")
        await settle(nav)
        await press(nav, "2")
        view = nav.active_view
        await nav.shutdown()
        return view

    view = asyncio.run(scenario())
    assert view.tab is Tab.RECORDS
    assert view.records.headers == ("name",)
    assert sorted(row[0].display for row in view.records.rows) == ["alice", "bob"]


def test_left_panel_width_is_clamped(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        widths = []
        for _ in range(20):
            nav.handle_key(">")
        widths.append(nav.left_panel_width)
        for _ in range(20):
            nav.handle_key("<")
        widths.append(nav.left_panel_width)
        await nav.shutdown()
        return widths

    assert asyncio.run(scenario()) == [LEFT_PANEL_MAX_WIDTH, LEFT_PANEL_MIN_WIDTH]


def test_quit_is_requested(sqlite_descriptor: ConnectionDescriptor) -> None:
    nav = create_navigator(sqlite_descriptor)
    nav.handle_key("q")
    assert nav.quit_requested is True


def test_sql_prompt_runs_typed_statement(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        states = []

        nav.handle_key(":")
        states.append(nav.state)
        for char in "SELECT name FROM users WHERE id = 2":
            nav.handle_key(char)
        await press(nav, "enter")
        states.append(nav.state)
        names = [row[0].display for row in nav.active_view.records.rows]

        nav.handle_key(":")
        retained = nav.sql_input.text
        await press(nav, "esc")
        states.append(nav.state)
        await nav.shutdown()
        return states, names, retained

    states, names, retained = asyncio.run(scenario())
    assert states == [NavState.SQL_INPUT, NavState.RECORD_VIEW, NavState.RECORD_VIEW]
    assert names == ["bob"]
    assert retained == "SELECT name FROM users WHERE id = 2"


def test_blank_sql_prompt_does_nothing(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        await press(nav, ":", " ", "enter")
        result = (nav.state, nav.active_view)
        await nav.shutdown()
        return result

    state, view = asyncio.run(scenario())
    assert state is NavState.TABLE_LIST
    assert view is None


def test_data_changing_statement_runs_once(
    sqlite_descriptor: ConnectionDescriptor, sqlite_path: Path
) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        nav.run_sql("INSERT INTO users (name) VALUES ('dup')")
        await settle(nav)
        model = nav.active_view.records

        nav.open_filter()
        filter_state = nav.state
        nav.confirm_filter()
        nav.refresh()
        await press(nav, "s", "G", "r")
        result = (model.affected_rows, filter_state, nav.status_message)
        await nav.shutdown()
        return result

    affected, filter_state, message = asyncio.run(scenario())
    assert affected == 1
    assert filter_state is NavState.RECORD_VIEW
    assert message == "Statement results cannot be filtered"
    conn = sqlite3.connect(sqlite_path)
    try:
        (count,) = conn.execute("SELECT COUNT(*) FROM users").fetchone()
    finally:
        conn.close()
    assert count == 4


def test_statement_results_refuse_sort_and_filter(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await press(nav, "enter")
        nav.run_sql("PRAGMA table_info(users)")
        await settle(nav)
        model = nav.active_view.records

        await press(nav, "s")
        sort_message = nav.status_message
        nav.handle_key("/")
        result = (
            sort_message,
            nav.status_message,
            nav.state,
            model.sort,
            model.header_labels(),
            [row[1].display for row in model.rows],
        )
        await nav.shutdown()
        return result

    sort_message, filter_message, state, sort, labels, names = asyncio.run(scenario())
    assert sort_message == "Statement results cannot be sorted"
    assert filter_message == "Statement results cannot be filtered"
    assert state is NavState.RECORD_VIEW
    assert sort is None
    assert labels[:2] == ["cid", "name"]
    assert names == ["id", "name", "email", "score"]


def test_opening_another_table_replaces_the_view(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = create_navigator(sqlite_descriptor)
        await open_users(nav)
        await press(nav, "left", "k", "enter")
        after_tables = (len(nav.views), nav.active_view.table.name)
        nav.run_sql("SELECT 1")
        nav.run_sql("SELECT 2")
        await settle(nav)
        after_sql = list(nav.views)
        await nav.shutdown()
        return after_tables, after_sql

    after_tables, after_sql = asyncio.run(scenario())
    assert after_tables == (1, "orders")
    assert after_sql == ["local::sql"]


class UnavailableClipboard:
    def set_text(self, text: str) -> None:
        raise ClipboardError("No system clipboard available: xclip not found")


def test_copy_without_system_clipboard_reports_status(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = Navigator([sqlite_descriptor], clipboard=UnavailableClipboard())
        await open_users(nav)
        nav.handle_key("y")
        result = (nav.status_message, nav.state)
        await nav.shutdown()
        return result

    message, state = asyncio.run(scenario())
    assert message == "No system clipboard available: xclip not found"
    assert state is NavState.RECORD_VIEW
