"""Application state and the transitions driven by key actions.

The :class:`Navigator` is the one mutable state object owned by the render
loop. Background work never touches it directly: the executor posts
outcomes, and :meth:`Navigator.pump` applies them on the loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from .catalog import CatalogCache
from .clipboard import Clipboard, MemoryClipboard
from .config import DEFAULT_MAX_RETAINED_ROWS, ConnectionDescriptor
from .db import DatabaseClient, QueryHandle, create_client
from .db.models import Tab, TableRef
from .errors import ClipboardError, ConnectionLostError, QueryError, SchemaIntrospectionError
from .executor import Outcome, OutcomeStatus, Purpose, QueryExecutor
from .keymap import Action, KeyEvent, Keymap, Mode
from .logging_utils import log_extra
from .table_model import RecordTableModel

LEFT_PANEL_MIN_WIDTH = 15
LEFT_PANEL_MAX_WIDTH = 70
LEFT_PANEL_STEP = 5


class Focus(str, Enum):
    CONNECTION_LIST = "connection_list"
    TABLE_LIST = "table_list"
    RECORD_VIEW = "record_view"


class Overlay(str, Enum):
    FILTER = "filter"
    SQL = "sql"
    HELP = "help"
    ERROR = "error"


class NavState(str, Enum):
    NO_CONNECTION = "no_connection"
    CONNECTION_LIST = "connection_list"
    TABLE_LIST = "table_list"
    RECORD_VIEW = "record_view"
    FILTER_INPUT = "filter_input"
    SQL_INPUT = "sql_input"
    HELP_OVERLAY = "help_overlay"
    ERROR_OVERLAY = "error_overlay"


_STATE_MODES = {
    NavState.NO_CONNECTION: Mode.CONNECTION_LIST,
    NavState.CONNECTION_LIST: Mode.CONNECTION_LIST,
    NavState.TABLE_LIST: Mode.TABLE_LIST,
    NavState.RECORD_VIEW: Mode.RECORD_VIEW,
    NavState.FILTER_INPUT: Mode.FILTER_INPUT,
    NavState.SQL_INPUT: Mode.FILTER_INPUT,
    NavState.HELP_OVERLAY: Mode.HELP,
    NavState.ERROR_OVERLAY: Mode.ERROR,
}

_OVERLAY_STATES = {
    Overlay.FILTER: NavState.FILTER_INPUT,
    Overlay.SQL: NavState.SQL_INPUT,
    Overlay.HELP: NavState.HELP_OVERLAY,
    Overlay.ERROR: NavState.ERROR_OVERLAY,
}

_TAB_ACTIONS = {
    Action.TAB_RECORDS: Tab.RECORDS,
    Action.TAB_COLUMNS: Tab.COLUMNS,
    Action.TAB_CONSTRAINTS: Tab.CONSTRAINTS,
    Action.TAB_FOREIGN_KEYS: Tab.FOREIGN_KEYS,
    Action.TAB_INDEXES: Tab.INDEXES,
}


class SlotStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_REQUIRED = "reconnect_required"
    FAILED = "failed"


@dataclass
class ConnectionSlot:
    descriptor: ConnectionDescriptor
    client: Optional[DatabaseClient] = None
    status: SlotStatus = SlotStatus.DISCONNECTED
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def usable(self) -> bool:
        return self.client is not None and self.status is SlotStatus.CONNECTED


@dataclass
class ListCursor:
    items: list = field(default_factory=list)
    index: int = 0

    @property
    def selected(self) -> Any:
        return self.items[self.index] if self.items else None

    def move(self, delta: int) -> None:
        if self.items:
            self.index = max(0, min(self.index + delta, len(self.items) - 1))

    def to_top(self) -> None:
        self.index = 0

    def to_bottom(self) -> None:
        self.index = max(len(self.items) - 1, 0)


@dataclass
class TextInput:
    text: str = ""
    cursor: int = -1

    def __post_init__(self) -> None:
        if self.cursor < 0:
            self.cursor = len(self.text)

    def insert(self, char: str) -> None:
        self.text = self.text[:self.cursor] + char + self.text[self.cursor:]
        self.cursor += len(char)

    def delete_before(self) -> None:
        if self.cursor > 0:
            self.text = self.text[:self.cursor - 1] + self.text[self.cursor:]
            self.cursor -= 1

    def delete(self) -> None:
        self.text = self.text[:self.cursor] + self.text[self.cursor + 1:]

    def left(self) -> None:
        self.cursor = max(0, self.cursor - 1)

    def right(self) -> None:
        self.cursor = min(len(self.text), self.cursor + 1)

    def home(self) -> None:
        self.cursor = 0

    def end(self) -> None:
        self.cursor = len(self.text)


@dataclass
class TableView:
    """One record view: a table (or ad-hoc statement) on one connection."""

    id: str
    connection_id: str
    records: RecordTableModel
    tab: Tab = Tab.RECORDS
    metadata_errors: dict[Tab, QueryError] = field(default_factory=dict)
    metadata_cursor: dict[Tab, int] = field(default_factory=dict)

    @property
    def table(self) -> Optional[TableRef]:
        return self.records.table

    def task_key(self, tab: Tab) -> str:
        return f"{self.id}#{tab.value}"


class Navigator:
    def __init__(
        self,
        connections: Iterable[ConnectionDescriptor],
        keymap: Optional[Keymap] = None,
        executor: Optional[QueryExecutor] = None,
        catalog: Optional[CatalogCache] = None,
        clipboard: Optional[Clipboard] = None,
        client_factory: Callable[[ConnectionDescriptor], DatabaseClient] = create_client,
        max_retained_rows: int = DEFAULT_MAX_RETAINED_ROWS,
    ) -> None:
        self.slots: dict[str, ConnectionSlot] = {d.id: ConnectionSlot(d) for d in connections}
        self.keymap = keymap or Keymap()
        self.executor = executor or QueryExecutor(max_retained_rows=max_retained_rows)
        self.catalog = catalog or CatalogCache()
        self.clipboard: Clipboard = clipboard or MemoryClipboard()
        self.max_retained_rows = max_retained_rows
        self._client_factory = client_factory

        self.connection_cursor = ListCursor(list(self.slots))
        self.table_cursor = ListCursor()
        self.active_connection_id: Optional[str] = None
        self.views: dict[str, TableView] = {}
        self.active_view_id: Optional[str] = None
        self.focus = Focus.CONNECTION_LIST
        self.overlays: list[Overlay] = []
        self.filter_input = TextInput()
        self.sql_input = TextInput()
        self.error_message: Optional[str] = None
        self.status_message: Optional[str] = None
        self.left_panel_width = LEFT_PANEL_MIN_WIDTH
        self.quit_requested = False
        self._error_return_focus: Optional[Focus] = None
        self._log = logging.getLogger(__name__)

    # -- derived state --------------------------------------------------

    @property
    def active_slot(self) -> Optional[ConnectionSlot]:
        if self.active_connection_id is None:
            return None
        return self.slots.get(self.active_connection_id)

    @property
    def active_view(self) -> Optional[TableView]:
        if self.active_view_id is None:
            return None
        return self.views.get(self.active_view_id)

    @property
    def state(self) -> NavState:
        if self.overlays:
            return _OVERLAY_STATES[self.overlays[-1]]
        slot = self.active_slot
        if slot is None or slot.status in (SlotStatus.CONNECTING, SlotStatus.DISCONNECTED, SlotStatus.FAILED):
            return NavState.NO_CONNECTION
        if self.focus is Focus.TABLE_LIST:
            return NavState.TABLE_LIST
        if self.focus is Focus.RECORD_VIEW and self.active_view is not None:
            return NavState.RECORD_VIEW
        return NavState.CONNECTION_LIST

    @property
    def mode(self) -> Mode:
        return _STATE_MODES[self.state]

    # -- input ----------------------------------------------------------

    def handle_key(self, key: Union[KeyEvent, str]) -> Optional[Action]:
        event = KeyEvent.of(key)
        action = self.keymap.resolve(self.mode, event)
        if action is not None:
            self.dispatch(action, event)
        return action

    def dispatch(self, action: Action, event: Optional[KeyEvent] = None) -> None:
        if action in (Action.QUIT, Action.EXIT):
            self.quit_requested = True
            return
        if action is Action.HELP:
            self.toggle_help()
            return
        if action is Action.ESCAPE:
            self.escape()
            return

        state = self.state
        if state in (NavState.FILTER_INPUT, NavState.SQL_INPUT):
            self._text_action(action, event)
        elif state in (NavState.NO_CONNECTION, NavState.CONNECTION_LIST):
            self._connection_list_action(action)
        elif state is NavState.TABLE_LIST:
            self._table_list_action(action)
        elif state is NavState.RECORD_VIEW:
            self._record_view_action(action)

    def toggle_help(self) -> None:
        if self.overlays and self.overlays[-1] is Overlay.HELP:
            self.overlays.pop()
        elif not self.overlays:
            self.overlays.append(Overlay.HELP)

    def escape(self) -> None:
        if not self.overlays:
            return
        top = self.overlays.pop()
        if top is Overlay.ERROR:
            self.error_message = None
            if self._error_return_focus is not None:
                self.focus = self._error_return_focus
                self._error_return_focus = None

    def show_error(self, message: str, return_focus: Optional[Focus] = None) -> None:
        self.error_message = message
        self._error_return_focus = return_focus
        if Overlay.ERROR not in self.overlays:
            self.overlays.append(Overlay.ERROR)

    # -- per-state actions ----------------------------------------------

    def _connection_list_action(self, action: Action) -> None:
        cursor = self.connection_cursor
        if action is Action.SCROLL_DOWN:
            cursor.move(1)
        elif action is Action.SCROLL_UP:
            cursor.move(-1)
        elif action is Action.SCROLL_TO_TOP:
            cursor.to_top()
        elif action is Action.SCROLL_TO_BOTTOM:
            cursor.to_bottom()
        elif action is Action.ENTER:
            self.select_connection()
        elif action is Action.FOCUS_RIGHT and self.active_slot is not None:
            self.focus = Focus.TABLE_LIST

    def _table_list_action(self, action: Action) -> None:
        cursor = self.table_cursor
        if action is Action.SCROLL_DOWN:
            cursor.move(1)
        elif action is Action.SCROLL_UP:
            cursor.move(-1)
        elif action is Action.SCROLL_TO_TOP:
            cursor.to_top()
        elif action is Action.SCROLL_TO_BOTTOM:
            cursor.to_bottom()
        elif action is Action.ENTER:
            self.select_table()
        else:
            self._panel_action(action)

    def _panel_action(self, action: Action) -> None:
        if action is Action.FOCUS_LEFT:
            if self.focus is Focus.RECORD_VIEW:
                self.focus = Focus.TABLE_LIST
            else:
                self.focus = Focus.CONNECTION_LIST
        elif action is Action.FOCUS_RIGHT:
            if self.focus is Focus.TABLE_LIST and self.active_view is not None:
                self.focus = Focus.RECORD_VIEW
        elif action is Action.FOCUS_CONNECTIONS:
            self.focus = Focus.CONNECTION_LIST
        elif action is Action.REFRESH:
            self.refresh()
        elif action is Action.SQL:
            self.open_sql()
        elif action is Action.WIDEN_LEFT_PANEL:
            self.resize_left_panel(LEFT_PANEL_STEP)
        elif action is Action.NARROW_LEFT_PANEL:
            self.resize_left_panel(-LEFT_PANEL_STEP)

    def _record_view_action(self, action: Action) -> None:
        view = self.active_view
        if view is None:
            return
        if action in _TAB_ACTIONS:
            self.switch_tab(_TAB_ACTIONS[action])
        elif view.tab is Tab.RECORDS:
            self._records_action(view, action)
        else:
            self._metadata_action(view, action)

    def _records_action(self, view: TableView, action: Action) -> None:
        model = view.records
        wants_more = False
        if action is Action.SCROLL_DOWN:
            wants_more = model.move(1)
        elif action is Action.SCROLL_UP:
            model.move(-1)
        elif action is Action.SCROLL_LEFT:
            model.move(columns=-1)
        elif action is Action.SCROLL_RIGHT:
            model.move(columns=1)
        elif action is Action.SCROLL_DOWN_MULTIPLE:
            wants_more = model.half_page(down=True)
        elif action is Action.SCROLL_UP_MULTIPLE:
            model.half_page(down=False)
        elif action is Action.SCROLL_TO_TOP:
            model.scroll_to_top()
        elif action is Action.SCROLL_TO_BOTTOM:
            wants_more = model.scroll_to_bottom()
        elif action is Action.MOVE_TO_HEAD_OF_LINE:
            model.head_of_line()
        elif action is Action.MOVE_TO_TAIL_OF_LINE:
            model.tail_of_line()
        elif action is Action.EXTEND_SELECTION_DOWN:
            wants_more = model.extend(1)
        elif action is Action.EXTEND_SELECTION_UP:
            model.extend(-1)
        elif action is Action.EXTEND_SELECTION_LEFT:
            model.extend(columns=-1)
        elif action is Action.EXTEND_SELECTION_RIGHT:
            model.extend(columns=1)
        elif action is Action.SELECT_ROW:
            model.select_row()
        elif action is Action.SORT_BY_COLUMN:
            if model.focus is not None:
                if model.toggle_sort(model.focus.column) is None:
                    self.status_message = "Statement results cannot be sorted"
                else:
                    self._issue_records(view)
        elif action is Action.COPY:
            self._copy(model.focus_text(), "Copied cell")
        elif action is Action.COPY_SELECTION:
            self._copy(model.selected_text(), "Copied selection")
        elif action is Action.FILTER:
            self.open_filter()
        else:
            self._panel_action(action)
        if wants_more:
            self._issue_records(view, append=True)

    def _metadata_action(self, view: TableView, action: Action) -> None:
        records = self.metadata_for(view, view.tab) or ()
        index = view.metadata_cursor.get(view.tab, 0)
        last = max(len(records) - 1, 0)
        if action is Action.SCROLL_DOWN:
            view.metadata_cursor[view.tab] = min(index + 1, last)
        elif action is Action.SCROLL_UP:
            view.metadata_cursor[view.tab] = max(index - 1, 0)
        elif action is Action.SCROLL_TO_TOP:
            view.metadata_cursor[view.tab] = 0
        elif action is Action.SCROLL_TO_BOTTOM:
            view.metadata_cursor[view.tab] = last
        elif action in (Action.COPY, Action.COPY_SELECTION):
            if records:
                self._copy("\t".join(records[min(index, last)].as_row()), "Copied row")
        else:
            self._panel_action(action)

    def _copy(self, text: Optional[str], message: str) -> None:
        if text is None:
            return
        try:
            self.clipboard.set_text(text)
        except ClipboardError as exc:
            self.status_message = str(exc)
            return
        self.status_message = message

    def _text_action(self, action: Action, event: Optional[KeyEvent]) -> None:
        editing_sql = self.overlays[-1] is Overlay.SQL
        text = self.sql_input if editing_sql else self.filter_input
        if action is Action.INSERT_CHAR and event is not None and event.char is not None:
            text.insert(event.char)
        elif action is Action.DELETE_CHAR_BEFORE:
            text.delete_before()
        elif action is Action.DELETE_CHAR:
            text.delete()
        elif action is Action.CURSOR_LEFT:
            text.left()
        elif action is Action.CURSOR_RIGHT:
            text.right()
        elif action is Action.CURSOR_HOME:
            text.home()
        elif action is Action.CURSOR_END:
            text.end()
        elif action is Action.CONFIRM:
            if editing_sql:
                self.confirm_sql()
            else:
                self.confirm_filter()
        elif action is Action.CANCEL:
            self._close_overlay(Overlay.SQL if editing_sql else Overlay.FILTER)

    # -- transitions ----------------------------------------------------

    def select_connection(self, connection_id: Optional[str] = None) -> None:
        slot = self.slots[connection_id or self.connection_cursor.selected]
        active = self.active_slot
        if slot is active and slot.usable:
            self.focus = Focus.TABLE_LIST
            return
        if active is not None:
            self._teardown(active)
        if slot is not active and slot.client is not None:
            self._teardown(slot)

        client = self._client_factory(slot.descriptor)
        slot.client = client
        slot.status = SlotStatus.CONNECTING
        slot.error = None
        self.active_connection_id = slot.id
        self.table_cursor = ListCursor()
        self.focus = Focus.CONNECTION_LIST
        self._log.info("Connecting", extra=log_extra(connection=slot.id))
        self.executor.submit(
            self._slot_key(slot, Purpose.CONNECT),
            Purpose.CONNECT,
            lambda handle: self._open_connection(client, handle),
            context=slot.id,
        )

    async def _open_connection(self, client: DatabaseClient, handle: QueryHandle) -> list[TableRef]:
        await client.connect()
        return await self._list_all_tables(client, handle)

    @staticmethod
    async def _list_all_tables(client: DatabaseClient, handle: QueryHandle) -> list[TableRef]:
        tables: list[TableRef] = []
        for database in await client.list_databases(handle):
            tables.extend(await client.list_tables(database, handle))
        return tables

    def select_table(self, table: Optional[TableRef] = None) -> None:
        slot = self.active_slot
        table = table or self.table_cursor.selected
        if slot is None or table is None:
            return
        view_id = f"{slot.id}::{table.database}.{table.label}"
        self._open_view(slot, view_id, RecordTableModel(table, self.max_retained_rows))

    def run_sql(self, sql: str) -> None:
        """Show the result of an ad-hoc statement in the record view."""
        slot = self.active_slot
        if slot is None or not sql.strip():
            return
        try:
            model = RecordTableModel(sql, self.max_retained_rows)
        except QueryError as exc:
            self.show_error(str(exc))
            return
        self._open_view(slot, f"{slot.id}::sql", model)

    def _open_view(self, slot: ConnectionSlot, view_id: str, model: RecordTableModel) -> None:
        previous = self.active_view
        if previous is not None:
            self._deactivate_view(previous)
            del self.views[previous.id]
        view = TableView(id=view_id, connection_id=slot.id, records=model)
        self.views[view_id] = view
        self.active_view_id = view_id
        self.focus = Focus.RECORD_VIEW
        self._issue_records(view)

    def switch_tab(self, tab: Tab) -> None:
        view = self.active_view
        if view is None or view.tab is tab:
            return
        if tab.is_metadata and view.table is None:
            return
        self.executor.deactivate(view.task_key(view.tab))
        view.records.loading_more = False
        view.tab = tab
        if tab is Tab.RECORDS:
            if not view.records.loaded and not self.executor.is_in_flight(view.task_key(tab)):
                self._issue_records(view)
            return
        if self.metadata_for(view, tab) is None:
            self._issue_metadata(view, tab)

    def open_filter(self) -> None:
        view = self.active_view
        if view is None or view.tab is not Tab.RECORDS:
            return
        if view.records.runs_once:
            self.status_message = "Statement results cannot be filtered"
            return
        self.filter_input = TextInput(view.records.filter)
        self.overlays.append(Overlay.FILTER)

    def confirm_filter(self) -> None:
        self._close_overlay(Overlay.FILTER)
        view = self.active_view
        if view is None:
            return
        if view.records.apply_filter(self.filter_input.text) is not None:
            self._issue_records(view)

    def open_sql(self) -> None:
        slot = self.active_slot
        if slot is None or not slot.usable:
            return
        # Reopening keeps the last statement for editing.
        self.sql_input = TextInput(self.sql_input.text)
        self.overlays.append(Overlay.SQL)

    def confirm_sql(self) -> None:
        self._close_overlay(Overlay.SQL)
        self.run_sql(self.sql_input.text)

    def _close_overlay(self, overlay: Overlay) -> None:
        if self.overlays and self.overlays[-1] is overlay:
            self.overlays.pop()

    def refresh(self) -> None:
        slot = self.active_slot
        if slot is None or not slot.usable:
            return
        self.catalog.evict(slot.id)
        client = slot.client
        self.executor.submit(
            self._slot_key(slot, Purpose.TABLES),
            Purpose.TABLES,
            lambda handle: self._list_all_tables(client, handle),
            client=client,
            context=slot.id,
        )
        view = self.active_view
        if view is None or view.connection_id != slot.id:
            return
        if view.tab is Tab.RECORDS:
            self._issue_records(view)
        else:
            self._issue_metadata(view, view.tab)

    def resize_left_panel(self, delta: int) -> None:
        self.left_panel_width = max(
            LEFT_PANEL_MIN_WIDTH, min(LEFT_PANEL_MAX_WIDTH, self.left_panel_width + delta)
        )

    def metadata_for(self, view: TableView, tab: Tab) -> Optional[tuple]:
        if view.table is None:
            return None
        return self.catalog.fragment(view.connection_id, view.table, tab)

    # -- background work ------------------------------------------------

    def _issue_records(self, view: TableView, append: bool = False) -> None:
        model = view.records
        if model.runs_once and (model.loaded or append):
            # The statement already ran; its result is final.
            return
        slot = self.slots[view.connection_id]
        if not slot.usable:
            model.fail(self._unusable_error(slot), append=append)
            return
        self.executor.submit_page(
            view.task_key(Tab.RECORDS),
            slot.client,
            model.request(),
            model.next_offset if append else 0,
            # A statement fills the retained window in its single run.
            limit=self.max_retained_rows if model.runs_once else slot.descriptor.limit_size,
            append=append,
            context=view.id,
        )

    def _issue_metadata(self, view: TableView, tab: Tab) -> None:
        slot = self.slots[view.connection_id]
        view.metadata_errors.pop(tab, None)
        if not slot.usable:
            view.metadata_errors[tab] = self._unusable_error(slot)
            return
        client = slot.client
        table = view.table
        self.executor.submit(
            view.task_key(tab),
            Purpose.METADATA,
            lambda handle: client.introspect(tab, table, handle),
            client=client,
            context=(view.id, tab),
        )

    @staticmethod
    def _unusable_error(slot: ConnectionSlot) -> QueryError:
        if slot.status is SlotStatus.RECONNECT_REQUIRED:
            return ConnectionLostError(f"Connection to {slot.id} was lost; reconnect required")
        return QueryError(f"Not connected to {slot.id}", kind="closed")

    def pump(self) -> int:
        """Apply every fresh outcome from the executor; returns how many."""
        outcomes = self.executor.drain()
        for outcome in outcomes:
            self.apply(outcome)
        return len(outcomes)

    def apply(self, outcome: Outcome) -> None:
        if outcome.purpose is Purpose.CONNECT:
            self._apply_connect(outcome)
        elif outcome.purpose is Purpose.TABLES:
            self._apply_tables(outcome)
        elif outcome.purpose is Purpose.RECORDS:
            self._apply_records(outcome)
        elif outcome.purpose is Purpose.METADATA:
            self._apply_metadata(outcome)

    def _apply_connect(self, outcome: Outcome) -> None:
        slot = self.slots.get(outcome.context)
        if slot is None or slot.id != self.active_connection_id:
            return
        if outcome.status is OutcomeStatus.ERROR:
            slot.status = SlotStatus.FAILED
            slot.error = str(outcome.error)
            if slot.client is not None:
                self.executor.spawn(slot.client.disconnect())
                slot.client = None
            self.active_connection_id = None
            self.show_error(slot.error, return_focus=Focus.CONNECTION_LIST)
            return
        slot.status = SlotStatus.CONNECTED
        tables = self.catalog.put_tables(slot.id, outcome.value)
        self.table_cursor = ListCursor(list(tables))
        self.focus = Focus.TABLE_LIST

    def _apply_tables(self, outcome: Outcome) -> None:
        slot = self.slots.get(outcome.context)
        if slot is None or slot.id != self.active_connection_id:
            return
        if outcome.status is OutcomeStatus.ERROR:
            self._flag_if_lost(slot, outcome.error)
            self.status_message = str(outcome.error)
            return
        tables = self.catalog.put_tables(slot.id, outcome.value)
        index = self.table_cursor.index
        self.table_cursor = ListCursor(list(tables))
        self.table_cursor.move(index)

    def _apply_records(self, outcome: Outcome) -> None:
        view = self.views.get(outcome.context)
        if view is None:
            return
        if outcome.status is OutcomeStatus.ERROR:
            error = outcome.error
            if not isinstance(error, QueryError):
                error = QueryError(str(error))
            self._flag_if_lost(self.slots[view.connection_id], error)
            view.records.fail(error, append=outcome.append)
            return
        view.records.load_page(outcome.value, append=outcome.append)

    def _apply_metadata(self, outcome: Outcome) -> None:
        view_id, tab = outcome.context
        view = self.views.get(view_id)
        if view is None or view.table is None:
            return
        if outcome.status is OutcomeStatus.ERROR:
            error = outcome.error
            if not isinstance(error, SchemaIntrospectionError):
                error = SchemaIntrospectionError(str(error), tab=tab.value)
            self._flag_if_lost(self.slots[view.connection_id], error)
            view.metadata_errors[tab] = error
            return
        self.catalog.put_fragment(view.connection_id, view.table, tab, outcome.value)

    def _flag_if_lost(self, slot: ConnectionSlot, error: Optional[BaseException]) -> None:
        if isinstance(error, QueryError) and error.kind == ConnectionLostError.kind:
            if slot.status is not SlotStatus.RECONNECT_REQUIRED:
                self._log.warning("Connection lost", extra=log_extra(connection=slot.id))
            slot.status = SlotStatus.RECONNECT_REQUIRED
            slot.error = str(error)

    # -- teardown -------------------------------------------------------

    def _slot_key(self, slot: ConnectionSlot, purpose: Purpose) -> str:
        return f"{slot.id}#{purpose.value}"

    def _deactivate_view(self, view: TableView) -> None:
        for tab in Tab:
            self.executor.deactivate(view.task_key(tab))
        view.records.loading_more = False

    def _teardown(self, slot: ConnectionSlot) -> None:
        self.executor.deactivate(self._slot_key(slot, Purpose.CONNECT))
        self.executor.deactivate(self._slot_key(slot, Purpose.TABLES))
        for view_id, view in list(self.views.items()):
            if view.connection_id == slot.id:
                self._deactivate_view(view)
                del self.views[view_id]
        if self.active_view_id not in self.views:
            self.active_view_id = None
        if slot.client is not None:
            self.executor.spawn(slot.client.disconnect())
            slot.client = None
        slot.status = SlotStatus.DISCONNECTED
        self.catalog.evict(slot.id)
        if self.active_connection_id == slot.id:
            self.active_connection_id = None
            self.table_cursor = ListCursor()

    async def shutdown(self) -> None:
        for slot in self.slots.values():
            if slot.client is not None:
                self._teardown(slot)
        await self.executor.close()
