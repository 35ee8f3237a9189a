"""Mode-scoped key bindings.

A key only ever resolves against the bindings of the current mode, so the
same chord can mean different things in different panes. User overrides
replace individual chords and leave every other default in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

import yaml

from .config import expand_path
from .errors import KeyBindingError
from .logging_utils import log_extra


class Mode(str, Enum):
    CONNECTION_LIST = "connection_list"
    TABLE_LIST = "table_list"
    RECORD_VIEW = "record_view"
    FILTER_INPUT = "filter_input"  # also drives the SQL prompt
    HELP = "help"
    ERROR = "error"


class Action(str, Enum):
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    SCROLL_LEFT = "scroll_left"
    SCROLL_RIGHT = "scroll_right"
    SCROLL_UP_MULTIPLE = "scroll_up_multiple"
    SCROLL_DOWN_MULTIPLE = "scroll_down_multiple"
    SCROLL_TO_TOP = "scroll_to_top"
    SCROLL_TO_BOTTOM = "scroll_to_bottom"
    MOVE_TO_HEAD_OF_LINE = "move_to_head_of_line"
    MOVE_TO_TAIL_OF_LINE = "move_to_tail_of_line"
    EXTEND_SELECTION_UP = "extend_selection_up"
    EXTEND_SELECTION_DOWN = "extend_selection_down"
    EXTEND_SELECTION_LEFT = "extend_selection_left"
    EXTEND_SELECTION_RIGHT = "extend_selection_right"
    SELECT_ROW = "select_row"
    SORT_BY_COLUMN = "sort_by_column"
    COPY = "copy"
    COPY_SELECTION = "copy_selection"
    ENTER = "enter"
    FILTER = "filter"
    SQL = "sql"
    FOCUS_LEFT = "focus_left"
    FOCUS_RIGHT = "focus_right"
    FOCUS_CONNECTIONS = "focus_connections"
    REFRESH = "refresh"
    TAB_RECORDS = "tab_records"
    TAB_COLUMNS = "tab_columns"
    TAB_CONSTRAINTS = "tab_constraints"
    TAB_FOREIGN_KEYS = "tab_foreign_keys"
    TAB_INDEXES = "tab_indexes"
    WIDEN_LEFT_PANEL = "widen_left_panel"
    NARROW_LEFT_PANEL = "narrow_left_panel"
    HELP = "help"
    ESCAPE = "escape"
    QUIT = "quit"
    EXIT = "exit"
    # text input
    INSERT_CHAR = "insert_char"
    DELETE_CHAR_BEFORE = "delete_char_before"
    DELETE_CHAR = "delete_char"
    CURSOR_LEFT = "cursor_left"
    CURSOR_RIGHT = "cursor_right"
    CURSOR_HOME = "cursor_home"
    CURSOR_END = "cursor_end"
    CONFIRM = "confirm"
    CANCEL = "cancel"


ACTION_DESCRIPTIONS: dict[Action, str] = {
    Action.SCROLL_UP: "Scroll up",
    Action.SCROLL_DOWN: "Scroll down",
    Action.SCROLL_LEFT: "Scroll left",
    Action.SCROLL_RIGHT: "Scroll right",
    Action.SCROLL_UP_MULTIPLE: "Scroll up half a page",
    Action.SCROLL_DOWN_MULTIPLE: "Scroll down half a page",
    Action.SCROLL_TO_TOP: "Scroll to top",
    Action.SCROLL_TO_BOTTOM: "Scroll to bottom",
    Action.MOVE_TO_HEAD_OF_LINE: "Move to first column",
    Action.MOVE_TO_TAIL_OF_LINE: "Move to last column",
    Action.EXTEND_SELECTION_UP: "Extend selection up",
    Action.EXTEND_SELECTION_DOWN: "Extend selection down",
    Action.EXTEND_SELECTION_LEFT: "Extend selection left",
    Action.EXTEND_SELECTION_RIGHT: "Extend selection right",
    Action.SELECT_ROW: "Select whole row",
    Action.SORT_BY_COLUMN: "Sort by focused column",
    Action.COPY: "Copy focused cell",
    Action.COPY_SELECTION: "Copy selection as TSV",
    Action.ENTER: "Select item",
    Action.FILTER: "Filter records",
    Action.SQL: "Run SQL statement",
    Action.FOCUS_LEFT: "Focus left pane",
    Action.FOCUS_RIGHT: "Focus right pane",
    Action.FOCUS_CONNECTIONS: "Focus connection list",
    Action.REFRESH: "Refresh catalog",
    Action.TAB_RECORDS: "Records tab",
    Action.TAB_COLUMNS: "Columns tab",
    Action.TAB_CONSTRAINTS: "Constraints tab",
    Action.TAB_FOREIGN_KEYS: "Foreign keys tab",
    Action.TAB_INDEXES: "Indexes tab",
    Action.WIDEN_LEFT_PANEL: "Widen left pane",
    Action.NARROW_LEFT_PANEL: "Narrow left pane",
    Action.HELP: "Toggle help",
    Action.ESCAPE: "Close popup",
    Action.QUIT: "Quit",
    Action.EXIT: "Exit",
    Action.INSERT_CHAR: "Insert character",
    Action.DELETE_CHAR_BEFORE: "Delete previous character",
    Action.DELETE_CHAR: "Delete character",
    Action.CURSOR_LEFT: "Move cursor left",
    Action.CURSOR_RIGHT: "Move cursor right",
    Action.CURSOR_HOME: "Move cursor to start",
    Action.CURSOR_END: "Move cursor to end",
    Action.CONFIRM: "Apply",
    Action.CANCEL: "Cancel",
}

_NAMED_KEYS = {
    "enter": "enter",
    "return": "enter",
    "esc": "esc",
    "escape": "esc",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
    "backspace": "backspace",
    "delete": "delete",
    "del": "delete",
    "home": "home",
    "end": "end",
    "pageup": "pageup",
    "pagedown": "pagedown",
    "tab": "tab",
    "space": " ",
}

_MODIFIERS = {"ctrl": "ctrl", "c": "ctrl", "control": "ctrl", "alt": "alt", "m": "alt", "meta": "alt"}


def normalize_chord(text: str) -> str:
    """Canonical form of a key chord.

    Single characters keep their case (``G`` differs from ``g``); named keys
    and modifiers are lower-cased, so ``C-d``, ``Ctrl+D`` and ``ctrl-d`` all
    become ``ctrl+d``.
    """
    if not isinstance(text, str) or text == "":
        raise KeyBindingError(f"Invalid key: {text!r}")
    if len(text) == 1:
        return text
    lowered = text.strip().lower()
    if lowered in _NAMED_KEYS:
        return _NAMED_KEYS[lowered]
    for sep in ("+", "-"):
        if sep in text[1:]:
            head, _, tail = text.partition(sep)
            modifier = _MODIFIERS.get(head.strip().lower())
            if modifier is None or not tail:
                break
            key = tail if len(tail) == 1 else normalize_chord(tail)
            if modifier == "ctrl":
                key = key.lower()
            return f"{modifier}+{key}"
    raise KeyBindingError(f"Invalid key: {text!r}")


@dataclass(frozen=True)
class KeyEvent:
    chord: str

    @classmethod
    def of(cls, key: Union[KeyEvent, str]) -> KeyEvent:
        if isinstance(key, KeyEvent):
            return key
        return cls(normalize_chord(key))

    @property
    def char(self) -> Optional[str]:
        """The printable character typed, if the chord is one."""
        if len(self.chord) == 1 and self.chord.isprintable():
            return self.chord
        return None


Bindings = dict[tuple[Mode, str], Action]


def _bind(mode: Mode, pairs: Iterable[tuple[str, Action]]) -> Bindings:
    return {(mode, chord): action for chord, action in pairs}


_LIST_KEYS = [
    ("j", Action.SCROLL_DOWN),
    ("down", Action.SCROLL_DOWN),
    ("k", Action.SCROLL_UP),
    ("up", Action.SCROLL_UP),
    ("g", Action.SCROLL_TO_TOP),
    ("G", Action.SCROLL_TO_BOTTOM),
    ("enter", Action.ENTER),
    ("?", Action.HELP),
    ("esc", Action.ESCAPE),
    ("q", Action.QUIT),
    ("ctrl+c", Action.EXIT),
]

DEFAULT_BINDINGS: Bindings = {
    **_bind(Mode.CONNECTION_LIST, _LIST_KEYS + [("right", Action.FOCUS_RIGHT)]),
    **_bind(
        Mode.TABLE_LIST,
        _LIST_KEYS
        + [
            ("left", Action.FOCUS_LEFT),
            ("right", Action.FOCUS_RIGHT),
            ("c", Action.FOCUS_CONNECTIONS),
            ("r", Action.REFRESH),
            (":", Action.SQL),
            ("<", Action.NARROW_LEFT_PANEL),
            (">", Action.WIDEN_LEFT_PANEL),
        ],
    ),
    **_bind(
        Mode.RECORD_VIEW,
        [
            ("k", Action.SCROLL_UP),
            ("up", Action.SCROLL_UP),
            ("j", Action.SCROLL_DOWN),
            ("down", Action.SCROLL_DOWN),
            ("h", Action.SCROLL_LEFT),
            ("l", Action.SCROLL_RIGHT),
            ("ctrl+u", Action.SCROLL_UP_MULTIPLE),
            ("ctrl+d", Action.SCROLL_DOWN_MULTIPLE),
            ("g", Action.SCROLL_TO_TOP),
            ("G", Action.SCROLL_TO_BOTTOM),
            ("^", Action.MOVE_TO_HEAD_OF_LINE),
            ("$", Action.MOVE_TO_TAIL_OF_LINE),
            ("K", Action.EXTEND_SELECTION_UP),
            ("J", Action.EXTEND_SELECTION_DOWN),
            ("H", Action.EXTEND_SELECTION_LEFT),
            ("L", Action.EXTEND_SELECTION_RIGHT),
            ("V", Action.SELECT_ROW),
            ("s", Action.SORT_BY_COLUMN),
            ("y", Action.COPY),
            ("Y", Action.COPY_SELECTION),
            ("/", Action.FILTER),
            ("left", Action.FOCUS_LEFT),
            ("c", Action.FOCUS_CONNECTIONS),
            ("r", Action.REFRESH),
            (":", Action.SQL),
            ("1", Action.TAB_RECORDS),
            ("2", Action.TAB_COLUMNS),
            ("3", Action.TAB_CONSTRAINTS),
            ("4", Action.TAB_FOREIGN_KEYS),
            ("5", Action.TAB_INDEXES),
            ("<", Action.NARROW_LEFT_PANEL),
            (">", Action.WIDEN_LEFT_PANEL),
            ("?", Action.HELP),
            ("esc", Action.ESCAPE),
            ("q", Action.QUIT),
            ("ctrl+c", Action.EXIT),
        ],
    ),
    **_bind(
        Mode.FILTER_INPUT,
        [
            ("enter", Action.CONFIRM),
            ("esc", Action.CANCEL),
            ("backspace", Action.DELETE_CHAR_BEFORE),
            ("delete", Action.DELETE_CHAR),
            ("left", Action.CURSOR_LEFT),
            ("right", Action.CURSOR_RIGHT),
            ("home", Action.CURSOR_HOME),
            ("ctrl+a", Action.CURSOR_HOME),
            ("end", Action.CURSOR_END),
            ("ctrl+e", Action.CURSOR_END),
            ("ctrl+c", Action.EXIT),
        ],
    ),
    **_bind(
        Mode.HELP,
        [("?", Action.HELP), ("esc", Action.ESCAPE), ("ctrl+c", Action.EXIT)],
    ),
    **_bind(
        Mode.ERROR,
        [("esc", Action.ESCAPE), ("enter", Action.ESCAPE), ("ctrl+c", Action.EXIT)],
    ),
}


def resolve(bindings: Mapping[tuple[Mode, str], Action], mode: Mode, key: KeyEvent) -> Optional[Action]:
    action = bindings.get((mode, key.chord))
    if action is None and mode is Mode.FILTER_INPUT and key.char is not None:
        return Action.INSERT_CHAR
    return action


class Keymap:
    def __init__(
        self,
        overrides: Optional[Mapping[tuple[Mode, str], Action]] = None,
        defaults: Mapping[tuple[Mode, str], Action] = DEFAULT_BINDINGS,
    ) -> None:
        self._bindings: Bindings = dict(defaults)
        for (mode, chord), action in (overrides or {}).items():
            self._bindings[(mode, normalize_chord(chord))] = action

    def resolve(self, mode: Mode, key: Union[KeyEvent, str]) -> Optional[Action]:
        return resolve(self._bindings, mode, KeyEvent.of(key))

    def bindings_for(self, mode: Mode) -> list[tuple[str, Action]]:
        return [(chord, action) for (m, chord), action in self._bindings.items() if m is mode]

    def keys_for(self, mode: Mode, action: Action) -> list[str]:
        return [chord for chord, bound in self.bindings_for(mode) if bound is action]


def load_key_bindings(path: Union[str, Path], required: bool = True) -> Bindings:
    """Read user overrides from a YAML file of ``{mode: {key: action}}``."""
    binding_path = expand_path(path)
    if not binding_path.exists():
        if required:
            raise KeyBindingError(f"Key binding file not found: {binding_path}")
        return {}

    try:
        raw = yaml.safe_load(binding_path.read_text()) or {}
    except OSError as exc:
        raise KeyBindingError(f"Cannot read {binding_path}: {exc.strerror or exc}") from exc
    except yaml.YAMLError as exc:
        raise KeyBindingError(f"Invalid YAML in {binding_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise KeyBindingError("Key binding file must be a mapping of modes")

    overrides: Bindings = {}
    for mode_name, entries in raw.items():
        try:
            mode = Mode(str(mode_name))
        except ValueError as exc:
            raise KeyBindingError(f"Unknown mode '{mode_name}'") from exc
        if not isinstance(entries, dict):
            raise KeyBindingError(f"Bindings for mode '{mode_name}' must be a mapping")
        for chord, action_name in entries.items():
            try:
                action = Action(str(action_name))
            except ValueError as exc:
                raise KeyBindingError(
                    f"Unknown action '{action_name}' for key '{chord}' in mode '{mode_name}'"
                ) from exc
            overrides[(mode, normalize_chord(str(chord)))] = action

    logging.getLogger(__name__).info(
        "Key bindings loaded",
        extra=log_extra(path=str(binding_path), overrides=len(overrides)),
    )
    return overrides
