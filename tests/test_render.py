import asyncio

import pytest
from prompt_toolkit.keys import Keys

from sqlpane.clipboard import MemoryClipboard
from sqlpane.config import ConnectionDescriptor
from sqlpane.navigation import Navigator
from sqlpane.ui import render_frame, translate_key


def frame_text(nav: Navigator, width: int = 120) -> str:
    return "".join(text for _, text in render_frame(nav, width=width, height=30))


@pytest.mark.parametrize(
    "key, data, chord",
    [
        (Keys.ControlM, "\r", "enter"),
        (Keys.Escape, "\x1b", "esc"),
        (Keys.ControlH, "\x7f", "backspace"),
        (Keys.Up, "", "up"),
        ("c-d", "\x04", "ctrl+d"),
        ("G", "G", "G"),
        ("?", "?", "?"),
    ],
)
def test_translate_key(key: str, data: str, chord: str) -> None:
    assert translate_key(key, data).chord == chord


def test_translate_key_ignores_unsupported() -> None:
    assert translate_key(Keys.F5, "") is None


def test_connection_list_frame(sqlite_descriptor: ConnectionDescriptor) -> None:
    nav = Navigator([sqlite_descriptor], clipboard=MemoryClipboard())
    text = frame_text(nav)
    assert "Connections" in text
    assert "[local] sqlite://" in text
    assert "[connection_list]" in text


def test_record_view_frame(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = Navigator([sqlite_descriptor], clipboard=MemoryClipboard())
        nav.handle_key("enter")
        await nav.executor.wait_idle()
        nav.pump()
        nav.handle_key("j")
        nav.handle_key("enter")
        await nav.executor.wait_idle()
        nav.pump()
        frames = [frame_text(nav)]
        nav.handle_key("?")
        frames.append(frame_text(nav))
        nav.handle_key("?")
        nav.show_error("permission denied for table users")
        frames.append(frame_text(nav))
        await nav.shutdown()
        return frames

    records, help_text, error = asyncio.run(scenario())
    assert "users" in records
    assert "1 Records" in records
    assert "alice" in records
    assert "NULL" in records
    assert "1/3" in records
    assert "[record_view]" in records

    assert help_text.startswith("Help")
    assert "Scroll down" in help_text

    assert error.startswith("Error")
    assert "permission denied for table users" in error


def test_sql_prompt_frame(sqlite_descriptor: ConnectionDescriptor) -> None:
    async def scenario():
        nav = Navigator([sqlite_descriptor], clipboard=MemoryClipboard())
        nav.handle_key("enter")
        await nav.executor.wait_idle()
        nav.pump()
        nav.handle_key(":")
        for char in "SELECT 1":
            nav.handle_key(char)
        text = frame_text(nav)
        await nav.shutdown()
        return text

    text = asyncio.run(scenario())
    assert "SQL> SELECT 1" in text
    assert "[filter_input]" in text
