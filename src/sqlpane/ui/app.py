from __future__ import annotations

import asyncio
import logging
from typing import Optional

from prompt_toolkit import Application
from prompt_toolkit.application import get_app
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.key_binding.key_processor import KeyPressEvent
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl

from ..clipboard import SystemClipboard
from ..keymap import KeyEvent
from ..logging_utils import log_extra
from ..navigation import Navigator
from .render import render_frame, style

logger = logging.getLogger(__name__)

_KEY_NAMES = {
    Keys.ControlM: "enter",
    Keys.Escape: "esc",
    Keys.ControlH: "backspace",
    Keys.ControlI: "tab",
    Keys.Up: "up",
    Keys.Down: "down",
    Keys.Left: "left",
    Keys.Right: "right",
    Keys.Delete: "delete",
    Keys.Home: "home",
    Keys.End: "end",
    Keys.PageUp: "pageup",
    Keys.PageDown: "pagedown",
}


def translate_key(key: str, data: str = "") -> Optional[KeyEvent]:
    """Map a prompt_toolkit key press onto a chord, or None if unsupported."""
    if key in _KEY_NAMES:
        return KeyEvent(_KEY_NAMES[key])
    if key.startswith("c-") and len(key) == 3:
        return KeyEvent(f"ctrl+{key[2]}")
    if len(key) == 1:
        return KeyEvent(key)
    if len(data) == 1 and data.isprintable():
        return KeyEvent(data)
    return None


def build_application(nav: Navigator, clipboard: Optional[SystemClipboard] = None) -> Application:
    clipboard = clipboard or SystemClipboard()
    kb = KeyBindings()

    @kb.add(Keys.Any)
    @kb.add("c-c")
    def _(event: KeyPressEvent) -> None:
        press = event.key_sequence[0]
        key = translate_key(press.key, press.data)
        if key is None:
            return
        nav.handle_key(key)
        nav.pump()
        if nav.quit_requested:
            event.app.exit(result=0)

    def get_frame():
        size = get_app().output.get_size()
        return render_frame(nav, width=size.columns, height=size.rows)

    app: Application = Application(
        layout=Layout(Window(FormattedTextControl(get_frame), wrap_lines=False)),
        key_bindings=kb,
        style=style,
        full_screen=True,
        clipboard=clipboard.backend,
    )
    nav.clipboard = clipboard
    # Drain outcomes right before every repaint.
    app.before_render += lambda _: nav.pump()
    return app


async def _wake_on_outcomes(nav: Navigator, app: Application) -> None:
    while True:
        await nav.executor.wait_for_outcome()
        app.invalidate()
        # before_render drains the channel; yield so a burst triggers one repaint.
        await asyncio.sleep(0.01)


async def run(nav: Navigator) -> int:
    """Run the full-screen browser until the user quits."""
    app = build_application(nav)
    waker = asyncio.create_task(_wake_on_outcomes(nav, app))
    try:
        result = await app.run_async()
    finally:
        waker.cancel()
        await nav.shutdown()
    logger.info("Session ended", extra=log_extra(connections=len(nav.slots)))
    return result or 0
