from __future__ import annotations

import logging
from typing import Optional, Protocol

import pyperclip
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard

from .errors import ClipboardError
from .logging_utils import log_extra


class Clipboard(Protocol):
    """Anything that accepts copied text."""

    def set_text(self, text: str) -> None: ...


class SystemClipboard:
    """The operating system clipboard, through prompt_toolkit's pyperclip adapter.

    Copying needs a platform backend (pbcopy, xclip, xsel, wl-copy or the
    Windows API); without one :class:`ClipboardError` is raised.
    """

    def __init__(self, backend: Optional[PyperclipClipboard] = None) -> None:
        self.backend = backend or PyperclipClipboard()
        self._log = logging.getLogger(__name__)

    def set_text(self, text: str) -> None:
        try:
            self.backend.set_text(text)
        except pyperclip.PyperclipException as exc:
            self._log.warning("Copy failed", extra=log_extra(error_message=str(exc)))
            raise ClipboardError(f"No system clipboard available: {exc}") from exc


class MemoryClipboard:
    def __init__(self) -> None:
        self.text: str | None = None
        self.history: list[str] = []

    def set_text(self, text: str) -> None:
        self.text = text
        self.history.append(text)
