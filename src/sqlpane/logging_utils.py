from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

DEFAULT_LOG_FILE = Path("~/.cache/sqlpane/sqlpane.log")


def configure_logging(level: str, log_file: str | Path | None = DEFAULT_LOG_FILE) -> None:
    # The terminal belongs to the UI, so records go to a file when one is given.
    kwargs: dict[str, Any] = {}
    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        kwargs["filename"] = str(path)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        **kwargs,
    )


def log_extra(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}
