"""Command-line entry point for the sqlpane terminal browser.

Configuration and key bindings are loaded and validated before the UI
starts; any problem with either is reported on stderr with a non-zero exit
code so the running browser only ever sees a valid setup.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Sequence

from . import __version__
from .config import AppConfig, expand_path, load_config
from .errors import ConfigError, KeyBindingError
from .keymap import Keymap, load_key_bindings
from .logging_utils import DEFAULT_LOG_FILE, configure_logging

DEFAULT_CONFIG_PATH = Path("~/.config/sqlpane/config.yml")
DEFAULT_KEY_BIND_PATH = Path("~/.config/sqlpane/key_bind.yml")


def _config_path(cli_value: str | None) -> Path:
    """Get the configuration file path from the command line, environment or default."""
    if cli_value:
        return expand_path(cli_value)
    return expand_path(os.environ.get("SQLPANE_CONFIG", str(DEFAULT_CONFIG_PATH)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sqlpane",
        description="Browse MySQL, PostgreSQL and SQLite databases from the terminal",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c",
        "--config-path",
        help="Path to the connections file (default: $SQLPANE_CONFIG or ~/.config/sqlpane/config.yml)",
    )
    parser.add_argument(
        "-k",
        "--key-bind-path",
        help="Path to a key binding override file",
    )
    return parser


def load_settings(args: argparse.Namespace) -> tuple[AppConfig, Keymap]:
    config = load_config(_config_path(args.config_path))
    if args.key_bind_path:
        overrides = load_key_bindings(args.key_bind_path)
    elif config.key_bind_path is not None:
        overrides = load_key_bindings(config.key_bind_path)
    else:
        overrides = load_key_bindings(DEFAULT_KEY_BIND_PATH, required=False)
    return config, Keymap(overrides)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config, keymap = load_settings(args)
    except (ConfigError, KeyBindingError) as exc:
        print(f"sqlpane: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.log_level, config.log_file or DEFAULT_LOG_FILE)

    # Imported late so a bad config exits before the terminal UI loads.
    from .navigation import Navigator
    from .ui import run

    async def _session() -> int:
        nav = Navigator(config.connections, keymap=keymap, max_retained_rows=config.max_retained_rows)
        return await run(nav)

    return asyncio.run(_session())


if __name__ == "__main__":
    sys.exit(main())
