"""Terminal browser for MySQL, PostgreSQL and SQLite databases."""

__version__ = "0.1.0"

# Submodules are imported on demand; the UI pulls in prompt_toolkit.
__all__ = [
    "catalog",
    "config",
    "db",
    "executor",
    "keymap",
    "navigation",
    "table_model",
]
