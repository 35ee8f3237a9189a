import sqlite3
from pathlib import Path

import pytest

from sqlpane.config import ConnectionDescriptor, Engine


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    """A SQLite file with a three-row ``users`` table and a dependent ``orders``."""
    path = tmp_path / "app.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT UNIQUE,
            score REAL
        );
        INSERT INTO users (id, name, email, score) VALUES
            (1, 'alice', 'alice@example.com', 9.5),
            (2, 'bob', 'bob@example.com', 7.25),
            (3, 'carol', NULL, NULL);
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id),
            total NUMERIC
        );
        CREATE INDEX idx_orders_user ON orders(user_id);
        """
    )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def sqlite_descriptor(sqlite_path: Path) -> ConnectionDescriptor:
    return ConnectionDescriptor(engine=Engine.SQLITE, name="local", path=sqlite_path)
