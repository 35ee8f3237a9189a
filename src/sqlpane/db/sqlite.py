from __future__ import annotations

import sqlite3
import time
from typing import Any

from ..config import Engine, expand_path
from ..errors import ConnectionLostError, DatabaseConnectionError, QueryError, QueryTimeoutError
from .base import DatabaseClient
from .models import ColumnInfo, ConstraintInfo, ForeignKeyInfo, IndexInfo, TableRef

# Virtual machine instructions between deadline checks.
_PROGRESS_STEPS = 1000


class SQLiteClient(DatabaseClient):
    engine = Engine.SQLITE

    def __init__(self, descriptor) -> None:
        super().__init__(descriptor)
        self._deadline = 0.0
        self._timed_out = False

    def _open(self) -> sqlite3.Connection:
        path = expand_path(self.descriptor.path)
        if not path.is_file():
            raise DatabaseConnectionError(f"SQLite database file not found: {path}")
        # mode=rw refuses to create a new empty database on a typo.
        conn = sqlite3.connect(
            f"file:{path}?mode=rw",
            uri=True,
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _arm(self, conn: sqlite3.Connection) -> None:
        self._deadline = time.monotonic() + self.timeout
        self._timed_out = False
        conn.set_progress_handler(self._check_deadline, _PROGRESS_STEPS)

    def _disarm(self, conn: sqlite3.Connection) -> None:
        conn.set_progress_handler(None, _PROGRESS_STEPS)

    def _check_deadline(self) -> int:
        if time.monotonic() > self._deadline:
            self._timed_out = True
            return 1
        return 0

    def _interrupt(self, conn: sqlite3.Connection) -> None:
        conn.interrupt()

    def _classify(self, exc: Exception) -> QueryError:
        message = str(exc)
        if isinstance(exc, sqlite3.ProgrammingError) and "closed" in message:
            return ConnectionLostError(message)
        if isinstance(exc, sqlite3.OperationalError):
            lowered = message.lower()
            if "interrupted" in lowered:
                if self._timed_out:
                    return QueryTimeoutError(f"Query exceeded {self.timeout}s: {message}")
                return QueryError(message, kind="cancelled")
            if "syntax error" in lowered or "unrecognized token" in lowered or "incomplete input" in lowered:
                return QueryError(message, kind="syntax")
            if "readonly" in lowered or "not authorized" in lowered:
                return QueryError(message, kind="permission")
            if "disk i/o error" in lowered:
                return ConnectionLostError(message)
        return QueryError(message)

    def _qualified_table(self, table: TableRef) -> str:
        return f"{self.quote(table.database)}.{self.quote(table.name)}"

    def _pragma(self, conn: sqlite3.Connection, database: str, pragma: str, target: str) -> list[tuple[Any, ...]]:
        _, rows = self._fetch(conn, f"PRAGMA {self.quote(database)}.{pragma}({self.quote(target)})")
        return rows

    def _list_databases(self, conn: sqlite3.Connection) -> list[str]:
        _, rows = self._fetch(conn, "PRAGMA database_list")
        return [row[1] for row in rows if row[1] != "temp"]

    def _list_tables(self, conn: sqlite3.Connection, database: str) -> list[TableRef]:
        _, rows = self._fetch(
            conn,
            f"SELECT name FROM {self.quote(database)}.sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name",
        )
        return [TableRef(database=database, name=row[0]) for row in rows]

    def _list_columns(self, conn: sqlite3.Connection, table: TableRef) -> list[ColumnInfo]:
        # table_info: cid, name, type, notnull, dflt_value, pk
        return [
            ColumnInfo(
                name=row[1],
                data_type=row[2] or "",
                nullable=not row[3] and not row[5],
                default=None if row[4] is None else str(row[4]),
            )
            for row in self._pragma(conn, table.database, "table_info", table.name)
        ]

    def _list_constraints(self, conn: sqlite3.Connection, table: TableRef) -> list[ConstraintInfo]:
        info = self._pragma(conn, table.database, "table_info", table.name)
        constraints = [
            ConstraintInfo(name="PRIMARY", column_name=row[1], constraint_type="PRIMARY KEY")
            for row in sorted((r for r in info if r[5]), key=lambda r: r[5])
        ]
        # index_list: seq, name, unique, origin, partial
        for index in self._pragma(conn, table.database, "index_list", table.name):
            if not index[2] or index[3] != "u":
                continue
            for column in self._pragma(conn, table.database, "index_info", index[1]):
                constraints.append(
                    ConstraintInfo(name=index[1], column_name=column[2], constraint_type="UNIQUE")
                )
        return constraints

    def _list_foreign_keys(self, conn: sqlite3.Connection, table: TableRef) -> list[ForeignKeyInfo]:
        # foreign_key_list: id, seq, table, from, to, on_update, on_delete, match
        return [
            ForeignKeyInfo(
                name=f"fk_{row[0]}",
                column_name=row[3],
                ref_table=row[2],
                ref_column=row[4] or "",
            )
            for row in self._pragma(conn, table.database, "foreign_key_list", table.name)
        ]

    def _list_indexes(self, conn: sqlite3.Connection, table: TableRef) -> list[IndexInfo]:
        origins = {"c": "CREATE INDEX", "u": "UNIQUE", "pk": "PRIMARY KEY"}
        indexes = []
        for index in self._pragma(conn, table.database, "index_list", table.name):
            # index_info: seqno, cid, name
            for column in self._pragma(conn, table.database, "index_info", index[1]):
                indexes.append(
                    IndexInfo(
                        name=index[1],
                        column_name=column[2] or "",
                        unique=bool(index[2]),
                        index_type=origins.get(index[3], index[3]),
                    )
                )
        return indexes
