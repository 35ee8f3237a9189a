from __future__ import annotations

from typing import Any

import pymysql
from pymysql.err import Error as MySQLError

from ..config import Engine
from ..errors import ConnectionLostError, QueryError, QueryTimeoutError
from ..logging_utils import log_extra
from .base import DatabaseClient
from .models import ColumnInfo, ConstraintInfo, ForeignKeyInfo, IndexInfo, TableRef

_SYNTAX_ERRORS = {1064, 1054, 1146, 1149}
_PERMISSION_ERRORS = {1044, 1045, 1142, 1143, 1227}
_LOST_ERRORS = {2006, 2013, 2055}
_TIMEOUT_ERRORS = {3024, 1969}
_INTERRUPTED = 1317


class MySQLClient(DatabaseClient):
    engine = Engine.MYSQL
    quote_char = "`"

    def _connect_kwargs(self) -> dict[str, Any]:
        d = self.descriptor
        kwargs: dict[str, Any] = {
            "user": d.user,
            "password": d.password or "",
            "database": d.database,
            "connect_timeout": self.timeout,
            # Backstop for statements the optimizer hint does not cover.
            "read_timeout": self.timeout * 2,
            "autocommit": True,
            "charset": "utf8mb4",
        }
        socket = d.socket_path()
        if socket:
            kwargs["unix_socket"] = socket
        else:
            kwargs["host"] = d.host
            kwargs["port"] = d.port
        return kwargs

    def _open(self) -> pymysql.connections.Connection:
        return pymysql.connect(**self._connect_kwargs())

    def _select_prefix(self) -> str:
        return f"SELECT /*+ MAX_EXECUTION_TIME({self.timeout * 1000}) */"

    def _interrupt(self, conn: pymysql.connections.Connection) -> None:
        # KILL QUERY must travel over a second link; the first one is busy.
        thread_id = conn.thread_id()
        try:
            side = pymysql.connect(**self._connect_kwargs())
        except MySQLError as exc:
            self._log.warning(
                "Cancel link failed",
                extra=log_extra(connection=self.descriptor.id, error_message=str(exc)),
            )
            return
        try:
            with side.cursor() as cursor:
                cursor.execute(f"KILL QUERY {int(thread_id)}")
        except MySQLError as exc:
            self._log.warning(
                "KILL QUERY failed",
                extra=log_extra(connection=self.descriptor.id, error_message=str(exc)),
            )
        finally:
            side.close()

    def _classify(self, exc: Exception) -> QueryError:
        code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
        message = str(exc.args[1]) if len(exc.args) > 1 else str(exc)
        if isinstance(exc, pymysql.err.InterfaceError) or code in _LOST_ERRORS:
            return ConnectionLostError(message or "MySQL connection lost")
        if code in _TIMEOUT_ERRORS:
            return QueryTimeoutError(message)
        if code == _INTERRUPTED:
            return QueryError(message, kind="cancelled")
        if code in _SYNTAX_ERRORS:
            return QueryError(message, kind="syntax")
        if code in _PERMISSION_ERRORS:
            return QueryError(message, kind="permission")
        return QueryError(message)

    def _qualified_table(self, table: TableRef) -> str:
        return f"{self.quote(table.database)}.{self.quote(table.name)}"

    def _list_databases(self, conn: Any) -> list[str]:
        if self.descriptor.database:
            return [self.descriptor.database]
        _, rows = self._fetch(
            conn, "SELECT schema_name FROM information_schema.schemata ORDER BY schema_name"
        )
        return [row[0] for row in rows]

    def _list_tables(self, conn: Any, database: str) -> list[TableRef]:
        _, rows = self._fetch(
            conn,
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = %s ORDER BY table_name",
            (database,),
        )
        return [TableRef(database=database, name=row[0]) for row in rows]

    def _list_columns(self, conn: Any, table: TableRef) -> list[ColumnInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT column_name, column_type, is_nullable, column_default, column_comment "
            "FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name = %s "
            "ORDER BY ordinal_position",
            (table.database, table.name),
        )
        return [
            ColumnInfo(
                name=row[0],
                data_type=_text(row[1]),
                nullable=row[2] == "YES",
                default=None if row[3] is None else _text(row[3]),
                comment=_text(row[4]) or None,
            )
            for row in rows
        ]

    def _list_constraints(self, conn: Any, table: TableRef) -> list[ConstraintInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT tc.constraint_name, kcu.column_name, tc.constraint_type "
            "FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_schema = kcu.constraint_schema "
            "AND tc.constraint_name = kcu.constraint_name "
            "AND tc.table_name = kcu.table_name "
            "WHERE tc.table_schema = %s AND tc.table_name = %s "
            "ORDER BY tc.constraint_name, kcu.ordinal_position",
            (table.database, table.name),
        )
        return [ConstraintInfo(name=r[0], column_name=r[1], constraint_type=r[2]) for r in rows]

    def _list_foreign_keys(self, conn: Any, table: TableRef) -> list[ForeignKeyInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT constraint_name, column_name, referenced_table_name, referenced_column_name "
            "FROM information_schema.key_column_usage "
            "WHERE table_schema = %s AND table_name = %s "
            "AND referenced_table_name IS NOT NULL "
            "ORDER BY constraint_name, ordinal_position",
            (table.database, table.name),
        )
        return [
            ForeignKeyInfo(name=r[0], column_name=r[1], ref_table=r[2], ref_column=r[3])
            for r in rows
        ]

    def _list_indexes(self, conn: Any, table: TableRef) -> list[IndexInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT index_name, column_name, non_unique, index_type "
            "FROM information_schema.statistics "
            "WHERE table_schema = %s AND table_name = %s "
            "ORDER BY index_name, seq_in_index",
            (table.database, table.name),
        )
        return [
            IndexInfo(name=r[0], column_name=r[1] or "", unique=not int(r[2]), index_type=r[3])
            for r in rows
        ]


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return "" if value is None else str(value)
