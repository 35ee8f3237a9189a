from __future__ import annotations

from typing import Any

import psycopg2
import psycopg2.extensions

from ..config import Engine
from ..errors import ConnectionLostError, QueryError, QueryTimeoutError
from .base import DatabaseClient
from .models import ColumnInfo, ConstraintInfo, ForeignKeyInfo, IndexInfo, TableRef

_SYSTEM_SCHEMAS = ("pg_catalog", "information_schema")


class PostgresClient(DatabaseClient):
    engine = Engine.POSTGRES

    def _open(self) -> psycopg2.extensions.connection:
        d = self.descriptor
        conn = psycopg2.connect(
            host=d.socket_path() or d.host,
            port=d.port,
            user=d.user,
            password=d.password or "",
            dbname=d.database or "postgres",
            connect_timeout=self.timeout,
            options=f"-c statement_timeout={self.timeout * 1000}",
        )
        # Each statement stands alone; a failed one must not poison the next.
        conn.autocommit = True
        return conn

    def _interrupt(self, conn: psycopg2.extensions.connection) -> None:
        conn.cancel()

    def _classify(self, exc: Exception) -> QueryError:
        message = str(exc).strip()
        pgcode = getattr(exc, "pgcode", None) or ""
        conn_closed = bool(self._conn is not None and self._conn.closed)
        if isinstance(exc, psycopg2.InterfaceError) or conn_closed:
            return ConnectionLostError(message or "PostgreSQL connection lost")
        if pgcode == "57014":
            if "statement timeout" in message:
                return QueryTimeoutError(message)
            return QueryError(message, kind="cancelled")
        if pgcode.startswith("08") or pgcode in ("57P01", "57P02", "57P03"):
            return ConnectionLostError(message)
        if isinstance(exc, psycopg2.OperationalError) and not pgcode:
            return ConnectionLostError(message or "PostgreSQL connection lost")
        if pgcode.startswith("42") and pgcode != "42501":
            return QueryError(message, kind="syntax")
        if pgcode == "42501":
            return QueryError(message, kind="permission")
        return QueryError(message)

    def _qualified_table(self, table: TableRef) -> str:
        schema = table.schema or "public"
        return f"{self.quote(schema)}.{self.quote(table.name)}"

    def _list_databases(self, conn: Any) -> list[str]:
        # A PostgreSQL link is bound to one database; browse its schemas.
        _, rows = self._fetch(conn, "SELECT current_database()")
        return [rows[0][0]]

    def _list_tables(self, conn: Any, database: str) -> list[TableRef]:
        _, rows = self._fetch(
            conn,
            "SELECT table_schema, table_name FROM information_schema.tables "
            "WHERE table_catalog = %s AND table_schema NOT IN %s "
            "AND table_schema NOT LIKE 'pg_toast%%' "
            "ORDER BY table_schema, table_name",
            (database, _SYSTEM_SCHEMAS),
        )
        return [TableRef(database=database, schema=row[0], name=row[1]) for row in rows]

    def _list_columns(self, conn: Any, table: TableRef) -> list[ColumnInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT c.column_name, c.data_type, c.is_nullable, c.column_default, "
            "col_description(format('%%I.%%I', c.table_schema, c.table_name)::regclass, "
            "c.ordinal_position::int) "
            "FROM information_schema.columns c "
            "WHERE c.table_schema = %s AND c.table_name = %s "
            "ORDER BY c.ordinal_position",
            (table.schema or "public", table.name),
        )
        return [
            ColumnInfo(
                name=r[0],
                data_type=r[1],
                nullable=r[2] == "YES",
                default=r[3],
                comment=r[4],
            )
            for r in rows
        ]

    def _list_constraints(self, conn: Any, table: TableRef) -> list[ConstraintInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT tc.constraint_name, kcu.column_name, tc.constraint_type "
            "FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_name = kcu.constraint_name "
            "AND tc.table_schema = kcu.table_schema "
            "WHERE tc.table_schema = %s AND tc.table_name = %s "
            "ORDER BY tc.constraint_name, kcu.ordinal_position",
            (table.schema or "public", table.name),
        )
        return [ConstraintInfo(name=r[0], column_name=r[1], constraint_type=r[2]) for r in rows]

    def _list_foreign_keys(self, conn: Any, table: TableRef) -> list[ForeignKeyInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT tc.constraint_name, kcu.column_name, ccu.table_name, ccu.column_name "
            "FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_name = kcu.constraint_name "
            "AND tc.table_schema = kcu.table_schema "
            "JOIN information_schema.constraint_column_usage ccu "
            "ON ccu.constraint_name = tc.constraint_name "
            "AND ccu.constraint_schema = tc.table_schema "
            "WHERE tc.constraint_type = 'FOREIGN KEY' "
            "AND tc.table_schema = %s AND tc.table_name = %s "
            "ORDER BY tc.constraint_name, kcu.ordinal_position",
            (table.schema or "public", table.name),
        )
        return [
            ForeignKeyInfo(name=r[0], column_name=r[1], ref_table=r[2], ref_column=r[3])
            for r in rows
        ]

    def _list_indexes(self, conn: Any, table: TableRef) -> list[IndexInfo]:
        _, rows = self._fetch(
            conn,
            "SELECT i.relname, a.attname, ix.indisunique, am.amname "
            "FROM pg_class t "
            "JOIN pg_namespace n ON n.oid = t.relnamespace "
            "JOIN pg_index ix ON ix.indrelid = t.oid "
            "JOIN pg_class i ON i.oid = ix.indexrelid "
            "JOIN pg_am am ON am.oid = i.relam "
            "JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey) "
            "WHERE n.nspname = %s AND t.relname = %s "
            "ORDER BY i.relname, a.attnum",
            (table.schema or "public", table.name),
        )
        return [
            IndexInfo(name=r[0], column_name=r[1], unique=bool(r[2]), index_type=r[3])
            for r in rows
        ]
