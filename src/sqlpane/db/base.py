from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Iterable, Sequence, TypeVar

from ..config import ConnectionDescriptor, Engine
from ..errors import (
    ConnectionLostError,
    DatabaseConnectionError,
    QueryError,
    SchemaIntrospectionError,
)
from ..guardrails import detect_statement_type, is_wrappable, quote_identifier, strip_statement
from ..logging_utils import log_extra
from .models import (
    ColumnInfo,
    ConstraintInfo,
    ForeignKeyInfo,
    IndexInfo,
    PageRequest,
    ResultPage,
    SqlRequest,
    Tab,
    TableRef,
    TableRequest,
    to_row,
)

T = TypeVar("T")

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class QueryHandle:
    """Identifies one statement so it can be cancelled before or while it runs.

    A cancelled handle never reaches the driver: the worker checks the flag
    once it holds the link and gives up without touching the connection.
    """

    id: int = field(default_factory=lambda: next(_handle_ids))
    _cancelled: threading.Event = field(
        default_factory=threading.Event, compare=False, repr=False
    )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


class DatabaseClient(ABC):
    """Common capability contract for one live database link.

    Subclasses supply the dialect: how to open the link, which catalog
    queries answer each introspection call, and how driver exceptions map
    onto the error taxonomy. Every statement runs on a worker thread and is
    serialized through ``_lock`` so a single link never sees two commands
    at once.
    """

    engine: ClassVar[Engine]
    quote_char: ClassVar[str] = '"'

    def __init__(self, descriptor: ConnectionDescriptor) -> None:
        self.descriptor = descriptor
        self._conn: Any = None
        self._lock = threading.Lock()
        self._active: QueryHandle | None = None
        self._lost = False
        self._log = logging.getLogger(type(self).__module__)

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._lost

    @property
    def timeout(self) -> int:
        return self.descriptor.timeout_second

    # -- lifecycle -----------------------------------------------------

    async def connect(self) -> DatabaseClient:
        await asyncio.to_thread(self._connect_sync)
        return self

    def _connect_sync(self) -> None:
        with self._lock:
            started = time.monotonic()
            try:
                self._conn = self._open()
            except DatabaseConnectionError:
                raise
            except Exception as exc:
                self._log.warning(
                    "Connection failed",
                    extra=log_extra(connection=self.descriptor.id, error_message=str(exc)),
                )
                raise DatabaseConnectionError(self._describe_connect_error(exc)) from exc
            self._lost = False
            self._log.info(
                "Connected",
                extra=log_extra(
                    connection=self.descriptor.id,
                    engine=self.engine.value,
                    elapsed=round(time.monotonic() - started, 3),
                ),
            )

    async def disconnect(self) -> None:
        # Goes through the lock even when unconnected so a connect still in
        # flight is closed as soon as it finishes.
        conn = self._conn
        if conn is not None and self._active is not None:
            await asyncio.to_thread(self._interrupt, conn)
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is None:
                return
            try:
                conn.close()
            except Exception as exc:
                # A link that already dropped cannot be closed cleanly.
                self._log.debug(
                    "Close failed",
                    extra=log_extra(connection=self.descriptor.id, error_message=str(exc)),
                )
            self._log.info("Disconnected", extra=log_extra(connection=self.descriptor.id))

    async def cancel(self, handle: QueryHandle | None = None) -> bool:
        """Best-effort interrupt of the running statement.

        Only interrupts when ``handle`` is the statement currently running on
        this link; returns whether an interrupt was sent.
        """
        active = self._active
        conn = self._conn
        if conn is None or active is None:
            return False
        if handle is not None and handle != active:
            return False
        self._log.info(
            "Cancellation requested",
            extra=log_extra(connection=self.descriptor.id, handle=active.id),
        )
        await asyncio.to_thread(self._interrupt, conn)
        return True

    # -- capability contract --------------------------------------------

    async def list_databases(self, handle: QueryHandle | None = None) -> list[str]:
        return await self._call(self._list_databases, handle)

    async def list_tables(
        self, database: str, handle: QueryHandle | None = None
    ) -> list[TableRef]:
        return await self._call(lambda conn: self._list_tables(conn, database), handle)

    async def list_columns(
        self, table: TableRef, handle: QueryHandle | None = None
    ) -> tuple[ColumnInfo, ...]:
        return await self._introspect(Tab.COLUMNS, table, self._list_columns, handle)

    async def list_constraints(
        self, table: TableRef, handle: QueryHandle | None = None
    ) -> tuple[ConstraintInfo, ...]:
        return await self._introspect(Tab.CONSTRAINTS, table, self._list_constraints, handle)

    async def list_foreign_keys(
        self, table: TableRef, handle: QueryHandle | None = None
    ) -> tuple[ForeignKeyInfo, ...]:
        return await self._introspect(Tab.FOREIGN_KEYS, table, self._list_foreign_keys, handle)

    async def list_indexes(
        self, table: TableRef, handle: QueryHandle | None = None
    ) -> tuple[IndexInfo, ...]:
        return await self._introspect(Tab.INDEXES, table, self._list_indexes, handle)

    async def introspect(
        self, tab: Tab, table: TableRef, handle: QueryHandle | None = None
    ) -> tuple[Any, ...]:
        calls = {
            Tab.COLUMNS: self.list_columns,
            Tab.CONSTRAINTS: self.list_constraints,
            Tab.FOREIGN_KEYS: self.list_foreign_keys,
            Tab.INDEXES: self.list_indexes,
        }
        return await calls[tab](table, handle)

    async def execute_paginated_query(
        self,
        request: PageRequest,
        offset: int,
        limit: int,
        handle: QueryHandle | None = None,
    ) -> ResultPage:
        return await self._call(
            lambda conn: self._paginate(conn, request, offset, limit), handle
        )

    # -- dialect hooks --------------------------------------------------

    @abstractmethod
    def _open(self) -> Any:
        """Open and return a DB-API connection."""

    @abstractmethod
    def _classify(self, exc: Exception) -> QueryError:
        """Map a driver exception onto the query error taxonomy."""

    @abstractmethod
    def _interrupt(self, conn: Any) -> None:
        """Interrupt the statement currently running on ``conn``."""

    @abstractmethod
    def _list_databases(self, conn: Any) -> list[str]: ...

    @abstractmethod
    def _list_tables(self, conn: Any, database: str) -> list[TableRef]: ...

    @abstractmethod
    def _list_columns(self, conn: Any, table: TableRef) -> list[ColumnInfo]: ...

    @abstractmethod
    def _list_constraints(self, conn: Any, table: TableRef) -> list[ConstraintInfo]: ...

    @abstractmethod
    def _list_foreign_keys(self, conn: Any, table: TableRef) -> list[ForeignKeyInfo]: ...

    @abstractmethod
    def _list_indexes(self, conn: Any, table: TableRef) -> list[IndexInfo]: ...

    @abstractmethod
    def _qualified_table(self, table: TableRef) -> str: ...

    def _describe_connect_error(self, exc: Exception) -> str:
        return f"Failed to connect to {self.descriptor.display_name}: {exc}"

    def _select_prefix(self) -> str:
        return "SELECT"

    def _arm(self, conn: Any) -> None:
        """Called under the lock before each statement."""

    def _disarm(self, conn: Any) -> None:
        """Called under the lock after each statement."""

    # -- execution ------------------------------------------------------

    def quote(self, identifier: str) -> str:
        return quote_identifier(identifier, self.quote_char)

    async def _call(
        self, fn: Callable[[Any], T], handle: QueryHandle | None = None
    ) -> T:
        return await asyncio.to_thread(self._run, fn, handle or QueryHandle())

    async def _introspect(
        self,
        tab: Tab,
        table: TableRef,
        fn: Callable[[Any, TableRef], Iterable[Any]],
        handle: QueryHandle | None = None,
    ) -> tuple[Any, ...]:
        try:
            return tuple(await self._call(lambda conn: fn(conn, table), handle))
        except QueryError as exc:
            raise SchemaIntrospectionError(str(exc), tab=tab.value, kind=exc.kind) from exc

    def _run(self, fn: Callable[[Any], T], handle: QueryHandle) -> T:
        with self._lock:
            if handle.cancelled:
                self._log.debug(
                    "Query skipped",
                    extra=log_extra(connection=self.descriptor.id, handle=handle.id),
                )
                raise QueryError("Query was superseded before it started", kind="cancelled")
            if self._lost:
                raise ConnectionLostError(
                    f"Connection to {self.descriptor.id} was lost; reconnect required"
                )
            if self._conn is None:
                raise QueryError(f"Not connected to {self.descriptor.id}", kind="closed")
            conn = self._conn
            self._active = handle
            try:
                self._arm(conn)
                return fn(conn)
            except QueryError:
                raise
            except Exception as exc:
                error = self._classify(exc)
                if isinstance(error, ConnectionLostError):
                    self._lost = True
                self._log.warning(
                    "Query failed",
                    extra=log_extra(
                        connection=self.descriptor.id,
                        handle=handle.id,
                        kind=error.kind,
                        error_message=str(exc),
                    ),
                )
                raise error from exc
            finally:
                self._active = None
                if not self._lost:
                    self._disarm(conn)

    def _fetch(
        self, conn: Any, sql: str, params: Sequence[Any] | None = None
    ) -> tuple[list[str], list[tuple[Any, ...]]]:
        cursor = conn.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            description = cursor.description or []
            rows = [tuple(row) for row in cursor.fetchall()] if description else []
        finally:
            cursor.close()
        return [col[0] for col in description], rows

    def _execute_raw(self, conn: Any, sql: str) -> tuple[list[str], list[tuple[Any, ...]], int]:
        cursor = conn.cursor()
        try:
            cursor.execute(sql)
            description = cursor.description or []
            rows = [tuple(row) for row in cursor.fetchall()] if description else []
            affected = cursor.rowcount
        finally:
            cursor.close()
        return [col[0] for col in description], rows, affected

    def _paginate(
        self, conn: Any, request: PageRequest, offset: int, limit: int
    ) -> ResultPage:
        started = time.monotonic()
        if isinstance(request, SqlRequest) and not is_wrappable(request.sql):
            page = self._run_statement(conn, request.sql, offset, limit)
        else:
            relation = self._relation(request)
            where = f" WHERE {request.filter}" if request.filter.strip() else ""
            order = ""
            if request.order is not None:
                order = f" ORDER BY {self.quote(request.order.column)} {request.order.direction.value}"
            sql = (
                f"{self._select_prefix()} * FROM {relation}{where}{order} "
                f"LIMIT {limit + 1} OFFSET {offset}"
            )
            headers, raw = self._fetch(conn, sql)
            total = None
            if isinstance(request, TableRequest):
                _, count = self._fetch(conn, f"SELECT COUNT(*) FROM {relation}{where}")
                total = int(count[0][0]) if count else None
            page = ResultPage(
                headers=tuple(headers),
                rows=tuple(to_row(r) for r in raw[:limit]),
                offset=offset,
                has_more=len(raw) > limit,
                total_estimate=total,
            )
        self._log.info(
            "Query executed",
            extra=log_extra(
                connection=self.descriptor.id,
                offset=offset,
                rows=len(page.rows),
                has_more=page.has_more,
                elapsed=round(time.monotonic() - started, 3),
            ),
        )
        return page

    def _relation(self, request: PageRequest) -> str:
        if isinstance(request, TableRequest):
            return self._qualified_table(request.table)
        return f"({strip_statement(request.sql)}) AS q"

    def _run_statement(self, conn: Any, sql: str, offset: int, limit: int) -> ResultPage:
        statement_type = detect_statement_type(sql)
        headers, raw, affected = self._execute_raw(conn, strip_statement(sql))
        if not headers:
            self._log.info(
                "Statement executed",
                extra=log_extra(
                    connection=self.descriptor.id,
                    statement_type=statement_type,
                    affected_rows=affected,
                ),
            )
            return ResultPage(headers=(), rows=(), affected_rows=max(affected, 0))
        window = raw[offset:offset + limit]
        return ResultPage(
            headers=tuple(headers),
            rows=tuple(to_row(r) for r in window),
            offset=offset,
            has_more=len(raw) > offset + limit,
            total_estimate=len(raw),
        )
