"""Canonical records shared by every database client.

Drivers convert engine-specific rows into these types so nothing above the
``db`` package branches on engine kind.
"""

from __future__ import annotations

import datetime
import decimal
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union


class ValueKind(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    BLOB = "blob"
    NULL = "null"


@dataclass(frozen=True)
class Cell:
    display: str
    raw: Any
    kind: ValueKind

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL


NULL_CELL = Cell("NULL", None, ValueKind.NULL)

Row = tuple[Cell, ...]


def to_cell(value: Any) -> Cell:
    if value is None:
        return NULL_CELL
    # bool is an int subclass, so it must be checked first.
    if isinstance(value, bool):
        return Cell("true" if value else "false", value, ValueKind.BOOLEAN)
    if isinstance(value, int):
        return Cell(str(value), value, ValueKind.INTEGER)
    if isinstance(value, float):
        return Cell(repr(value), value, ValueKind.FLOAT)
    if isinstance(value, decimal.Decimal):
        return Cell(str(value), value, ValueKind.DECIMAL)
    if isinstance(value, datetime.datetime):
        return Cell(value.isoformat(sep=" "), value, ValueKind.DATETIME)
    if isinstance(value, (datetime.date, datetime.time)):
        return Cell(value.isoformat(), value, ValueKind.DATETIME)
    if isinstance(value, datetime.timedelta):
        return Cell(str(value), value, ValueKind.DATETIME)
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        return Cell(f"0x{data.hex()}", data, ValueKind.BLOB)
    if isinstance(value, (dict, list)):
        return Cell(json.dumps(value, default=str), value, ValueKind.TEXT)
    return Cell(str(value), value, ValueKind.TEXT)


def to_row(values: Any) -> Row:
    return tuple(to_cell(v) for v in values)


class Tab(str, Enum):
    RECORDS = "records"
    COLUMNS = "columns"
    CONSTRAINTS = "constraints"
    FOREIGN_KEYS = "foreign_keys"
    INDEXES = "indexes"

    @property
    def is_metadata(self) -> bool:
        return self is not Tab.RECORDS


METADATA_TABS = (Tab.COLUMNS, Tab.CONSTRAINTS, Tab.FOREIGN_KEYS, Tab.INDEXES)


@dataclass(frozen=True)
class TableRef:
    database: str
    name: str
    schema: str | None = None

    @property
    def label(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


@dataclass(frozen=True)
class ColumnInfo:
    HEADERS: ClassVar[tuple[str, ...]] = ("name", "type", "null", "default", "comment")

    name: str
    data_type: str
    nullable: bool
    default: str | None = None
    comment: str | None = None

    def as_row(self) -> tuple[str, ...]:
        return (
            self.name,
            self.data_type,
            "YES" if self.nullable else "NO",
            self.default or "",
            self.comment or "",
        )


@dataclass(frozen=True)
class ConstraintInfo:
    HEADERS: ClassVar[tuple[str, ...]] = ("name", "column_name", "type")

    name: str
    column_name: str
    constraint_type: str

    def as_row(self) -> tuple[str, ...]:
        return (self.name, self.column_name, self.constraint_type)


@dataclass(frozen=True)
class ForeignKeyInfo:
    HEADERS: ClassVar[tuple[str, ...]] = ("name", "column_name", "ref_table", "ref_column")

    name: str
    column_name: str
    ref_table: str
    ref_column: str

    def as_row(self) -> tuple[str, ...]:
        return (self.name, self.column_name, self.ref_table, self.ref_column)


@dataclass(frozen=True)
class IndexInfo:
    HEADERS: ClassVar[tuple[str, ...]] = ("name", "column_name", "unique", "type")

    name: str
    column_name: str
    unique: bool
    index_type: str = ""

    def as_row(self) -> tuple[str, ...]:
        return (self.name, self.column_name, "YES" if self.unique else "NO", self.index_type)


MetadataRecord = Union[ColumnInfo, ConstraintInfo, ForeignKeyInfo, IndexInfo]

METADATA_RECORDS: dict[Tab, type] = {
    Tab.COLUMNS: ColumnInfo,
    Tab.CONSTRAINTS: ConstraintInfo,
    Tab.FOREIGN_KEYS: ForeignKeyInfo,
    Tab.INDEXES: IndexInfo,
}


@dataclass(frozen=True)
class SchemaObject:
    table: TableRef
    columns: tuple[ColumnInfo, ...]
    constraints: tuple[ConstraintInfo, ...]
    foreign_keys: tuple[ForeignKeyInfo, ...]
    indexes: tuple[IndexInfo, ...]

    def fragment(self, tab: Tab) -> tuple[MetadataRecord, ...]:
        return {
            Tab.COLUMNS: self.columns,
            Tab.CONSTRAINTS: self.constraints,
            Tab.FOREIGN_KEYS: self.foreign_keys,
            Tab.INDEXES: self.indexes,
        }[tab]


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"

    def inverse(self) -> SortDirection:
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


@dataclass(frozen=True)
class OrderBy:
    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class TableRequest:
    table: TableRef
    filter: str = ""
    order: OrderBy | None = None


@dataclass(frozen=True)
class SqlRequest:
    sql: str
    filter: str = ""
    order: OrderBy | None = None


PageRequest = Union[TableRequest, SqlRequest]


@dataclass(frozen=True)
class ResultPage:
    headers: tuple[str, ...]
    rows: tuple[Row, ...]
    offset: int = 0
    has_more: bool = False
    total_estimate: int | None = None
    affected_rows: int | None = None

    @property
    def column_count(self) -> int:
        return len(self.headers)
