"""Database clients, one per supported engine."""

from __future__ import annotations

from ..config import ConnectionDescriptor, Engine
from .base import DatabaseClient, QueryHandle
from .mysql import MySQLClient
from .postgres import PostgresClient
from .sqlite import SQLiteClient

ENGINE_CLIENTS: dict[Engine, type[DatabaseClient]] = {
    Engine.MYSQL: MySQLClient,
    Engine.POSTGRES: PostgresClient,
    Engine.SQLITE: SQLiteClient,
}


def create_client(descriptor: ConnectionDescriptor) -> DatabaseClient:
    return ENGINE_CLIENTS[descriptor.engine](descriptor)


__all__ = [
    "DatabaseClient",
    "ENGINE_CLIENTS",
    "MySQLClient",
    "PostgresClient",
    "QueryHandle",
    "SQLiteClient",
    "create_client",
]
