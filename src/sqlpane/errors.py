from __future__ import annotations


class ConfigError(ValueError):
    """Configuration is missing or invalid."""


class KeyBindingError(ValueError):
    """Key binding file names an unknown mode, key, or action."""


class DatabaseConnectionError(ConnectionError):
    """Connecting to a database failed (auth, unreachable, protocol)."""


class QueryError(RuntimeError):
    """Query execution failed in a user-facing way."""

    kind = "unknown"

    def __init__(self, message: str, kind: str | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class QueryTimeoutError(QueryError):
    """Query exceeded the connection's timeout."""

    kind = "timeout"


class ConnectionLostError(QueryError):
    """The link to the server dropped; the slot must reconnect."""

    kind = "connection_lost"


class SchemaIntrospectionError(QueryError):
    """Catalog introspection for one metadata tab failed."""

    def __init__(self, message: str, tab: str, kind: str | None = None) -> None:
        super().__init__(message, kind)
        self.tab = tab


class ClipboardError(RuntimeError):
    """Copied text could not be handed to the system clipboard."""
