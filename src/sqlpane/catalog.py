from __future__ import annotations

import logging
from typing import Any, Iterable

from .db.models import METADATA_TABS, SchemaObject, Tab, TableRef
from .logging_utils import log_extra


class CatalogCache:
    """Introspected metadata per connection.

    Every entry is a tuple written once by the introspection path and never
    mutated afterwards; a second write for the same key keeps the first
    snapshot. Entries for a connection disappear together on ``evict``.
    """

    def __init__(self) -> None:
        self._tables: dict[str, tuple[TableRef, ...]] = {}
        self._fragments: dict[tuple[str, TableRef, Tab], tuple[Any, ...]] = {}
        self._log = logging.getLogger(__name__)

    def tables(self, connection_id: str) -> tuple[TableRef, ...] | None:
        return self._tables.get(connection_id)

    def put_tables(self, connection_id: str, tables: Iterable[TableRef]) -> tuple[TableRef, ...]:
        return self._tables.setdefault(connection_id, tuple(tables))

    def fragment(self, connection_id: str, table: TableRef, tab: Tab) -> tuple[Any, ...] | None:
        return self._fragments.get((connection_id, table, tab))

    def put_fragment(
        self, connection_id: str, table: TableRef, tab: Tab, records: Iterable[Any]
    ) -> tuple[Any, ...]:
        if not tab.is_metadata:
            raise ValueError(f"{tab.value} is not a metadata tab")
        return self._fragments.setdefault((connection_id, table, tab), tuple(records))

    def schema_object(self, connection_id: str, table: TableRef) -> SchemaObject | None:
        """Return the full SchemaObject once every fragment has been loaded."""
        fragments = [self.fragment(connection_id, table, tab) for tab in METADATA_TABS]
        if any(f is None for f in fragments):
            return None
        columns, constraints, foreign_keys, indexes = fragments
        return SchemaObject(
            table=table,
            columns=columns,
            constraints=constraints,
            foreign_keys=foreign_keys,
            indexes=indexes,
        )

    def evict(self, connection_id: str) -> None:
        self._tables.pop(connection_id, None)
        stale = [key for key in self._fragments if key[0] == connection_id]
        for key in stale:
            del self._fragments[key]
        self._log.info(
            "Catalog evicted",
            extra=log_extra(connection=connection_id, fragments=len(stale)),
        )
