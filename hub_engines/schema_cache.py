"""
Schema Introspection
====================

Column-existence lookups and soft-delete handling for tables whose shape
varies between deployments (older installs track deleted addresses with an
``is_deleted`` flag, newer ones with ``deleted_at`` or a ``status`` column).

SchemaCache:
------------
An explicit cache object, created by the caller and passed to whatever needs
it. Entries expire after ``ttl_seconds`` and ``invalidate()`` drops them
immediately (call it after a migration). Callers that do not inject a cache
share one per engine through ``get_schema_cache``.

    cache = SchemaCache(engine, ttl_seconds=300)
    cache.has_column("customer_addresses", "deleted_at")
    cache = get_schema_cache(engine)

SoftDeleteStrategy:
-------------------
Resolved once per table from the introspected columns, then reused for every
query and row check. A table with no known marker column gets
``FailClosedSoftDelete``, which matches no rows at all.

    strategy = cache.soft_delete_strategy(CustomerAddress.__table__)
    rows = db.query(CustomerAddress).filter(strategy.active_clause(CustomerAddress.__table__))
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import and_, false, inspect, or_, true
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.schema import Table

logger = logging.getLogger(__name__)


class SchemaCache:
    """TTL cache of table -> column names, read through SQLAlchemy's inspector."""

    def __init__(self, bind: Engine, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.bind = bind
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, FrozenSet[str]]] = {}
        self._strategies: Dict[str, Tuple[FrozenSet[str], "SoftDeleteStrategy"]] = {}
        self._lock = threading.Lock()

    def columns(self, table_name: str) -> FrozenSet[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(table_name)
            if entry is not None and now - entry[0] < self.ttl_seconds:
                return entry[1]

        try:
            names = frozenset(col["name"] for col in inspect(self.bind).get_columns(table_name))
        except Exception as e:
            # Unknown tables are treated as having no columns
            logger.warning("Could not introspect table %s: %s", table_name, e)
            names = frozenset()

        with self._lock:
            self._entries[table_name] = (now, names)
        return names

    def has_column(self, table_name: str, column: str) -> bool:
        return column in self.columns(table_name)

    def soft_delete_strategy(self, table: Table) -> "SoftDeleteStrategy":
        """
        Strategy for ``table``, resolved once and reused until the table's
        cached columns change.
        """
        columns = self.columns(table.name)
        with self._lock:
            entry = self._strategies.get(table.name)
            if entry is not None and entry[0] == columns:
                return entry[1]

        strategy = resolve_soft_delete_strategy(self, table)
        with self._lock:
            self._strategies[table.name] = (columns, strategy)
        return strategy

    def invalidate(self, table_name: Optional[str] = None) -> None:
        with self._lock:
            if table_name is None:
                self._entries.clear()
                self._strategies.clear()
            else:
                self._entries.pop(table_name, None)
                self._strategies.pop(table_name, None)


_shared_caches: Dict[Engine, SchemaCache] = {}
_shared_lock = threading.Lock()


def get_schema_cache(bind: Engine, ttl_seconds: float = 300) -> SchemaCache:
    """One SchemaCache per engine, shared by every caller that does not inject its own."""
    with _shared_lock:
        cache = _shared_caches.get(bind)
        if cache is None:
            cache = SchemaCache(bind, ttl_seconds=ttl_seconds)
            _shared_caches[bind] = cache
        return cache


# =============================================================================
# Soft-delete strategies
# =============================================================================

class SoftDeleteStrategy:
    """How a table marks rows as deleted."""

    name = "base"

    def active_clause(self, table: Table) -> ColumnElement:
        raise NotImplementedError

    def is_active(self, row: Any) -> bool:
        raise NotImplementedError


class DeletedFlagSoftDelete(SoftDeleteStrategy):
    """Integer/boolean flag column, e.g. ``is_deleted``; truthy means deleted."""

    name = "flag"

    def __init__(self, column: str = "is_deleted"):
        self.column = column

    def active_clause(self, table: Table) -> ColumnElement:
        col = table.c[self.column]
        return or_(col.is_(None), col == false())

    def is_active(self, row: Any) -> bool:
        return not getattr(row, self.column, None)


class DeletedAtSoftDelete(SoftDeleteStrategy):
    """Timestamp column, e.g. ``deleted_at``; any value means deleted."""

    name = "timestamp"

    def __init__(self, column: str = "deleted_at"):
        self.column = column

    def active_clause(self, table: Table) -> ColumnElement:
        return table.c[self.column].is_(None)

    def is_active(self, row: Any) -> bool:
        return getattr(row, self.column, None) is None


class StatusSoftDelete(SoftDeleteStrategy):
    """Status column; only ``active_value`` counts as live."""

    name = "status"

    def __init__(self, column: str = "status", active_value: str = "active"):
        self.column = column
        self.active_value = active_value

    def active_clause(self, table: Table) -> ColumnElement:
        return table.c[self.column] == self.active_value

    def is_active(self, row: Any) -> bool:
        return getattr(row, self.column, None) == self.active_value


class CompositeSoftDelete(SoftDeleteStrategy):
    """A row is live only when every marker says so."""

    name = "composite"

    def __init__(self, strategies: List[SoftDeleteStrategy]):
        self.strategies = strategies

    def active_clause(self, table: Table) -> ColumnElement:
        clauses = [s.active_clause(table) for s in self.strategies]
        return and_(true(), *clauses)

    def is_active(self, row: Any) -> bool:
        return all(s.is_active(row) for s in self.strategies)


class FailClosedSoftDelete(SoftDeleteStrategy):
    """No marker column exists: nothing is considered live."""

    name = "fail_closed"

    def active_clause(self, table: Table) -> ColumnElement:
        return false()

    def is_active(self, row: Any) -> bool:
        return False


# Checked in this order; every marker present is combined
_MARKERS: Tuple[Tuple[str, Callable[[], SoftDeleteStrategy]], ...] = (
    ("is_deleted", lambda: DeletedFlagSoftDelete("is_deleted")),
    ("deleted", lambda: DeletedFlagSoftDelete("deleted")),
    ("deleted_at", lambda: DeletedAtSoftDelete("deleted_at")),
    ("archived_at", lambda: DeletedAtSoftDelete("archived_at")),
    ("status", lambda: StatusSoftDelete("status")),
)


def resolve_soft_delete_strategy(cache: SchemaCache, table: Table) -> SoftDeleteStrategy:
    """
    Pick the soft-delete strategy for ``table`` from its live columns.

    Only columns present both in the database and on the mapped Table are
    used, so the returned strategy can always build a clause.
    """
    live_columns = cache.columns(table.name)
    found = [
        factory()
        for column, factory in _MARKERS
        if column in live_columns and column in table.c
    ]

    if not found:
        logger.warning("No soft-delete marker on %s; treating all rows as inactive", table.name)
        return FailClosedSoftDelete()
    if len(found) == 1:
        return found[0]
    return CompositeSoftDelete(found)
