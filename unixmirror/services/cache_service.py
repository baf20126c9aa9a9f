"""Time-bounded cache of physical column existence.

State is per process and lost on restart.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from unixmirror.config import SEVEN_DAYS_SECONDS
from unixmirror.exceptions import SchemaUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy import Connection, Engine

    from unixmirror.services.schema_service import SchemaInspector

logger = logging.getLogger(__name__)

TableKey = tuple[str, str]


@dataclass(frozen=True)
class ExistenceCacheEntry:
    exists: bool
    expires_at: float


class ColumnExistenceCache:
    """Answer "does this column exist?" without a metadata query per call.

    A miss lists the whole table once and records every column of it, so the
    other mirrors of the same table are answered from memory too.

    Entries are kept in one map per (connection, table). Lookups take no lock
    (two dict reads). A refresh builds a new map for its table and swaps it
    in, holding only that table's lock, so writers of unrelated tables never
    wait on each other. Two threads refreshing the same table are serialized.
    """

    def __init__(
        self,
        inspector: SchemaInspector,
        ttl_seconds: float = SEVEN_DAYS_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inspector = inspector
        self._ttl = ttl_seconds
        self._clock = clock
        self._tables: dict[TableKey, dict[str, ExistenceCacheEntry]] = {}
        self._locks: dict[TableKey, threading.Lock] = {}

    def exists(
        self,
        connection: str,
        table: str,
        column: str,
        bind: Engine | Connection | None = None,
    ) -> bool:
        """Return whether ``table.column`` physically exists on ``connection``.

        Metadata failures answer False and leave the cache cold for that table.
        """
        entry = self._tables.get((connection, table), {}).get(column)
        if entry is not None and entry.expires_at > self._clock():
            return entry.exists

        present = self.refresh(connection, table, bind, expected=(column,))
        if present is None:
            return False
        return column in present

    def refresh(
        self,
        connection: str,
        table: str,
        bind: Engine | Connection | None = None,
        expected: Iterable[str] = (),
    ) -> frozenset[str] | None:
        """Re-read a table's columns and repopulate its entries.

        Names in ``expected`` that the table lacks are recorded as absent.
        Returns the table's column names, or None if metadata is unavailable.
        """
        try:
            columns = self._inspector.list_columns(connection, table, bind)
        except SchemaUnavailable as exc:
            logger.warning("Treating mirrors as absent: %s", exc)
            return None

        present = frozenset(col.name for col in columns)
        if self._ttl <= 0:
            return present

        key = (connection, table)
        with self._lock_for(key):
            expires_at = self._clock() + self._ttl
            absent = ExistenceCacheEntry(False, expires_at)
            # Columns removed since the last listing must not linger as
            # "exists"; known-absent columns that are still absent stay known.
            entries = {
                name: absent
                for name, entry in self._tables.get(key, {}).items()
                if not entry.exists and name not in present
            }
            entries.update((name, absent) for name in expected if name not in present)
            entries.update((name, ExistenceCacheEntry(True, expires_at)) for name in present)
            self._tables[key] = entries
        return present

    def invalidate(self, connection: str, table: str) -> None:
        """Forget everything cached for one table (call after DDL on it)."""
        key = (connection, table)
        with self._lock_for(key):
            self._tables.pop(key, None)
        logger.debug("Invalidated column cache for %s.%s", connection, table)

    def clear(self) -> None:
        self._tables.clear()

    def _lock_for(self, key: TableKey) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            # racing creators all get the lock that setdefault kept
            lock = self._locks.setdefault(key, threading.Lock())
        return lock
