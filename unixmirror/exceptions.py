"""Mirror exception types.

Convention:
- ``SchemaUnavailable`` is raised by the schema inspector only. Every caller
  inside the lifecycle hooks and the query rewriter treats it as "no mirror"
  and carries on.
- ``UnparseableTemporal`` marks one value that cannot become an epoch. The
  synchronizer skips that column; the rewriter leaves that clause alone.

A missing mirror column is not an exception at all: the existence cache
answers ``False`` and the column is skipped.
"""

from __future__ import annotations


class MirrorError(Exception):
    """Base class for unixmirror errors."""


class SchemaUnavailable(MirrorError):
    """Raised when table metadata cannot be read."""

    def __init__(self, connection: str, table: str, reason: str = "") -> None:
        self.connection = connection
        self.table = table
        detail = f": {reason}" if reason else ""
        super().__init__(f"Schema unavailable for {connection}.{table}{detail}")


class UnparseableTemporal(MirrorError, ValueError):
    """Raised when a value cannot be interpreted as a moment in time."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Cannot interpret {value!r} as a point in time")
