"""Schema inspection: column listings and temporal classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import inspect
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from unixmirror.exceptions import SchemaUnavailable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

# Substring match on purpose: "timestamptz", "datetime2", "smalldatetime" all count.
TEMPORAL_TYPE_MARKERS = ("date", "time", "datetime", "timestamp")


def is_temporal_type(declared_type: str) -> bool:
    """Return True if a declared column type names a date/time type."""
    lowered = declared_type.lower()
    return any(marker in lowered for marker in TEMPORAL_TYPE_MARKERS)


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    declared_type: str

    @property
    def is_temporal(self) -> bool:
        return is_temporal_type(self.declared_type)


class SchemaInspector:
    """Read column metadata for tables on named binds.

    ``binds`` maps connection names (as used in ``MirrorPolicy.connection``)
    to an ``Engine`` or ``Connection``. Callers that already hold a
    connection, such as flush hooks, may pass it as ``bind`` instead.
    """

    def __init__(self, binds: Mapping[str, Engine | Connection]) -> None:
        self._binds = dict(binds)

    def bind_for(self, connection: str) -> Engine | Connection:
        try:
            return self._binds[connection]
        except KeyError:
            raise SchemaUnavailable(connection, "*", "unknown connection") from None

    def list_columns(
        self,
        connection: str,
        table: str,
        bind: Engine | Connection | None = None,
    ) -> list[ColumnDescriptor]:
        """List the columns of ``table`` in table order.

        Raises SchemaUnavailable if the table is missing or the metadata
        query fails.
        """
        target = bind if bind is not None else self.bind_for(connection)
        try:
            columns = inspect(target).get_columns(table)
        except NoSuchTableError as exc:
            raise SchemaUnavailable(connection, table, "no such table") from exc
        except SQLAlchemyError as exc:
            raise SchemaUnavailable(connection, table, str(exc)) from exc
        if not columns:
            # SQLite reports a missing table as an empty listing
            raise SchemaUnavailable(connection, table, "no such table")
        return [ColumnDescriptor(name=col["name"], declared_type=str(col["type"])) for col in columns]

    def has_column(
        self,
        connection: str,
        table: str,
        column: str,
        bind: Engine | Connection | None = None,
    ) -> bool:
        return any(col.name == column for col in self.list_columns(connection, table, bind))

    def temporal_columns(
        self,
        connection: str,
        table: str,
        suffix: str,
        bind: Engine | Connection | None = None,
    ) -> list[str]:
        """Return temporal columns that are not themselves mirrors."""
        return [
            col.name
            for col in self.list_columns(connection, table, bind)
            if col.is_temporal and not col.name.endswith(suffix)
        ]
