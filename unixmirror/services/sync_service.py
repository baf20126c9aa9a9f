"""Per-record synchronization of epoch mirrors from their source columns."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import inspect
from sqlalchemy.orm.exc import UnmappedColumnError

from unixmirror.exceptions import UnparseableTemporal
from unixmirror.services.datetime_service import to_epoch_seconds
from unixmirror.services.policy_service import table_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy import Connection, Engine

    from unixmirror.services.cache_service import ColumnExistenceCache
    from unixmirror.services.policy_service import PolicyResolver

logger = logging.getLogger(__name__)

MIRROR_INFO_KEY = "unixmirror.values"


class RecordAccess(Protocol):
    """Raw attribute access on record instances.

    ``read_source`` raises ``LookupError`` when the record does not expose
    the column at all.
    """

    def read_source(self, record: Any, column: str) -> Any: ...

    def read_mirror(self, record: Any, mirror: str) -> int | None: ...

    def write_mirror(self, record: Any, mirror: str, value: int | None) -> None: ...

    def clear_mirrors(self, record: Any, mirrors: Iterable[str] | None = None) -> None: ...


class OrmRecordAccess:
    """Record access for SQLAlchemy-mapped instances.

    Sources are read through the mapped attribute of the physical column.
    Mirror values live in ``InstanceState.info`` because mirror columns are
    not mapped: a mapped column that is missing from the table would break
    every INSERT and SELECT of the record type.
    """

    def read_source(self, record: Any, column: str) -> Any:
        mapper = inspect(type(record))
        table_column = mapper.local_table.columns.get(column)
        if table_column is None:
            raise LookupError(column)
        try:
            prop = mapper.get_property_by_column(table_column)
        except UnmappedColumnError:
            raise LookupError(column) from None
        state = inspect(record)
        if prop.key not in state.dict and (
            prop.key in state.expired_attributes or state.key is not None
        ):
            # deferred, expired or server-generated; reading it here would
            # emit SQL, possibly in the middle of a flush
            raise LookupError(column)
        return state.dict.get(prop.key)

    def read_mirror(self, record: Any, mirror: str) -> int | None:
        return self.values(record).get(mirror)

    def write_mirror(self, record: Any, mirror: str, value: int | None) -> None:
        self.values(record)[mirror] = value

    def clear_mirrors(self, record: Any, mirrors: Iterable[str] | None = None) -> None:
        values = self.values(record)
        if mirrors is None:
            values.clear()
            return
        for mirror in mirrors:
            values.pop(mirror, None)

    @staticmethod
    def values(record: Any) -> dict[str, int | None]:
        info = inspect(record).info
        values: dict[str, int | None] = info.setdefault(MIRROR_INFO_KEY, {})
        return values


class Synchronizer:
    """Write each mirror of a record from its source column."""

    def __init__(
        self,
        resolver: PolicyResolver,
        cache: ColumnExistenceCache,
        access: RecordAccess | None = None,
        default_tz: str = "UTC",
    ) -> None:
        self.resolver = resolver
        self.cache = cache
        self.access: RecordAccess = access if access is not None else OrmRecordAccess()
        self.default_tz = default_tz

    def pairs(
        self,
        record_type: type,
        bind: Engine | Connection | None = None,
    ) -> list[tuple[str, str]]:
        """Return (source, mirror) pairs whose mirror column physically exists."""
        policy = self.resolver.policy_for(record_type)
        table = table_name(record_type)
        result: list[tuple[str, str]] = []
        for column in self.resolver.effective_columns(record_type, bind):
            mirror = policy.mirror_name(column)
            if self.cache.exists(policy.connection, table, mirror, bind):
                result.append((column, mirror))
        return result

    def sync(
        self,
        record: Any,
        skip_if_present: bool,
        bind: Engine | Connection | None = None,
    ) -> dict[str, int | None]:
        """Synchronize the record's mirrors and return the values written.

        With ``skip_if_present`` a mirror that already holds a value is left
        alone. A source that cannot be parsed skips only its own mirror.
        """
        written: dict[str, int | None] = {}
        for column, mirror in self.pairs(type(record), bind):
            if skip_if_present and self.access.read_mirror(record, mirror) is not None:
                continue
            try:
                source = self.access.read_source(record, column)
            except LookupError:
                logger.debug("%s has no attribute for column %s", type(record).__name__, column)
                continue
            try:
                value = to_epoch_seconds(source, self.default_tz)
            except UnparseableTemporal as exc:
                logger.debug("Skipping mirror %s: %s", mirror, exc)
                continue
            self.access.write_mirror(record, mirror, value)
            written[mirror] = value
        return written

    def forget(self, record: Any, columns: Iterable[str] | None = None) -> None:
        """Drop the record's mirror values for ``columns`` (default: all).

        The next ``sync`` with ``skip_if_present`` recomputes them.
        """
        if columns is None:
            self.access.clear_mirrors(record)
            return
        record_type = type(record)
        self.access.clear_mirrors(record, [self.resolver.mirror_name(record_type, c) for c in columns])

    def unix_timestamp(self, record: Any, column: str) -> int | None:
        """Current mirror value of ``column`` on the record."""
        return self.access.read_mirror(record, self.resolver.mirror_name(type(record), column))
