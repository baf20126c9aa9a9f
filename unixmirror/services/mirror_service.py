"""Mirror service: owns the cache and wires lifecycle events of record types."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import BigInteger, column, event, inspect, select, table, update
from sqlalchemy.exc import SQLAlchemyError

from unixmirror.config import Settings
from unixmirror.models.policy import MirrorPolicy
from unixmirror.services.cache_service import ColumnExistenceCache
from unixmirror.services.policy_service import PolicyResolver, table_name
from unixmirror.services.query_service import MirrorSelect, QueryRewriter
from unixmirror.services.schema_service import SchemaInspector
from unixmirror.services.sync_service import Synchronizer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy import Connection, Engine
    from sqlalchemy.orm import Mapper, QueryContext

logger = logging.getLogger(__name__)


class MirrorService:
    """One per process: cache, policy resolver, synchronizer and rewriter.

    ``register`` attaches the lifecycle callbacks to a mapped class:

    ============== =============== =========================================
    event          skip_if_present effect
    ============== =============== =========================================
    before_insert  True            keep a mirror value already on the record
    before_update  True            same
    load           True            fill mirrors of rows predating the mirror
    refresh        True            recompute mirrors of reloaded sources
    expire         -               drop mirrors of expired sources
    after_insert   False           recompute and write mirrors to the row
    after_update   False           same
    ============== =============== =========================================

    Mirror values reach the table only through the after-save UPDATE, issued
    on the flush connection. Values filled on load stay in memory until the
    record is next saved.

    Stored mirror values are never read back: mirror columns are not mapped,
    so on load every mirror is computed from its source. This matches the
    stored value whenever the row was written through these hooks or the
    backfill, and corrects it where it was not.
    """

    def __init__(self, inspector: SchemaInspector, settings: Settings | None = None) -> None:
        self.settings = settings if settings is not None else Settings()
        self.inspector = inspector
        self.cache = ColumnExistenceCache(inspector, ttl_seconds=self.settings.existence_ttl_seconds)
        self.resolver = PolicyResolver(inspector, MirrorPolicy(suffix=self.settings.suffix))
        self.synchronizer = Synchronizer(
            self.resolver, self.cache, default_tz=self.settings.default_timezone
        )
        self.rewriter = QueryRewriter(self.resolver, self.cache, self.settings.default_timezone)
        self._listeners: dict[type, list[tuple[str, Callable[..., None]]]] = {}

    @classmethod
    def from_engine(cls, engine: Engine, settings: Settings | None = None) -> MirrorService:
        """Build a service whose "default" connection is ``engine``."""
        return cls(SchemaInspector({"default": engine}), settings)

    # Lifecycle wiring

    def register(self, record_type: type) -> None:
        """Attach mirror lifecycle callbacks to a mapped class (idempotent)."""
        if record_type in self._listeners:
            return
        listeners: list[tuple[str, Callable[..., None]]] = [
            ("before_insert", self._before_save),
            ("before_update", self._before_save),
            ("after_insert", self._after_save),
            ("after_update", self._after_save),
            ("load", self._after_load),
            ("refresh", self._after_refresh),
            ("expire", self._after_expire),
        ]
        for name, fn in listeners:
            event.listen(record_type, name, fn)
        self._listeners[record_type] = listeners
        logger.debug("Registered mirror callbacks on %s", record_type.__name__)

    def unregister(self, record_type: type) -> None:
        for name, fn in self._listeners.pop(record_type, []):
            event.remove(record_type, name, fn)

    @property
    def registered(self) -> list[type]:
        return list(self._listeners)

    def _before_save(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        self.synchronizer.sync(target, skip_if_present=True, bind=connection)

    def _after_load(self, target: Any, context: QueryContext) -> None:
        mapper = inspect(type(target))
        connection = context.session.connection(bind_arguments={"mapper": mapper})
        self.synchronizer.sync(target, skip_if_present=True, bind=connection)

    def _after_refresh(self, target: Any, context: QueryContext, attrs: Iterable[str] | None) -> None:
        self.synchronizer.forget(target, _column_names(inspect(type(target)), attrs))
        self._after_load(target, context)

    def _after_expire(self, target: Any, attrs: Iterable[str] | None) -> None:
        self.synchronizer.forget(target, _column_names(inspect(type(target)), attrs))

    def _after_save(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        values = self.synchronizer.sync(target, skip_if_present=False, bind=connection)
        if not values:
            return
        key = _primary_key(mapper, target)
        if key is None:
            logger.warning(
                "Cannot write mirrors of %s: primary key not loaded", type(target).__name__
            )
            return
        local = mapper.local_table
        target_table = table(
            local.name,
            *(column(name) for name in key),
            *(column(name, BigInteger) for name in values),
            schema=local.schema,
        )
        stmt = update(target_table).values(values)
        for name, value in key.items():
            stmt = stmt.where(target_table.c[name] == value)
        try:
            connection.execute(stmt)
        except SQLAlchemyError as exc:
            # The cache said the mirror exists but the table disagrees (dropped
            # within the TTL window). Forget the table and let the save stand.
            policy = self.resolver.policy_for(type(target))
            self.cache.invalidate(policy.connection, local.name)
            logger.warning("Could not write mirrors %s of %s: %s", sorted(values), local.name, exc)

    # Facade

    def sync(self, record: Any, skip_if_present: bool = False) -> dict[str, int | None]:
        return self.synchronizer.sync(record, skip_if_present)

    def unix_timestamp(self, record: Any, column_name: str) -> int | None:
        """The record's epoch mirror value for ``column_name``."""
        return self.synchronizer.unix_timestamp(record, column_name)

    def select(self, record_type: type, *entities: Any) -> MirrorSelect:
        """Start a mirror-aware SELECT of ``record_type`` (or of ``entities``)."""
        statement = select(*entities) if entities else select(record_type)
        return MirrorSelect(statement, record_type, self.rewriter)

    def wrap(self, statement: Any, record_type: type) -> MirrorSelect:
        """Wrap an existing ``Select`` built elsewhere."""
        return MirrorSelect(statement, record_type, self.rewriter)

    def invalidate(self, record_type: type) -> None:
        """Forget cached schema facts for a record type (after DDL on its table)."""
        policy = self.resolver.policy_for(record_type)
        self.cache.invalidate(policy.connection, table_name(record_type))
        self.resolver.forget(record_type)

    def prime(self, record_types: Iterable[type], bind: Engine | Connection | None = None) -> None:
        """Populate the cache for several record types in one go.

        Afterwards the lifecycle hooks and query rewriting of these types run
        without touching the database for metadata until entries expire.
        """
        for record_type in record_types:
            policy = self.resolver.policy_for(record_type)
            mirrors = [
                policy.mirror_name(source)
                for source in self.resolver.effective_columns(record_type, bind)
            ]
            self.cache.refresh(policy.connection, table_name(record_type), bind, expected=mirrors)


def _column_names(mapper: Mapper[Any], attrs: Iterable[str] | None) -> list[str] | None:
    """Table column names behind mapped attribute keys; None stands for all."""
    if attrs is None:
        return None
    names: list[str] = []
    for key in attrs:
        if key in mapper.column_attrs:
            names.extend(col.name for col in mapper.column_attrs[key].columns)
    return names


def _primary_key(mapper: Mapper[Any], target: Any) -> dict[str, Any] | None:
    state = inspect(target)
    key: dict[str, Any] = {}
    for pk_column in mapper.primary_key:
        prop = mapper.get_property_by_column(pk_column)
        if prop.key not in state.dict:
            return None
        key[pk_column.name] = state.dict[prop.key]
    return key
