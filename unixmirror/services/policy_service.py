"""Mirror policy resolution: which columns of a record type get mirrors."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, inspect

from unixmirror.exceptions import SchemaUnavailable
from unixmirror.models.policy import DEFAULT_POLICY, MirrorPolicy

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

    from unixmirror.services.schema_service import SchemaInspector

logger = logging.getLogger(__name__)


def table_name(record_type: type) -> str:
    return inspect(record_type).local_table.name


def cast_columns(record_type: type) -> list[str]:
    """Mapped columns declared with a Date or DateTime type (incl. TIMESTAMP)."""
    names: list[str] = []
    for column in inspect(record_type).local_table.columns:
        if isinstance(column.type, (Date, DateTime)):
            names.append(column.name)
    return names


class PolicyResolver:
    """Compute the effective mirrored column set of a record type.

    Auto-discovered sets are memoized per record type until ``forget``. A
    schema failure is not memoized, so the next call tries again.
    """

    def __init__(self, inspector: SchemaInspector, default_policy: MirrorPolicy = DEFAULT_POLICY) -> None:
        self._inspector = inspector
        self._default_policy = default_policy
        self._discovered: dict[type, tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def policy_for(self, record_type: type) -> MirrorPolicy:
        policy = getattr(record_type, "__mirror_policy__", None)
        if isinstance(policy, MirrorPolicy):
            return policy
        return self._default_policy

    def mirror_name(self, record_type: type, column: str) -> str:
        return self.policy_for(record_type).mirror_name(column)

    def primary_marker(self, record_type: type) -> str:
        """Column that "latest"/"oldest" order by when none is given."""
        return self.policy_for(record_type).created_at

    def effective_columns(
        self,
        record_type: type,
        bind: Engine | Connection | None = None,
    ) -> tuple[str, ...]:
        """Source columns that should carry a mirror, in a stable order."""
        policy = self.policy_for(record_type)
        if policy.source_columns is not None:
            candidates: tuple[str, ...] = tuple(policy.source_columns)
        else:
            candidates = self._discover(record_type, policy, bind)
        return tuple(
            column
            for column in _ordered_unique(candidates)
            if column not in policy.excluded_columns and not policy.is_mirror(column)
        )

    def forget(self, record_type: type) -> None:
        with self._lock:
            self._discovered.pop(record_type, None)

    def _discover(
        self,
        record_type: type,
        policy: MirrorPolicy,
        bind: Engine | Connection | None,
    ) -> tuple[str, ...]:
        cached = self._discovered.get(record_type)
        if cached is not None:
            return cached

        table = table_name(record_type)
        memoize = True
        try:
            from_schema = self._inspector.temporal_columns(policy.connection, table, policy.suffix, bind)
        except SchemaUnavailable as exc:
            logger.warning("Falling back to mapped columns for %s: %s", record_type.__name__, exc)
            from_schema = []
            memoize = False

        candidates = list(from_schema)
        candidates.extend(cast_columns(record_type))
        if policy.uses_timestamps:
            candidates.extend([policy.created_at, policy.updated_at])
        if policy.deleted_at:
            candidates.append(policy.deleted_at)

        discovered = tuple(_ordered_unique(candidates))
        if memoize:
            with self._lock:
                self._discovered[record_type] = discovered
        return discovered


def _ordered_unique(columns: tuple[str, ...] | list[str]) -> list[str]:
    return list(dict.fromkeys(columns))
