"""Add, drop and backfill physical mirror columns.

These are operator tools (CLI, migrations): unlike the lifecycle hooks they
let database errors propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Column, Index, MetaData, Table, inspect, text

from unixmirror.services.policy_service import table_name

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from unixmirror.models.policy import MirrorPolicy
    from unixmirror.services.mirror_service import MirrorService

logger = logging.getLogger(__name__)

# UPDATE templates per dialect; {t}, {s}, {m} are pre-quoted identifiers.
BACKFILL_TEMPLATES = {
    "mysql": "UPDATE {t} SET {m} = UNIX_TIMESTAMP({s}) WHERE {s} IS NOT NULL AND {m} IS NULL",
    "mariadb": "UPDATE {t} SET {m} = UNIX_TIMESTAMP({s}) WHERE {s} IS NOT NULL AND {m} IS NULL",
    "postgresql": (
        "UPDATE {t} SET {m} = CAST(FLOOR(EXTRACT(EPOCH FROM {s})) AS BIGINT) "
        "WHERE {s} IS NOT NULL AND {m} IS NULL"
    ),
    "sqlite": (
        "UPDATE {t} SET {m} = CAST(strftime('%s', {s}) AS INTEGER) "
        "WHERE {s} IS NOT NULL AND {m} IS NULL"
    ),
}


@dataclass
class MirrorPlan:
    """What ``add_mirror_columns`` would do for one record type."""

    table: str
    to_add: list[tuple[str, str]] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    missing_sources: list[str] = field(default_factory=list)


def index_name(table: str, mirror: str) -> str:
    return f"ix_{table}_{mirror}"


def mirror_column_plan(connection: Connection, service: MirrorService, record_type: type) -> MirrorPlan:
    """Compare the effective columns of ``record_type`` with the live table."""
    policy = service.resolver.policy_for(record_type)
    table = table_name(record_type)
    present = {col.name for col in service.inspector.list_columns(policy.connection, table, connection)}

    plan = MirrorPlan(table=table)
    for source in service.resolver.effective_columns(record_type, connection):
        mirror = policy.mirror_name(source)
        if mirror in present:
            plan.existing.append(mirror)
        elif source not in present:
            plan.missing_sources.append(source)
        else:
            plan.to_add.append((source, mirror))
    return plan


def add_mirror_columns(
    connection: Connection,
    service: MirrorService,
    record_type: type,
    dry_run: bool = False,
) -> MirrorPlan:
    """Add every missing mirror column of ``record_type`` (nullable BIGINT).

    On MySQL the mirror is placed right after its source column.
    """
    plan = mirror_column_plan(connection, service, record_type)
    if dry_run or not plan.to_add:
        return plan

    policy = service.resolver.policy_for(record_type)
    schema = inspect(record_type).local_table.schema
    preparer = connection.dialect.identifier_preparer
    quoted_table = _quoted_table(connection, plan.table, schema)
    bigint = BigInteger().compile(dialect=connection.dialect)

    for source, mirror in plan.to_add:
        ddl = f"ALTER TABLE {quoted_table} ADD COLUMN {preparer.quote(mirror)} {bigint} NULL"
        if connection.dialect.name in ("mysql", "mariadb"):
            ddl += f" AFTER {preparer.quote(source)}"
        connection.execute(text(ddl))
        if policy.indexed:
            _mirror_index(plan.table, mirror, schema).create(connection)
        logger.info("Added mirror column %s.%s", plan.table, mirror)

    service.invalidate(record_type)
    return plan


def drop_mirror_columns(
    connection: Connection,
    service: MirrorService,
    record_type: type,
    columns: list[str] | None = None,
) -> list[str]:
    """Drop the mirrors of ``columns`` (default: all effective columns) that exist.

    Returns the dropped mirror names.
    """
    policy = service.resolver.policy_for(record_type)
    table = table_name(record_type)
    schema = inspect(record_type).local_table.schema
    sources = columns if columns is not None else list(service.resolver.effective_columns(record_type, connection))

    insp = inspect(connection)
    present = {col["name"] for col in insp.get_columns(table, schema=schema)}
    indexes = {ix["name"] for ix in insp.get_indexes(table, schema=schema)}
    preparer = connection.dialect.identifier_preparer
    quoted_table = _quoted_table(connection, table, schema)

    dropped: list[str] = []
    for source in sources:
        mirror = _mirror_for(policy, source)
        if mirror not in present:
            continue
        if index_name(table, mirror) in indexes:
            # SQLite refuses to drop an indexed column
            _mirror_index(table, mirror, schema).drop(connection)
        connection.execute(text(f"ALTER TABLE {quoted_table} DROP COLUMN {preparer.quote(mirror)}"))
        dropped.append(mirror)
        logger.info("Dropped mirror column %s.%s", table, mirror)

    service.invalidate(record_type)
    return dropped


def backfill(connection: Connection, service: MirrorService, record_type: type) -> dict[str, int]:
    """Fill empty mirrors from their sources in bulk.

    Only rows whose source is set and whose mirror is NULL are touched, so the
    statement can be re-run safely. Returns affected row counts per source.
    """
    template = BACKFILL_TEMPLATES.get(connection.dialect.name)
    if template is None:
        logger.warning("Backfill is not supported on %s", connection.dialect.name)
        return {}

    policy = service.resolver.policy_for(record_type)
    table = table_name(record_type)
    schema = inspect(record_type).local_table.schema
    present = {col.name for col in service.inspector.list_columns(policy.connection, table, connection)}
    preparer = connection.dialect.identifier_preparer
    quoted_table = _quoted_table(connection, table, schema)

    counts: dict[str, int] = {}
    for source in service.resolver.effective_columns(record_type, connection):
        mirror = policy.mirror_name(source)
        if source not in present or mirror not in present:
            continue
        stmt = template.format(t=quoted_table, s=preparer.quote(source), m=preparer.quote(mirror))
        result = connection.execute(text(stmt))
        counts[source] = result.rowcount
        if result.rowcount:
            logger.info("Backfilled %d row(s) of %s.%s", result.rowcount, table, mirror)
    return counts


def _mirror_for(policy: MirrorPolicy, source: str) -> str:
    return source if policy.is_mirror(source) else policy.mirror_name(source)


def _quoted_table(connection: Connection, table: str, schema: str | None) -> str:
    preparer = connection.dialect.identifier_preparer
    if schema:
        return f"{preparer.quote_schema(schema)}.{preparer.quote(table)}"
    return preparer.quote(table)


def _mirror_index(table: str, mirror: str, schema: str | None) -> Index:
    ddl_table = Table(table, MetaData(), Column(mirror, BigInteger), schema=schema)
    return Index(index_name(table, mirror), ddl_table.c[mirror])
