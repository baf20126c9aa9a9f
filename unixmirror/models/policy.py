"""Per-record-type mirror configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass(frozen=True)
class MirrorPolicy:
    """Which columns of a record type get integer epoch mirrors.

    ``source_columns=None`` means auto-discover from the live schema, the
    mapped Date/DateTime columns and the configured markers.
    """

    source_columns: tuple[str, ...] | None = None
    excluded_columns: frozenset[str] = field(default_factory=frozenset)
    suffix: str = "_unix"
    connection: str = "default"
    uses_timestamps: bool = False
    created_at: str = "created_at"
    updated_at: str = "updated_at"
    deleted_at: str | None = None
    indexed: bool = True

    def mirror_name(self, column: str) -> str:
        return f"{column}{self.suffix}"

    def is_mirror(self, column: str) -> bool:
        return column.endswith(self.suffix)


class TimestampMirrors:
    """Mixin marking a mapped class as carrying epoch mirror columns.

    Classes without their own ``__mirror_policy__`` use the service default
    (built from ``Settings``). Override it on the class to configure it::

        class Order(Base, TimestampMirrors):
            __tablename__ = "orders"
            __mirror_policy__ = MirrorPolicy(excluded_columns=frozenset({"paid_on"}))
    """

    __mirror_policy__: ClassVar[MirrorPolicy | None] = None


DEFAULT_POLICY = MirrorPolicy()
