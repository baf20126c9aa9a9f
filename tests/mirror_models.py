"""Mapped models used across the test suite."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from unixmirror.models.policy import MirrorPolicy, TimestampMirrors


class Base(DeclarativeBase):
    pass


class Order(Base, TimestampMirrors):
    """Auto-discovered mirrors plus created/updated markers."""

    __tablename__ = "orders"
    __mirror_policy__ = MirrorPolicy(uses_timestamps=True)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(32), nullable=False)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Invoice(Base, TimestampMirrors):
    """Explicit columns, an exclusion and a custom suffix."""

    __tablename__ = "invoices"
    __mirror_policy__ = MirrorPolicy(
        source_columns=("issued_at", "due_on", "issued_at_ts"),
        excluded_columns=frozenset({"due_on"}),
        suffix="_ts",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    due_on: Mapped[date | None] = mapped_column(Date, nullable=True)


class Note(Base):
    """A model that does not opt in to mirrors."""

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    written_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
