"""Shared test fixtures for unixmirror."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from unixmirror.config import Settings
from unixmirror.exceptions import SchemaUnavailable
from unixmirror.services.mirror_service import MirrorService
from unixmirror.services.schema_service import ColumnDescriptor, SchemaInspector

from tests.mirror_models import Base

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable
    from pathlib import Path

    from sqlalchemy import Connection, Engine


class FakeInspector(SchemaInspector):
    """In-memory schema that counts metadata queries.

    ``tables`` maps table name -> [(column, declared type), ...] on every
    connection. ``fail`` makes every listing raise SchemaUnavailable.
    """

    def __init__(self, tables: dict[str, Iterable[tuple[str, str]]] | None = None) -> None:
        super().__init__({})
        self.tables = {name: list(cols) for name, cols in (tables or {}).items()}
        self.calls = 0
        self.fail = False

    def list_columns(
        self,
        connection: str,
        table: str,
        bind: Engine | Connection | None = None,
    ) -> list[ColumnDescriptor]:
        self.calls += 1
        if self.fail or table not in self.tables:
            raise SchemaUnavailable(connection, table, "fake")
        return [ColumnDescriptor(name, declared) for name, declared in self.tables[table]]


ORDERS_SCHEMA = [
    ("id", "INTEGER"),
    ("reference", "VARCHAR(32)"),
    ("shipped_at", "DATETIME"),
    ("paid_on", "DATE"),
    ("created_at", "DATETIME"),
]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector({"orders": [*ORDERS_SCHEMA, ("shipped_at_unix", "BIGINT")]})


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{db_path}",
    )


@pytest.fixture
def db_engine(test_settings: Settings) -> Generator[Engine]:
    """Create a test database engine with all model tables."""
    engine = create_engine(test_settings.database_url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(db_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def mirror_service(db_engine: Engine, test_settings: Settings) -> Generator[MirrorService]:
    """A mirror service on the test engine; listeners are removed afterwards."""
    service = MirrorService.from_engine(db_engine, test_settings)
    yield service
    for record_type in service.registered:
        service.unregister(record_type)


def add_column(engine: Engine, table: str, column: str, declared: str = "BIGINT") -> None:
    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {declared}"))
