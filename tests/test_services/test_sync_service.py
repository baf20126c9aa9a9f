"""Tests for per-record mirror synchronization."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from unixmirror.services.cache_service import ColumnExistenceCache
from unixmirror.services.policy_service import PolicyResolver
from unixmirror.services.sync_service import OrmRecordAccess, Synchronizer

from tests.conftest import ORDERS_SCHEMA, FakeInspector
from tests.mirror_models import Invoice, Order


def _synchronizer(inspector: FakeInspector) -> Synchronizer:
    return Synchronizer(PolicyResolver(inspector), ColumnExistenceCache(inspector))


def _mirrors(record: Any) -> dict[str, int | None]:
    return OrmRecordAccess.values(record)


@pytest.fixture
def synchronizer(fake_inspector: FakeInspector) -> Synchronizer:
    return _synchronizer(fake_inspector)


class TestSync:
    def test_scenario_shipped_at(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        synchronizer.sync(order, skip_if_present=False)
        assert synchronizer.unix_timestamp(order, "shipped_at") == 1705312800

        order.shipped_at = None
        synchronizer.sync(order, skip_if_present=False)
        assert synchronizer.unix_timestamp(order, "shipped_at") is None

    def test_datetime_source(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at=datetime(2024, 1, 15, 10, tzinfo=timezone.utc))
        written = synchronizer.sync(order, skip_if_present=True)
        assert written == {"shipped_at_unix": 1705312800}

    def test_only_existing_mirrors_are_written(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", paid_on=date(2024, 1, 15), created_at=datetime(2024, 1, 1))
        written = synchronizer.sync(order, skip_if_present=False)
        assert set(written) == {"shipped_at_unix"}
        assert "paid_on_unix" not in _mirrors(order)
        assert "updated_at_unix" not in _mirrors(order)

    def test_pairs(self, fake_inspector: FakeInspector) -> None:
        fake_inspector.tables["orders"].append(("created_at_unix", "BIGINT"))
        synchronizer = _synchronizer(fake_inspector)
        assert synchronizer.pairs(Order) == [
            ("shipped_at", "shipped_at_unix"),
            ("created_at", "created_at_unix"),
        ]

    def test_skip_if_present_keeps_existing_value(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        _mirrors(order)["shipped_at_unix"] = 42
        assert synchronizer.sync(order, skip_if_present=True) == {}
        assert synchronizer.unix_timestamp(order, "shipped_at") == 42

    def test_skip_if_present_fills_null_mirror(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        _mirrors(order)["shipped_at_unix"] = None
        synchronizer.sync(order, skip_if_present=True)
        assert synchronizer.unix_timestamp(order, "shipped_at") == 1705312800

    def test_forced_sync_overwrites(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        _mirrors(order)["shipped_at_unix"] = 42
        synchronizer.sync(order, skip_if_present=False)
        assert synchronizer.unix_timestamp(order, "shipped_at") == 1705312800

    def test_idempotent(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        first = synchronizer.sync(order, skip_if_present=False)
        second = synchronizer.sync(order, skip_if_present=False)
        assert first == second == {"shipped_at_unix": 1705312800}

    def test_unparseable_source_skips_only_that_column(self, fake_inspector: FakeInspector) -> None:
        fake_inspector.tables["orders"].append(("created_at_unix", "BIGINT"))
        synchronizer = _synchronizer(fake_inspector)
        order = Order(reference="A-1", shipped_at="soon", created_at="2024-01-01T00:00:00Z")
        written = synchronizer.sync(order, skip_if_present=False)
        assert written == {"created_at_unix": 1704067200}
        assert "shipped_at_unix" not in _mirrors(order)

    def test_no_mirrors_when_schema_unavailable(self, fake_inspector: FakeInspector) -> None:
        fake_inspector.fail = True
        synchronizer = _synchronizer(fake_inspector)
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        assert synchronizer.sync(order, skip_if_present=False) == {}

    def test_custom_suffix(self) -> None:
        inspector = FakeInspector(
            {
                "invoices": [
                    ("id", "INTEGER"),
                    ("issued_at", "DATETIME"),
                    ("issued_at_ts", "BIGINT"),
                    ("due_on", "DATE"),
                    ("due_on_ts", "BIGINT"),
                ]
            }
        )
        synchronizer = _synchronizer(inspector)
        invoice = Invoice(issued_at=datetime(2024, 1, 1), due_on=date(2024, 2, 1))
        assert synchronizer.sync(invoice, skip_if_present=False) == {"issued_at_ts": 1704067200}


@settings(max_examples=80, deadline=None)
@given(
    value=st.one_of(
        st.none(),
        st.datetimes(
            min_value=datetime(1970, 1, 2),
            max_value=datetime(2100, 1, 1),
            timezones=st.just(timezone.utc),
        ),
    )
)
def test_mirror_matches_source(value: datetime | None) -> None:
    synchronizer = _synchronizer(FakeInspector({"orders": [*ORDERS_SCHEMA, ("shipped_at_unix", "BIGINT")]}))
    order = Order(reference="P-1", shipped_at=value)
    synchronizer.sync(order, skip_if_present=False)
    expected = None if value is None else int(value.timestamp() // 1)
    assert synchronizer.unix_timestamp(order, "shipped_at") == expected


class TestForget:
    def test_forget_selected_columns(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        synchronizer.sync(order, skip_if_present=False)

        synchronizer.forget(order, ["paid_on"])
        assert synchronizer.unix_timestamp(order, "shipped_at") == 1705312800

        synchronizer.forget(order, ["shipped_at"])
        assert synchronizer.unix_timestamp(order, "shipped_at") is None

    def test_forget_all_then_resync(self, synchronizer: Synchronizer) -> None:
        order = Order(reference="A-1", shipped_at="2024-01-15T10:00:00Z")
        synchronizer.sync(order, skip_if_present=False)
        synchronizer.forget(order)
        assert _mirrors(order) == {}

        order.shipped_at = "2024-01-01T00:00:00Z"
        assert synchronizer.sync(order, skip_if_present=True) == {"shipped_at_unix": 1704067200}
