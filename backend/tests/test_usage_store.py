"""Tests for usage stores."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from docgraph.cost.budget import BudgetGuard
from docgraph.cost.types import BudgetCheckRequest, CostEstimateInput, TokenUsage, UsageRecord
from docgraph.cost.usage_store import InMemoryUsageStore, SQLiteUsageStore
from docgraph.db.sqlite import MEMORY, SQLiteDatabase

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield InMemoryUsageStore()
        return
    db = SQLiteDatabase(MEMORY)
    db.ensure_schema()
    yield SQLiteUsageStore(db)
    db.close()


def _record(cost: float, timestamp: datetime, **kwargs) -> UsageRecord:
    return UsageRecord(
        user_id=kwargs.pop("user_id", "u1"),
        operation="graph-generation",
        model="claude-sonnet-4",
        tokens_used=TokenUsage(input=10, output=5),
        cost=cost,
        attempts=kwargs.pop("attempts", 1),
        success=kwargs.pop("success", True),
        timestamp=timestamp,
        **kwargs,
    )


def test_totals_split_by_day_and_month(store) -> None:
    store.add(_record(1.0, NOW, document_id="doc-1"))
    store.add(_record(0.5, NOW - timedelta(days=1), document_id="doc-1"))
    store.add(_record(2.0, NOW - timedelta(days=30)))
    store.add(_record(4.0, NOW, user_id="u2"))

    totals = store.totals("u1", NOW)
    assert totals.today == pytest.approx(1.0)
    assert totals.this_month == pytest.approx(1.5)
    assert store.document_total("doc-1") == pytest.approx(1.5)
    assert store.document_total("missing") == 0


def test_records_round_trip(store) -> None:
    store.add(_record(0.25, NOW, attempts=3, success=False, graph_id="graph_1", quality=72.5))
    store.add(_record(0.75, NOW - timedelta(days=2)))

    records = store.records("u1")
    assert [record.cost for record in records] == [0.25, 0.75]
    first = records[0]
    assert first.attempts == 3
    assert first.success is False
    assert first.graph_id == "graph_1"
    assert first.quality == 72.5
    assert first.tokens_used == TokenUsage(input=10, output=5)
    assert first.timestamp == NOW

    assert len(store.records("u1", since=NOW - timedelta(hours=1))) == 1
    assert store.records("nobody") == []


def test_budget_guard_over_sqlite_store() -> None:
    db = SQLiteDatabase(MEMORY)
    db.ensure_schema()
    guard = BudgetGuard(SQLiteUsageStore(db), clock=lambda: NOW)
    guard.record_usage(_record(9.99, NOW))

    result = guard.check_budget(
        BudgetCheckRequest(user_id="u1", cost_input=CostEstimateInput(text_length=10_000))
    )
    assert not result.allowed
    assert result.reason == "daily-limit-exceeded"
    assert result.current_usage.today == pytest.approx(9.99)
    db.close()
