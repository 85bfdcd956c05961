"""Tests for the budget guard."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from docgraph.core.config import CostLimits, ModelPricing, WarningThresholds
from docgraph.core.errors import InvalidUsageData
from docgraph.cost.budget import BudgetGuard
from docgraph.cost.types import BudgetCheckRequest, CostEstimateInput, TokenUsage, UsageRecord
from docgraph.cost.usage_store import InMemoryUsageStore

NOW = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)

# one graph-generation call on this model costs exactly $2 (2000 output tokens)
PRICING = {"pricey": ModelPricing(input=0.0, output=1000.0)}


def _guard(store: InMemoryUsageStore, **limits: float) -> BudgetGuard:
    return BudgetGuard(
        store,
        limits=CostLimits(**limits),
        pricing=PRICING,
        default_model="pricey",
        clock=lambda: NOW,
    )


def _request(user_id: str = "u1", document_id: str | None = None, reserve: bool = False) -> BudgetCheckRequest:
    return BudgetCheckRequest(
        user_id=user_id,
        cost_input=CostEstimateInput(operation_type="graph-generation"),
        document_id=document_id,
        reserve=reserve,
    )


def _record(cost: float, operation: str = "graph-generation", **kwargs) -> UsageRecord:
    fields = dict(
        user_id="u1",
        operation=operation,
        model="pricey",
        tokens_used=TokenUsage(input=100, output=50),
        cost=cost,
        attempts=1,
        success=True,
        timestamp=NOW,
    )
    fields.update(kwargs)
    return UsageRecord(**fields)


def test_daily_limit_denies() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=9.0)
    result = _guard(store).check_budget(_request())
    assert result.estimated_cost == pytest.approx(2.0)
    assert not result.allowed
    assert result.reason == "daily-limit-exceeded"
    assert result.reset_at == datetime(2026, 10, 20, tzinfo=timezone.utc)
    assert result.current_usage.today == 9.0


def test_allowed_up_to_the_limit() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=8.0)
    result = _guard(store).check_budget(_request())
    assert result.allowed
    assert result.reason is None
    assert result.reset_at is None


def test_monthly_limit_denies() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=0.0, this_month=49.5)
    result = _guard(store).check_budget(_request())
    assert result.reason == "monthly-limit-exceeded"
    assert result.reset_at == datetime(2026, 11, 1, tzinfo=timezone.utc)


def test_document_reason_takes_priority() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=9.0)
    guard = _guard(store, per_document=1.0)
    result = guard.check_budget(_request(document_id="doc-1"))
    assert result.reason == "document-limit-exceeded"
    assert result.reset_at is None


def test_document_limit_is_cumulative() -> None:
    store = InMemoryUsageStore()
    guard = _guard(store, per_document=5.0)
    guard.record_usage(_record(2.0, document_id="doc-1"))
    guard.record_usage(_record(2.0, document_id="doc-1"))
    assert guard.check_budget(_request(document_id="doc-1")).reason == "document-limit-exceeded"
    assert guard.check_budget(_request(document_id="doc-2")).allowed


def test_concurrent_reservations_never_overspend() -> None:
    store = InMemoryUsageStore()
    guard = _guard(store, per_user_per_day=11.0)
    barrier = threading.Barrier(20)
    results = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        result = guard.check_budget(_request(reserve=True))
        with lock:
            results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    allowed = [result for result in results if result.allowed]
    assert len(allowed) == 5
    assert all(result.reservation_id for result in allowed)
    assert guard.outstanding_reservations("u1") == pytest.approx(10.0)


def test_default_checks_hold_funds_under_concurrency() -> None:
    guard = _guard(InMemoryUsageStore(), per_user_per_day=7.0)
    barrier = threading.Barrier(10)
    results = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        result = guard.check_budget(
            BudgetCheckRequest(user_id="u1", cost_input=CostEstimateInput(operation_type="graph-generation"))
        )
        with lock:
            results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len([result for result in results if result.allowed]) == 3
    assert {result.reason for result in results if not result.allowed} == {"daily-limit-exceeded"}


def test_unsettled_reservations_lapse() -> None:
    moments = [NOW]
    guard = BudgetGuard(
        InMemoryUsageStore(),
        limits=CostLimits(per_user_per_day=3.0, reservation_ttl_seconds=60),
        pricing=PRICING,
        default_model="pricey",
        clock=lambda: moments[-1],
    )
    assert guard.check_budget(_request(reserve=True)).allowed
    assert not guard.check_budget(_request(reserve=True)).allowed

    moments.append(NOW + timedelta(seconds=61))
    assert guard.outstanding_reservations("u1") == 0
    assert guard.check_budget(_request(reserve=True)).allowed
    assert guard.outstanding_reservations("u1") == pytest.approx(2.0)


def test_checks_draw_on_an_earlier_hold() -> None:
    guard = _guard(InMemoryUsageStore(), per_user_per_day=4.0)
    whole_run = guard.check_budget(
        BudgetCheckRequest(user_id="u1", cost_input=CostEstimateInput(operation_type="graph-generation", invocations=2))
    )
    assert whole_run.allowed
    assert whole_run.estimated_cost == pytest.approx(4.0)

    # without drawing on the hold a single  call would not fit
    assert not guard.check_budget(_request(reserve=False)).allowed

    draw = BudgetCheckRequest(
        user_id="u1",
        cost_input=CostEstimateInput(operation_type="graph-generation"),
        draw_from=whole_run.reservation_id,
    )
    assert guard.check_budget(draw).allowed
    assert guard.check_budget(draw).allowed
    assert guard.outstanding_reservations("u1") == pytest.approx(4.0)
    assert guard.check_budget(draw).reason == "daily-limit-exceeded"

    assert guard.release(whole_run.reservation_id)
    assert guard.outstanding_reservations("u1") == pytest.approx(4.0)


def test_record_usage_settles_reservation() -> None:
    store = InMemoryUsageStore()
    guard = _guard(store)
    admitted = guard.check_budget(_request(reserve=True))
    assert guard.outstanding_reservations("u1") == pytest.approx(2.0)

    guard.record_usage(_record(1.5), admitted.reservation_id)
    assert guard.outstanding_reservations("u1") == 0
    assert store.totals("u1", NOW).today == pytest.approx(1.5)
    assert not guard.release(admitted.reservation_id)


def test_release_frees_reservation() -> None:
    guard = _guard(InMemoryUsageStore())
    admitted = guard.check_budget(_request(reserve=True))
    assert guard.release(admitted.reservation_id)
    assert guard.outstanding_reservations() == 0


def test_invalid_usage_rejected() -> None:
    guard = _guard(InMemoryUsageStore())
    with pytest.raises(InvalidUsageData) as excinfo:
        guard.record_usage(_record(-1.0, attempts=0, model=" "))
    assert "Cost cannot be negative" in excinfo.value.errors
    assert "Attempts must be at least 1" in excinfo.value.errors
    assert "Model is required" in excinfo.value.errors


def test_threshold_alert_fires_once() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=7.5)
    guard = BudgetGuard(
        store,
        thresholds=WarningThresholds(daily=0.8),
        pricing=PRICING,
        default_model="pricey",
        clock=lambda: NOW,
    )
    received = []
    guard.add_alert_sink(received.append)

    alerts = guard.record_usage(_record(1.0))
    assert [alert.type for alert in alerts] == ["daily-threshold-warning"]
    assert alerts[0].message == "You've used $8.50 of your $10.00 daily limit"
    assert alerts[0].remaining == pytest.approx(1.5)
    assert received == alerts

    assert guard.record_usage(_record(0.5)) == []


def test_alerts_can_be_disabled() -> None:
    store = InMemoryUsageStore()
    store.seed("u1", NOW, today=7.5)
    guard = BudgetGuard(store, thresholds=WarningThresholds(enable_alerts=False), clock=lambda: NOW)
    assert guard.record_usage(_record(1.0, model="claude-haiku")) == []


def test_usage_summary_and_breakdown() -> None:
    guard = _guard(InMemoryUsageStore())
    guard.record_usage(_record(0.3))
    guard.record_usage(_record(0.1))
    guard.record_usage(_record(0.2, operation="quiz-generation"))
    guard.record_usage(_record(0.4, user_id="someone-else"))

    summary = guard.get_usage_summary("u1", "day")
    assert summary.operation_count == 3
    assert summary.total_cost == pytest.approx(0.6)
    assert summary.average_cost_per_operation == pytest.approx(0.2)
    assert summary.token_breakdown == TokenUsage(input=300, output=150)
    assert summary.total_tokens == 450

    breakdown = guard.get_cost_breakdown("u1", "month")
    assert [item.operation for item in breakdown] == ["graph-generation", "quiz-generation"]
    assert breakdown[0].count == 2
    assert breakdown[0].total_cost == pytest.approx(0.4)
    assert breakdown[0].percentage == pytest.approx(66.6667, rel=1e-3)


def test_summary_for_unknown_user_is_empty() -> None:
    summary = _guard(InMemoryUsageStore()).get_usage_summary("nobody")
    assert summary.operation_count == 0
    assert summary.average_cost_per_operation == 0
