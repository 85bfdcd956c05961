"""Budget admission, usage recording and threshold alerts."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Mapping

from docgraph.core.config import DEFAULT_MODEL_PRICING, CostLimits, ModelPricing, WarningThresholds
from docgraph.core.errors import InvalidUsageData
from docgraph.core.logging import ctx, get_logger
from docgraph.core.metrics import BUDGET_DECISIONS, COST_ALERTS, SPEND_USD
from docgraph.cost.estimator import DEFAULT_MODEL, estimate_cost
from docgraph.cost.types import (
    BudgetCheckRequest,
    BudgetCheckResult,
    CostAlert,
    DenialReason,
    OperationCost,
    TokenUsage,
    UsageRecord,
    UsageSummary,
    UsageTotals,
)
from docgraph.cost.usage_store import UsageStore
from docgraph.utils.ids import new_id
from docgraph.utils.time import next_day_start, next_month_start, utc_now

logger = get_logger(__name__)

AlertSink = Callable[[CostAlert], None]
Period = Literal["day", "month"]

# absorbs float drift when estimates sum exactly to a limit
_EPSILON = 1e-9


@dataclass(slots=True)
class _Reservation:
    user_id: str
    document_id: str | None
    amount: float
    expires_at: datetime


class BudgetGuard:
    """Admits or denies AI operations against per-document, daily and monthly limits.

    Admission for one user is serialized: the check and the reservation it
    takes happen under that user's lock, and so do settlement and the counter
    increment in :meth:`record_usage`. Outstanding reservations count against
    every limit, so concurrent callers that each pass on their own can never
    jointly overspend. A reservation nobody settles or releases lapses after
    ``limits.reservation_ttl_seconds``.

    A check may draw on an earlier reservation (``draw_from``): the amount it
    needs moves from that hold to the new one, so a run that reserved its whole
    estimate up front is not charged twice when it admits each chunk.
    """

    def __init__(
        self,
        store: UsageStore,
        limits: CostLimits | None = None,
        thresholds: WarningThresholds | None = None,
        pricing: Mapping[str, ModelPricing] = DEFAULT_MODEL_PRICING,
        default_model: str = DEFAULT_MODEL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.limits = limits or CostLimits()
        self.thresholds = thresholds or WarningThresholds()
        self.pricing = pricing
        self.default_model = default_model
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._reservations: dict[str, _Reservation] = {}
        self._alert_sinks: list[AlertSink] = []
        self._ttl = timedelta(seconds=self.limits.reservation_ttl_seconds)

    def add_alert_sink(self, sink: AlertSink) -> None:
        self._alert_sinks.append(sink)

    def check_budget(self, request: BudgetCheckRequest) -> BudgetCheckResult:
        estimate = estimate_cost(request.cost_input, self.pricing, self.default_model)
        cost = estimate.estimated_cost
        now = self._clock()

        with self._lock_for(request.user_id):
            usage = self.store.totals(request.user_id, now)
            with self._registry_lock:
                self._expire(now)
                parent = self._reservations.get(request.draw_from) if request.draw_from else None
                if parent is not None and parent.user_id != request.user_id:
                    parent = None
                credit = min(parent.amount, cost) if parent is not None else 0.0
                reserved = self._held(user_id=request.user_id) - credit
                document_reserved = 0.0
                if request.document_id is not None:
                    document_reserved = self._held(document_id=request.document_id)
                    if parent is not None and parent.document_id == request.document_id:
                        document_reserved -= credit
            today = usage.today + reserved
            month = usage.this_month + reserved

            reason: DenialReason | None = None
            reset_at: datetime | None = None
            if request.document_id is not None:
                spent = self.store.document_total(request.document_id) + document_reserved
                if spent + cost > self.limits.per_document + _EPSILON:
                    reason = "document-limit-exceeded"
            if reason is None and today + cost > self.limits.per_user_per_day + _EPSILON:
                reason, reset_at = "daily-limit-exceeded", next_day_start(now)
            if reason is None and month + cost > self.limits.per_user_per_month + _EPSILON:
                reason, reset_at = "monthly-limit-exceeded", next_month_start(now)

            reservation_id = None
            if reason is None:
                with self._registry_lock:
                    if parent is not None:
                        parent.amount -= credit
                    if request.reserve:
                        reservation_id = new_id("rsv")
                        self._reservations[reservation_id] = _Reservation(
                            user_id=request.user_id,
                            document_id=request.document_id,
                            amount=cost,
                            expires_at=now + self._ttl,
                        )

        BUDGET_DECISIONS.labels(decision="allowed" if reason is None else "denied", reason=reason or "none").inc()
        if reason is None:
            logger.info(
                "Budget check passed",
                extra=ctx(
                    user_id=request.user_id,
                    operation=request.cost_input.operation_type,
                    estimated_cost=cost,
                    today=usage.today,
                    this_month=usage.this_month,
                    reserved=reserved,
                ),
            )
        else:
            logger.warning(
                "Budget check denied",
                extra=ctx(user_id=request.user_id, reason=reason, estimated_cost=cost, document_id=request.document_id),
            )
        return BudgetCheckResult(
            allowed=reason is None,
            estimated_cost=cost,
            current_usage=usage,
            reason=reason,
            reset_at=reset_at,
            reservation_id=reservation_id,
        )

    def record_usage(self, record: UsageRecord, reservation_id: str | None = None) -> list[CostAlert]:
        """Append ``record`` to the ledger, settling ``reservation_id`` if given.

        Returns the threshold alerts this record triggered.
        """
        _validate_usage(record)
        with self._lock_for(record.user_id):
            if reservation_id is not None:
                with self._registry_lock:
                    self._reservations.pop(reservation_id, None)
            before = self.store.totals(record.user_id, record.timestamp)
            self.store.add(record)
            after = self.store.totals(record.user_id, record.timestamp)

        SPEND_USD.labels(operation=record.operation, model=record.model).inc(record.cost)
        logger.info(
            "Usage recorded",
            extra=ctx(
                user_id=record.user_id,
                operation=record.operation,
                model=record.model,
                cost=record.cost,
                success=record.success,
                attempts=record.attempts,
            ),
        )
        if not self.thresholds.enable_alerts:
            return []
        alerts = self._crossed_thresholds(record.user_id, before, after)
        for alert in alerts:
            self._emit(alert)
        return alerts

    def release(self, reservation_id: str) -> bool:
        """Drop an unused reservation. Returns False if it was already settled."""
        with self._registry_lock:
            released = self._reservations.pop(reservation_id, None) is not None
        if released:
            logger.debug("Reservation released", extra=ctx(reservation_id=reservation_id))
        return released

    def get_usage_summary(self, user_id: str, period: Period = "day") -> UsageSummary:
        records = self.store.records(user_id, since=self._period_start(period))
        total_cost = sum(record.cost for record in records)
        tokens = sum((record.tokens_used for record in records), TokenUsage())
        return UsageSummary(
            total_cost=total_cost,
            total_tokens=tokens.total,
            operation_count=len(records),
            average_cost_per_operation=total_cost / (len(records) or 1),
            token_breakdown=tokens,
        )

    def get_cost_breakdown(self, user_id: str, period: Period = "month") -> list[OperationCost]:
        totals: dict[str, list[float]] = {}
        for record in self.store.records(user_id, since=self._period_start(period)):
            bucket = totals.setdefault(record.operation, [0.0, 0])
            bucket[0] += record.cost
            bucket[1] += 1
        grand_total = sum(cost for cost, _ in totals.values())
        breakdown = [
            OperationCost(
                operation=operation,
                total_cost=cost,
                count=int(count),
                average_cost=cost / count,
                percentage=(cost / grand_total) * 100 if grand_total > 0 else 0.0,
            )
            for operation, (cost, count) in totals.items()
        ]
        return sorted(breakdown, key=lambda item: item.total_cost, reverse=True)

    def outstanding_reservations(self, user_id: str | None = None) -> float:
        return self._reserved(user_id=user_id)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._user_locks[user_id]

    def _reserved(self, *, user_id: str | None = None, document_id: str | None = None) -> float:
        with self._registry_lock:
            self._expire(self._clock())
            return self._held(user_id=user_id, document_id=document_id)

    def _held(self, *, user_id: str | None = None, document_id: str | None = None) -> float:
        # caller holds _registry_lock
        return sum(
            reservation.amount
            for reservation in self._reservations.values()
            if (user_id is None or reservation.user_id == user_id)
            and (document_id is None or reservation.document_id == document_id)
        )

    def _expire(self, now: datetime) -> None:
        # caller holds _registry_lock
        lapsed = [key for key, reservation in self._reservations.items() if reservation.expires_at <= now]
        for key in lapsed:
            reservation = self._reservations.pop(key)
            logger.info(
                "Reservation expired",
                extra=ctx(reservation_id=key, user_id=reservation.user_id, amount=reservation.amount),
            )

    def _crossed_thresholds(self, user_id: str, before: UsageTotals, after: UsageTotals) -> list[CostAlert]:
        alerts: list[CostAlert] = []
        checks = (
            (
                "daily-threshold-warning",
                "daily",
                before.today,
                after.today,
                self.limits.per_user_per_day,
                self.thresholds.daily,
            ),
            (
                "monthly-threshold-warning",
                "monthly",
                before.this_month,
                after.this_month,
                self.limits.per_user_per_month,
                self.thresholds.monthly,
            ),
        )
        for alert_type, label, previous, current, limit, ratio in checks:
            threshold = limit * ratio
            if previous < threshold <= current:
                alerts.append(
                    CostAlert(
                        type=alert_type,
                        user_id=user_id,
                        message=f"You've used ${current:.2f} of your ${limit:.2f} {label} limit",
                        current=current,
                        limit=limit,
                        remaining=max(limit - current, 0.0),
                    )
                )
        return alerts

    def _emit(self, alert: CostAlert) -> None:
        COST_ALERTS.labels(type=alert.type).inc()
        logger.warning(
            "Budget threshold warning",
            extra=ctx(user_id=alert.user_id, alert_type=alert.type, current=alert.current, limit=alert.limit),
        )
        for sink in self._alert_sinks:
            try:
                sink(alert)
            except Exception:  # pragma: no cover - sinks are external
                logger.exception("Alert sink failed", extra=ctx(alert_type=alert.type))

    def _period_start(self, period: Period) -> datetime:
        now = self._clock().astimezone(timezone.utc)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start if period == "day" else start.replace(day=1)


def _validate_usage(record: UsageRecord) -> None:
    errors: list[str] = []
    if record.cost < 0:
        errors.append("Cost cannot be negative")
    if record.tokens_used.input < 0 or record.tokens_used.output < 0:
        errors.append("Token counts cannot be negative")
    if not record.operation or not record.operation.strip():
        errors.append("Operation type is required")
    if not record.model or not record.model.strip():
        errors.append("Model is required")
    if record.attempts < 1:
        errors.append("Attempts must be at least 1")
    if errors:
        raise InvalidUsageData("Invalid usage data", errors)


__all__ = ["AlertSink", "BudgetGuard"]
