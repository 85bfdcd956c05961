"""Usage stores: per-user per-period counters plus the append-only ledger."""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime
from typing import Protocol

from docgraph.cost.types import TokenUsage, UsageRecord, UsageTotals
from docgraph.db.sqlite import SQLiteDatabase
from docgraph.utils.time import day_key, month_key


class UsageStore(Protocol):
    """Storage contract consumed by the budget guard."""

    def totals(self, user_id: str, at: datetime) -> UsageTotals: ...

    def document_total(self, document_id: str) -> float: ...

    def add(self, record: UsageRecord) -> None:
        """Append ``record`` and advance the user's counters in one step."""
        ...

    def records(self, user_id: str | None = None, since: datetime | None = None) -> list[UsageRecord]: ...


class InMemoryUsageStore:
    """Process-local store; counters keyed by UTC day and month."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, str], float] = defaultdict(float)
        self._documents: dict[str, float] = defaultdict(float)
        self._ledger: list[UsageRecord] = []

    def totals(self, user_id: str, at: datetime) -> UsageTotals:
        with self._lock:
            return UsageTotals(
                today=self._counters.get((user_id, day_key(at)), 0.0),
                this_month=self._counters.get((user_id, month_key(at)), 0.0),
            )

    def document_total(self, document_id: str) -> float:
        with self._lock:
            return self._documents.get(document_id, 0.0)

    def add(self, record: UsageRecord) -> None:
        with self._lock:
            self._ledger.append(record)
            self._counters[(record.user_id, day_key(record.timestamp))] += record.cost
            self._counters[(record.user_id, month_key(record.timestamp))] += record.cost
            if record.document_id:
                self._documents[record.document_id] += record.cost

    def seed(self, user_id: str, at: datetime, *, today: float = 0.0, this_month: float | None = None) -> None:
        """Preload counters, e.g. from an external billing snapshot."""
        with self._lock:
            self._counters[(user_id, day_key(at))] = today
            self._counters[(user_id, month_key(at))] = today if this_month is None else this_month

    def records(self, user_id: str | None = None, since: datetime | None = None) -> list[UsageRecord]:
        with self._lock:
            return [
                record
                for record in self._ledger
                if (user_id is None or record.user_id == user_id) and (since is None or record.timestamp >= since)
            ]


class SQLiteUsageStore:
    """Ledger persisted in SQLite; period totals are aggregated from the ledger."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    def totals(self, user_id: str, at: datetime) -> UsageTotals:
        row = self.db.query(
            """
            SELECT
              COALESCE(SUM(CASE WHEN day_key = ? THEN cost END), 0) AS today,
              COALESCE(SUM(cost), 0) AS this_month
            FROM usage_records
            WHERE user_id = ? AND month_key = ?
            """,
            [day_key(at), user_id, month_key(at)],
        )[0]
        return UsageTotals(today=float(row["today"]), this_month=float(row["this_month"]))

    def document_total(self, document_id: str) -> float:
        row = self.db.query(
            "SELECT COALESCE(SUM(cost), 0) AS total FROM usage_records WHERE document_id = ?",
            [document_id],
        )[0]
        return float(row["total"])

    def add(self, record: UsageRecord) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO usage_records (
                  user_id, operation, model, input_tokens, output_tokens, cost, attempts,
                  success, document_id, graph_id, quality, day_key, month_key, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    record.user_id,
                    record.operation,
                    record.model,
                    record.tokens_used.input,
                    record.tokens_used.output,
                    record.cost,
                    record.attempts,
                    int(record.success),
                    record.document_id,
                    record.graph_id,
                    record.quality,
                    day_key(record.timestamp),
                    month_key(record.timestamp),
                    record.timestamp.isoformat(),
                ],
            )

    def records(self, user_id: str | None = None, since: datetime | None = None) -> list[UsageRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.query(f"SELECT * FROM usage_records {where} ORDER BY id", params)
        return [
            UsageRecord(
                user_id=row["user_id"],
                operation=row["operation"],
                model=row["model"],
                tokens_used=TokenUsage(input=row["input_tokens"], output=row["output_tokens"]),
                cost=row["cost"],
                attempts=row["attempts"],
                success=bool(row["success"]),
                document_id=row["document_id"],
                graph_id=row["graph_id"],
                quality=row["quality"],
                timestamp=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


__all__ = ["InMemoryUsageStore", "SQLiteUsageStore", "UsageStore"]
