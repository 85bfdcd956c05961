"""Cost and usage data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from docgraph.utils.time import utc_now

OperationType = Literal[
    "graph-generation",
    "connection-explanation",
    "quiz-generation",
    "image-description",
    "node-description",
]
DenialReason = Literal["document-limit-exceeded", "daily-limit-exceeded", "monthly-limit-exceeded"]
AlertType = Literal["daily-threshold-warning", "monthly-threshold-warning"]


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(input=self.input + other.input, output=self.output + other.output)


@dataclass(frozen=True, slots=True)
class CostEstimateInput:
    text_length: int = 0
    text_tokens: int | None = None
    image_count: int = 0
    operation_type: OperationType = "graph-generation"
    model: str | None = None
    invocations: int = 1


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    text_processing: float
    image_processing: float
    output_generation: float


@dataclass(frozen=True, slots=True)
class CostEstimate:
    estimated_cost: float
    breakdown: CostBreakdown
    estimated_tokens: TokenUsage
    model: str


@dataclass(frozen=True, slots=True)
class UsageTotals:
    today: float = 0.0
    this_month: float = 0.0


@dataclass(frozen=True, slots=True)
class BudgetCheckRequest:
    user_id: str
    cost_input: CostEstimateInput
    document_id: str | None = None
    reserve: bool = True
    # reservation whose held funds this check may draw on (a run's pre-flight hold)
    draw_from: str | None = None


@dataclass(frozen=True, slots=True)
class BudgetCheckResult:
    allowed: bool
    estimated_cost: float
    current_usage: UsageTotals
    reason: DenialReason | None = None
    reset_at: datetime | None = None
    reservation_id: str | None = None

    def __post_init__(self) -> None:
        if not self.allowed and self.reason is None:
            raise ValueError("a denied budget check must carry a reason")


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """Append-only ledger entry for one completed or exhausted AI operation."""

    user_id: str
    operation: str
    model: str
    tokens_used: TokenUsage
    cost: float
    attempts: int
    success: bool
    document_id: str | None = None
    graph_id: str | None = None
    quality: float | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(frozen=True, slots=True)
class CostAlert:
    type: AlertType
    user_id: str
    message: str
    current: float
    limit: float
    remaining: float
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class UsageSummary:
    total_cost: float
    total_tokens: int
    operation_count: int
    average_cost_per_operation: float
    token_breakdown: TokenUsage


@dataclass(frozen=True, slots=True)
class OperationCost:
    operation: str
    total_cost: float
    count: int
    average_cost: float
    percentage: float


__all__ = [
    "AlertType",
    "BudgetCheckRequest",
    "BudgetCheckResult",
    "CostAlert",
    "CostBreakdown",
    "CostEstimate",
    "CostEstimateInput",
    "DenialReason",
    "OperationCost",
    "OperationType",
    "TokenUsage",
    "UsageRecord",
    "UsageSummary",
    "UsageTotals",
]
