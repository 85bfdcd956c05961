"""Error taxonomy for chunking, budgeting and graph synthesis."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from docgraph.cost.types import BudgetCheckResult


class DocGraphError(Exception):
    """Base class for every error raised by docgraph."""

    code = "docgraph-error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ConfigError(DocGraphError):
    """Invalid configuration; the caller must fix it before retrying."""

    code = "config-error"


class ChunkingError(DocGraphError):
    code = "chunking-error"


class DocumentTooShort(ChunkingError):
    code = "document-too-short"


class DocumentTooLong(ChunkingError):
    code = "document-too-long"


class DocumentNotReady(DocGraphError):
    code = "document-not-ready"


class DocumentNotFound(DocGraphError):
    code = "document-not-found"


class BudgetExceeded(DocGraphError):
    """Raised before any AI spend when admission is denied."""

    code = "budget-exceeded"

    def __init__(self, result: "BudgetCheckResult") -> None:
        message = (
            f"Budget exceeded: {result.reason}. "
            f"Estimated cost: ${result.estimated_cost:.4f}, "
            f"today: ${result.current_usage.today:.2f}, "
            f"this month: ${result.current_usage.this_month:.2f}"
        )
        super().__init__(
            message,
            details={
                "reason": result.reason,
                "estimated_cost": result.estimated_cost,
                "reset_at": result.reset_at.isoformat() if result.reset_at else None,
            },
        )
        self.result = result


class ServiceUnavailable(DocGraphError):
    """Transient LLM failure (rate limit, timeout, 5xx)."""

    code = "service-unavailable"

    def __init__(self, message: str, *, model: str | None = None, retry_after: float | None = None) -> None:
        super().__init__(message, details={"model": model})
        self.model = model
        self.retry_after = retry_after


class ValidationFailed(DocGraphError):
    """The LLM answered but the payload is malformed."""

    code = "validation-failed"

    def __init__(self, message: str, *, model: str | None = None, issues: Sequence[str] = ()) -> None:
        super().__init__(message, details={"model": model, "issues": list(issues)})
        self.model = model
        self.issues = list(issues)


class TotalFailure(DocGraphError):
    """No chunk produced a usable fragment."""

    code = "total-failure"

    def __init__(self, message: str, *, warnings: Sequence[str] = ()) -> None:
        super().__init__(message, details={"warnings": list(warnings)})
        self.warnings = list(warnings)


class GenerationCancelled(DocGraphError):
    code = "generation-cancelled"


class InvalidUsageData(DocGraphError):
    code = "invalid-usage-data"

    def __init__(self, message: str, errors: Sequence[str]) -> None:
        super().__init__(f"{message}: {'; '.join(errors)}", details={"errors": list(errors)})
        self.errors = list(errors)


class UnknownModel(ConfigError):
    code = "unknown-model"


class UnknownOperation(ConfigError):
    code = "unknown-operation"


class InvalidEstimateInput(DocGraphError):
    """Negative sizes or a zero invocation count passed to the estimator."""

    code = "invalid-estimate-input"


__all__ = [
    "DocGraphError",
    "ConfigError",
    "ChunkingError",
    "DocumentTooShort",
    "DocumentTooLong",
    "DocumentNotReady",
    "DocumentNotFound",
    "BudgetExceeded",
    "ServiceUnavailable",
    "ValidationFailed",
    "TotalFailure",
    "GenerationCancelled",
    "InvalidUsageData",
    "UnknownModel",
    "InvalidEstimateInput",
    "UnknownOperation",
]
