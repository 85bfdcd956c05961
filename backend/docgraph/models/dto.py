"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

OperationName = Literal[
    "graph-generation",
    "connection-explanation",
    "quiz-generation",
    "image-description",
    "node-description",
]


class ChunkRequest(BaseModel):
    text: str
    title: str | None = None
    max_chunk_size: int | None = None
    overlap_size: int | None = None
    min_chunk_size: int | None = None
    preserve_markdown: bool | None = None


class ChunkOut(BaseModel):
    id: str
    chunk_index: int
    total_chunks: int
    start_index: int
    end_index: int
    estimated_tokens: int
    overlap_with_previous: int
    overlap_with_next: int
    content: str
    metadata: dict[str, Any]


class ChunkResponse(BaseModel):
    chunks: list[ChunkOut]
    document_metadata: dict[str, Any]
    statistics: dict[str, Any]


class EstimateRequest(BaseModel):
    text: str | None = Field(default=None, description="Raw text; its length is used when given")
    text_length: int = Field(default=0, ge=0)
    text_tokens: int | None = Field(default=None, ge=0)
    image_count: int = Field(default=0, ge=0)
    operation_type: OperationName = "graph-generation"
    model: str | None = None
    invocations: int = Field(default=1, ge=1)


class EstimateResponse(BaseModel):
    estimated_cost: float
    formatted_cost: str
    breakdown: dict[str, float]
    estimated_tokens: dict[str, int]
    model: str


class BudgetCheckIn(BaseModel):
    user_id: str = Field(min_length=1)
    document_id: str | None = None
    estimate: EstimateRequest = Field(default_factory=EstimateRequest)


class BudgetCheckResponse(BaseModel):
    allowed: bool
    estimated_cost: float
    current_usage: dict[str, float]
    reason: str | None = None
    reset_at: datetime | None = None
    reservation_id: str | None = Field(
        default=None, description="Held until released, settled or expired (limits.reservation_ttl_seconds)"
    )


class ReleaseResponse(BaseModel):
    reservation_id: str
    released: bool


class UsageResponse(BaseModel):
    user_id: str
    period: Literal["day", "month"]
    total_cost: float
    total_tokens: int
    operation_count: int
    average_cost_per_operation: float
    token_breakdown: dict[str, int]
    by_operation: list[dict[str, Any]]


class DocumentCreateRequest(BaseModel):
    text: str
    title: str | None = None
    status: Literal["uploading", "processing", "ready", "failed"] = "ready"


class DocumentResponse(BaseModel):
    id: str
    title: str | None
    status: str
    length: int


class GraphRequest(BaseModel):
    user_id: str = Field(min_length=1)
    document_id: str | None = None
    text: str | None = None
    title: str | None = None
    max_nodes: int | None = Field(default=None, ge=1, le=200)

    @model_validator(mode="after")
    def _one_source(self) -> "GraphRequest":
        if (self.document_id is None) == (self.text is None):
            raise ValueError("Provide exactly one of document_id or text")
        return self


class GraphResponse(BaseModel):
    graph_id: str
    document_id: str | None
    title: str | None
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]
    mermaid_code: str
    statistics: dict[str, Any]
    metadata: dict[str, Any]
    is_partial: bool


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "BudgetCheckIn",
    "BudgetCheckResponse",
    "ChunkOut",
    "ChunkRequest",
    "ChunkResponse",
    "DocumentCreateRequest",
    "DocumentResponse",
    "ErrorResponse",
    "EstimateRequest",
    "EstimateResponse",
    "GraphRequest",
    "GraphResponse",
    "ReleaseResponse",
    "UsageResponse",
]
