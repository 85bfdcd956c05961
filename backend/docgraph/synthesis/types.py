"""Graph synthesis data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from docgraph.cost.types import TokenUsage


@dataclass(frozen=True, slots=True)
class DocumentRef:
    start: int
    end: int
    text: str = ""


@dataclass(slots=True)
class CandidateNode:
    """A node as one chunk's extraction reported it, keyed by a chunk-local id."""

    local_id: str
    title: str
    summary: str = ""
    description: str = ""
    node_type: str | None = None
    confidence: float = 1.0
    document_refs: list[DocumentRef] = field(default_factory=list)
    chunk_index: int = 0


@dataclass(slots=True)
class CandidateEdge:
    source: str
    target: str
    relationship: str
    strength: float | None = None
    chunk_index: int = 0


@dataclass(slots=True)
class ChunkFragment:
    """Successful extraction for one chunk."""

    chunk_index: int
    nodes: list[CandidateNode]
    edges: list[CandidateEdge]
    model: str
    fallback_used: bool = False
    quality: float | None = None


class ChunkState(str, Enum):
    ATTEMPTING = "attempting"
    ATTEMPT_FAILED = "attempt_failed"
    FALLBACK_ATTEMPTING = "fallback_attempting"
    SUCCEEDED = "succeeded"
    CHUNK_FAILED = "chunk_failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class ChunkOutcome:
    """Terminal result of one chunk's retry/fallback run."""

    chunk_index: int
    state: ChunkState
    fragment: ChunkFragment | None = None
    attempts: int = 0
    model: str | None = None
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    fallback_used: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ChunkState.SUCCEEDED


@dataclass(slots=True)
class GraphNode:
    id: str
    title: str
    summary: str
    description: str
    node_type: str | None
    confidence: float
    document_refs: list[DocumentRef]
    source_chunks: list[int]


@dataclass(slots=True)
class GraphEdge:
    id: str
    source: str
    target: str
    relationship: str
    strength: float | None = None


@dataclass(slots=True)
class GraphStatistics:
    chunks_processed: int
    chunks_failed: int
    total_nodes: int
    total_edges: int
    merged_nodes: int
    duplicate_edges_removed: int
    quality_score: float
    total_cost: float
    processing_time_ms: int
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class GraphMetadata:
    model: str
    fallback_used: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class GraphResult:
    graph_id: str
    document_id: str | None
    title: str | None
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    mermaid_code: str
    statistics: GraphStatistics
    metadata: GraphMetadata

    @property
    def is_partial(self) -> bool:
        """True when some chunks failed but survivors produced the graph."""
        return self.statistics.chunks_failed > 0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["is_partial"] = self.is_partial
        return payload


__all__ = [
    "CandidateEdge",
    "CandidateNode",
    "ChunkFragment",
    "ChunkOutcome",
    "ChunkState",
    "DocumentRef",
    "GraphEdge",
    "GraphMetadata",
    "GraphNode",
    "GraphResult",
    "GraphStatistics",
]
