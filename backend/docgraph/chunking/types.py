"""Chunking data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

SplitMethod = Literal["chapter", "section", "paragraph", "sentence", "word", "hard_limit", "end"]
DocumentType = Literal["markdown", "plain", "structured"]


@dataclass(slots=True)
class ChunkQuality:
    has_clean_boundaries: bool
    is_optimal_size: bool
    has_sufficient_context: bool


@dataclass(slots=True)
class ChunkMetadata:
    headings: list[str]
    split_method: SplitMethod
    quality: ChunkQuality
    word_count: int
    line_count: int
    title: str | None = None


@dataclass(slots=True)
class TextChunk:
    """A size-bounded slice of the document plus leading overlap.

    ``start_index``/``end_index`` delimit ``content`` in the original text, so
    the chunk's own span starts ``overlap_with_previous`` characters later.
    """

    id: str
    content: str
    start_index: int
    end_index: int
    chunk_index: int
    total_chunks: int
    estimated_tokens: int
    overlap_with_previous: int
    overlap_with_next: int
    metadata: ChunkMetadata

    @property
    def own_start(self) -> int:
        return self.start_index + self.overlap_with_previous

    @property
    def own_content(self) -> str:
        return self.content[self.overlap_with_previous :]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DocumentMetadata:
    total_characters: int
    total_words: int
    document_type: DocumentType
    title: str | None = None


@dataclass(slots=True)
class ChunkingStatistics:
    total_chunks: int
    average_chunk_size: int
    min_chunk_size: int
    max_chunk_size: int
    total_overlap_characters: int
    overlap_percentage: float
    quality_score: float
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ChunkingResult:
    chunks: list[TextChunk]
    document_metadata: DocumentMetadata
    statistics: ChunkingStatistics

    def reconstruct(self) -> str:
        """Concatenate each chunk's own span; equals the source text."""
        return "".join(chunk.own_content for chunk in self.chunks)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "ChunkMetadata",
    "ChunkQuality",
    "ChunkingResult",
    "ChunkingStatistics",
    "DocumentMetadata",
    "DocumentType",
    "SplitMethod",
    "TextChunk",
]
