"""Chunking utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from docgraph.chunking.types import (
    ChunkingResult,
    ChunkingStatistics,
    ChunkMetadata,
    ChunkQuality,
    DocumentMetadata,
    DocumentType,
    SplitMethod,
    TextChunk,
)
from docgraph.core.config import ChunkingConfig
from docgraph.core.errors import ConfigError, DocumentTooLong, DocumentTooShort
from docgraph.core.logging import ctx, get_logger
from docgraph.utils.text import count_words, extract_headings

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4


@dataclass(slots=True)
class Segment:
    start: int
    end: int
    split_method: SplitMethod

    @property
    def size(self) -> int:
        return self.end - self.start


def chunk_text(text: str, config: ChunkingConfig | None = None, title: str | None = None) -> ChunkingResult:
    """Split text into ordered, overlapping chunks at the best semantic boundary."""
    config = config or ChunkingConfig()
    validate_config(config)
    _validate_document(text, config)

    separators = _active_separators(config)
    warnings: list[str] = []
    if len(text) <= config.max_chunk_size:
        segments = [Segment(start=0, end=len(text), split_method="end")]
    else:
        segments = _segment(text, config, separators)
        segments = _merge_undersized(segments, config)

    chunks = _build_chunks(text, segments, config)
    statistics = _calculate_statistics(chunks, len(text), config, warnings)
    headings = extract_headings(text) if config.preserve_markdown else []
    document_metadata = DocumentMetadata(
        total_characters=len(text),
        total_words=count_words(text),
        document_type=_detect_document_type(text, bool(headings)),
        title=title or (headings[0][1] if headings else _first_line(text)),
    )

    logger.info(
        "Document chunked",
        extra=ctx(
            total_chunks=statistics.total_chunks,
            avg_chunk_size=statistics.average_chunk_size,
            quality_score=statistics.quality_score,
        ),
    )
    return ChunkingResult(chunks=chunks, document_metadata=document_metadata, statistics=statistics)


def validate_config(config: ChunkingConfig) -> None:
    """Raise ConfigError when the chunking options cannot produce in-range chunks."""
    if config.max_chunk_size <= 0 or config.min_chunk_size <= 0:
        raise ConfigError(
            "Chunk sizes must be positive",
            details={"max_chunk_size": config.max_chunk_size, "min_chunk_size": config.min_chunk_size},
        )
    if config.max_chunk_size <= config.min_chunk_size:
        raise ConfigError(
            "max_chunk_size must be greater than min_chunk_size",
            details={"max_chunk_size": config.max_chunk_size, "min_chunk_size": config.min_chunk_size},
        )
    if config.overlap_size < 0:
        raise ConfigError("overlap_size cannot be negative", details={"overlap_size": config.overlap_size})
    if config.overlap_size >= config.max_chunk_size - config.min_chunk_size:
        raise ConfigError(
            "overlap_size must be smaller than max_chunk_size - min_chunk_size",
            details={"overlap_size": config.overlap_size},
        )
    if not config.separators or any(not separator for separator in config.separators):
        raise ConfigError("separators must be a non-empty list of non-empty strings")
    low, high = config.optimal_size_band
    if not 0 <= low <= high:
        raise ConfigError("optimal_size_band must be an ordered pair of ratios")
    if config.min_document_length > config.max_document_length:
        raise ConfigError("min_document_length cannot exceed max_document_length")


def split_method_for(separator: str) -> SplitMethod:
    """Classify a separator string for chunk metadata."""
    stripped = separator.strip()
    if stripped and set(stripped) == {"#"}:
        return "chapter" if len(stripped) == 1 else "section"
    if not separator.strip("\n"):
        return "paragraph"
    if stripped and stripped[-1] in ".!?;:":
        return "sentence"
    if separator.isspace():
        return "word"
    return "paragraph"


def _validate_document(text: str, config: ChunkingConfig) -> None:
    if not text or not text.strip():
        raise DocumentTooShort("Document text is empty", details={"length": len(text or "")})
    if len(text) < config.min_document_length:
        raise DocumentTooShort(
            "Document is shorter than the configured minimum",
            details={"length": len(text), "min_length": config.min_document_length},
        )
    if len(text) > config.max_document_length:
        raise DocumentTooLong(
            "Document is longer than the configured maximum",
            details={"length": len(text), "max_length": config.max_document_length},
        )
    if len(text) > config.large_document_warning:
        logger.warning(
            "Document is very large, may be expensive to process",
            extra=ctx(length=len(text), estimated_tokens=math.ceil(len(text) / CHARS_PER_TOKEN)),
        )


def _active_separators(config: ChunkingConfig) -> list[str]:
    if config.preserve_markdown:
        return list(config.separators)
    active = [sep for sep in config.separators if split_method_for(sep) not in ("chapter", "section")]
    return active or [" "]


def _cut_offset(separator: str) -> int:
    # headings open the next chunk, so cut right after the leading newline(s)
    if separator.startswith("\n") and separator.strip():
        return len(separator) - len(separator.lstrip("\n"))
    return len(separator)


def _rightmost_cut(span: str, separator: str, low: int, high: int) -> int:
    if high < low:
        return 0
    offset = _cut_offset(separator)
    search_end = min(len(span), high - offset + len(separator))
    index = span.rfind(separator, 0, search_end)
    if index < 0:
        return 0
    cut = index + offset
    return cut if cut >= low else 0


def _find_cut(text: str, cursor: int, window: int, separators: Sequence[str], min_size: int) -> tuple[int, SplitMethod]:
    remaining = len(text) - cursor
    span = text[cursor : cursor + window]
    # prefer cuts that leave a remainder of at least min_size
    preferred_high = min(window, remaining - min_size)
    for separator in separators:
        cut = _rightmost_cut(span, separator, min_size, preferred_high)
        if not cut:
            cut = _rightmost_cut(span, separator, min_size, window)
        if cut:
            return cut, split_method_for(separator)

    cut = window
    if 0 < remaining - window < min_size and remaining - min_size >= min_size:
        cut = remaining - min_size
    logger.warning("Using hard split (no semantic boundary found)", extra=ctx(position=cursor + cut))
    return cut, "hard_limit"


def _segment(text: str, config: ChunkingConfig, separators: Sequence[str]) -> list[Segment]:
    segments: list[Segment] = []
    cursor = 0
    length = len(text)
    while cursor < length:
        # later chunks get overlap prepended, so their own span must leave room for it
        window = config.max_chunk_size if not segments else config.max_chunk_size - config.overlap_size
        if length - cursor <= window:
            segments.append(Segment(start=cursor, end=length, split_method="end"))
            break
        cut, method = _find_cut(text, cursor, window, separators, config.min_chunk_size)
        segments.append(Segment(start=cursor, end=cursor + cut, split_method=method))
        cursor += cut
    return segments


def _overlap_before(segments: Sequence[Segment], index: int, overlap_size: int) -> int:
    if index == 0:
        return 0
    return min(overlap_size, segments[index - 1].size)


def _merge_undersized(segments: list[Segment], config: ChunkingConfig) -> list[Segment]:
    merged = list(segments)
    index = 0
    while index < len(merged) and len(merged) > 1:
        segment = merged[index]
        if segment.size >= config.min_chunk_size:
            index += 1
            continue
        neighbour = index - 1 if index > 0 else index + 1
        first, second = sorted((index, neighbour))
        candidate = Segment(
            start=merged[first].start,
            end=merged[second].end,
            split_method=merged[second].split_method,
        )
        lead = _overlap_before(merged, first, config.overlap_size)
        if candidate.size + lead > config.max_chunk_size:
            index += 1
            continue
        merged[first : second + 1] = [candidate]
        index = max(first - 1, 0)
    return merged


def _build_chunks(text: str, segments: Sequence[Segment], config: ChunkingConfig) -> list[TextChunk]:
    total = len(segments)
    low, high = config.optimal_size_band
    chunks: list[TextChunk] = []
    for index, segment in enumerate(segments):
        overlap_prev = _overlap_before(segments, index, config.overlap_size)
        overlap_next = min(config.overlap_size, segment.size) if index < total - 1 else 0
        start = segment.start - overlap_prev
        content = text[start : segment.end]
        own = text[segment.start : segment.end]
        headings = [heading for _, heading, _ in extract_headings(own)] if config.preserve_markdown else []
        chunks.append(
            TextChunk(
                id=f"chunk_{index}",
                content=content,
                start_index=start,
                end_index=segment.end,
                chunk_index=index,
                total_chunks=total,
                estimated_tokens=math.ceil(len(content) / CHARS_PER_TOKEN),
                overlap_with_previous=overlap_prev,
                overlap_with_next=overlap_next,
                metadata=ChunkMetadata(
                    title=headings[0] if headings else None,
                    headings=headings,
                    split_method=segment.split_method,
                    quality=ChunkQuality(
                        has_clean_boundaries=segment.split_method != "hard_limit",
                        is_optimal_size=low * config.max_chunk_size <= len(content) <= high * config.max_chunk_size,
                        has_sufficient_context=len(content) >= config.min_chunk_size,
                    ),
                    word_count=count_words(content),
                    line_count=content.count("\n") + 1,
                ),
            )
        )
    return chunks


def _calculate_statistics(
    chunks: Sequence[TextChunk],
    total_chars: int,
    config: ChunkingConfig,
    warnings: list[str],
) -> ChunkingStatistics:
    sizes = [len(chunk.content) for chunk in chunks]
    total_overlap = sum(chunk.overlap_with_previous for chunk in chunks)

    hard_splits = sum(1 for chunk in chunks if chunk.metadata.split_method == "hard_limit")
    if hard_splits:
        warnings.append(f"{hard_splits} chunks split at hard limit (no semantic boundary)")
    too_small = sum(1 for size in sizes if size < config.min_chunk_size)
    if too_small and len(chunks) > 1:
        warnings.append(f"{too_small} chunks below minimum size")

    return ChunkingStatistics(
        total_chunks=len(chunks),
        average_chunk_size=round(sum(sizes) / len(sizes)),
        min_chunk_size=min(sizes),
        max_chunk_size=max(sizes),
        total_overlap_characters=total_overlap,
        overlap_percentage=(total_overlap / total_chars) * 100 if total_chars else 0.0,
        quality_score=_quality_score(chunks, sum(sizes), total_overlap, config),
        warnings=warnings,
    )


def _quality_score(chunks: Sequence[TextChunk], total_size: int, total_overlap: int, config: ChunkingConfig) -> float:
    count = len(chunks)
    clean = sum(1 for chunk in chunks if chunk.metadata.quality.has_clean_boundaries) / count
    optimal = sum(1 for chunk in chunks if chunk.metadata.quality.is_optimal_size) / count
    ideal = config.ideal_overlap_fraction
    fraction = total_overlap / total_size if total_size else 0.0
    if fraction <= ideal:
        efficiency = 1.0
    else:
        efficiency = max(0.0, 1.0 - (fraction - ideal) / ideal) if ideal > 0 else 0.0

    weights = config.quality_weights
    components = {
        "clean_boundaries": clean,
        "optimal_size": optimal,
        "overlap_efficiency": efficiency,
    }
    weight_sum = sum(weights.get(name, 0.0) for name in components)
    if weight_sum <= 0:
        return 0.0
    score = sum(weights.get(name, 0.0) * value for name, value in components.items()) / weight_sum
    return round(score * 100, 2)


def _detect_document_type(text: str, has_headings: bool) -> DocumentType:
    if has_headings:
        return "markdown"
    if len([part for part in text.split("\n\n") if part.strip()]) > 10:
        return "structured"
    return "plain"


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return "Untitled"


__all__ = ["chunk_text", "split_method_for", "validate_config"]
