"""Merge per-chunk fragments into one deduplicated graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from docgraph.core.logging import ctx, get_logger
from docgraph.synthesis.similarity import SequenceRatioScorer, SimilarityScorer
from docgraph.synthesis.types import CandidateNode, ChunkFragment, DocumentRef, GraphEdge, GraphNode
from docgraph.utils.text import normalize, normalize_title

logger = get_logger(__name__)


@dataclass(slots=True)
class MergeResult:
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    merged_nodes: int = 0
    duplicate_edges_removed: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _Entry:
    node: GraphNode
    order: int
    representative: CandidateNode


def merge_fragments(
    fragments: Sequence[ChunkFragment],
    *,
    max_nodes: int,
    similarity_threshold: float = 0.85,
    scorer: SimilarityScorer | None = None,
) -> MergeResult:
    """Dedupe nodes, re-point and dedupe edges, then cap the node count.

    The order matters: edges are remapped only after every node has found its
    merged identity, so no edge can point at a node that merged away.
    """
    scorer = scorer or SequenceRatioScorer()
    warnings: list[str] = []
    entries: list[_Entry] = []
    by_key: dict[str, _Entry] = {}
    mapping: dict[tuple[int, str], str] = {}
    candidate_count = 0

    for fragment in sorted(fragments, key=lambda item: item.chunk_index):
        for candidate in fragment.nodes:
            candidate_count += 1
            key = normalize_title(candidate.title)
            entry = by_key.get(key) or _similar_entry(
                entries, candidate, fragment.chunk_index, scorer, similarity_threshold
            )
            if entry is None:
                entry = _Entry(
                    node=GraphNode(
                        id=f"node_{len(entries) + 1}",
                        title=normalize(candidate.title),
                        summary=candidate.summary,
                        description=candidate.description,
                        node_type=candidate.node_type,
                        confidence=candidate.confidence,
                        document_refs=_dedupe_refs(candidate.document_refs),
                        source_chunks=[fragment.chunk_index],
                    ),
                    order=len(entries),
                    representative=candidate,
                )
                entries.append(entry)
                by_key[key] = entry
            else:
                _absorb(entry, candidate, fragment.chunk_index)
                by_key.setdefault(key, entry)
            mapping[(fragment.chunk_index, candidate.local_id)] = entry.node.id

    edges, duplicates = _remap_edges(fragments, mapping, warnings)
    nodes, edges = _prune(entries, edges, max_nodes, warnings)

    result = MergeResult(
        nodes=nodes,
        edges=edges,
        merged_nodes=candidate_count - len(entries),
        duplicate_edges_removed=duplicates,
        warnings=warnings,
    )
    logger.info(
        "Fragments merged",
        extra=ctx(
            fragments=len(fragments),
            candidates=candidate_count,
            nodes=len(result.nodes),
            edges=len(result.edges),
            merged=result.merged_nodes,
            duplicate_edges=duplicates,
        ),
    )
    return result


def _similar_entry(
    entries: Sequence[_Entry],
    candidate: CandidateNode,
    chunk_index: int,
    scorer: SimilarityScorer,
    threshold: float,
) -> _Entry | None:
    best: _Entry | None = None
    best_score = threshold
    for entry in entries:
        # similarity only links entities reported by different chunks
        if chunk_index in entry.node.source_chunks:
            continue
        score = scorer.score(entry.representative, candidate)
        if score >= best_score:
            best, best_score = entry, score
    return best


def _absorb(entry: _Entry, candidate: CandidateNode, chunk_index: int) -> None:
    node = entry.node
    if candidate.confidence > node.confidence:
        node.summary = candidate.summary or node.summary
        node.description = candidate.description or node.description
        node.node_type = candidate.node_type or node.node_type
        node.confidence = candidate.confidence
    node.document_refs = _dedupe_refs([*node.document_refs, *candidate.document_refs])
    if chunk_index not in node.source_chunks:
        node.source_chunks.append(chunk_index)


def _dedupe_refs(refs: Sequence[DocumentRef]) -> list[DocumentRef]:
    seen: set[tuple[int, int]] = set()
    unique: list[DocumentRef] = []
    for ref in refs:
        if (ref.start, ref.end) not in seen:
            seen.add((ref.start, ref.end))
            unique.append(ref)
    return unique


def _remap_edges(
    fragments: Sequence[ChunkFragment],
    mapping: dict[tuple[int, str], str],
    warnings: list[str],
) -> tuple[list[GraphEdge], int]:
    edges: list[GraphEdge] = []
    index: dict[tuple[str, str, str], GraphEdge] = {}
    dangling = 0
    self_loops = 0
    duplicates = 0
    for fragment in sorted(fragments, key=lambda item: item.chunk_index):
        for candidate in fragment.edges:
            source = mapping.get((fragment.chunk_index, candidate.source))
            target = mapping.get((fragment.chunk_index, candidate.target))
            if source is None or target is None:
                dangling += 1
                continue
            if source == target:
                self_loops += 1
                continue
            key = (source, target, candidate.relationship.casefold())
            existing = index.get(key)
            if existing is not None:
                duplicates += 1
                if candidate.strength is not None and (existing.strength or 0.0) < candidate.strength:
                    existing.strength = candidate.strength
                continue
            edge = GraphEdge(
                id=f"edge_{len(edges) + 1}",
                source=source,
                target=target,
                relationship=candidate.relationship,
                strength=candidate.strength,
            )
            index[key] = edge
            edges.append(edge)
    if dangling:
        warnings.append(f"Dropped {dangling} edges referencing unknown nodes")
    if self_loops:
        warnings.append(f"Dropped {self_loops} self-referencing edges after merging")
    if duplicates:
        warnings.append(f"Removed {duplicates} duplicate edges")
    return edges, duplicates


def _prune(
    entries: Sequence[_Entry],
    edges: list[GraphEdge],
    max_nodes: int,
    warnings: list[str],
) -> tuple[list[GraphNode], list[GraphEdge]]:
    if len(entries) <= max_nodes:
        return [entry.node for entry in entries], edges
    # lowest confidence goes first; among equals the later-inserted node goes first
    ranked = sorted(entries, key=lambda entry: (entry.node.confidence, -entry.order))
    dropped = {entry.node.id for entry in ranked[: len(entries) - max_nodes]}
    nodes = [entry.node for entry in entries if entry.node.id not in dropped]
    kept_edges = [edge for edge in edges if edge.source not in dropped and edge.target not in dropped]
    warnings.append(
        f"Pruned {len(dropped)} low-confidence nodes to respect max_nodes={max_nodes} "
        f"(removed {len(edges) - len(kept_edges)} edges)"
    )
    return nodes, kept_edges


def aggregate_quality(fragments: Sequence[ChunkFragment]) -> float:
    """Per-chunk quality weighted by the chunk's mean node confidence (0-100)."""
    weighted = 0.0
    weights = 0.0
    plain: list[float] = []
    for fragment in fragments:
        if fragment.quality is None:
            continue
        weight = sum(node.confidence for node in fragment.nodes) / len(fragment.nodes) if fragment.nodes else 0.0
        weighted += fragment.quality * weight
        weights += weight
        plain.append(fragment.quality)
    if weights > 0:
        return round(weighted / weights, 2)
    return round(sum(plain) / len(plain), 2) if plain else 0.0


def _escape(label: str) -> str:
    return label.replace('"', '\\"').replace("\r", " ").replace("\n", " ")


def render_mermaid(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> str:
    lines = ["flowchart TD"]
    lines += [f'    {node.id}["{_escape(node.title)}"]' for node in nodes]
    lines += [f'    {edge.source} -->|"{_escape(edge.relationship)}"| {edge.target}' for edge in edges]
    return "\n".join(lines)


__all__ = ["MergeResult", "aggregate_quality", "merge_fragments", "render_mermaid"]
