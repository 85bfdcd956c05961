"""Validation of raw graph payloads returned by the LLM."""

from __future__ import annotations

import re
from typing import Any, Mapping

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docgraph.core.errors import ValidationFailed
from docgraph.synthesis.types import CandidateEdge, CandidateNode, DocumentRef

DEFAULT_CONFIDENCE = 0.8
DEFAULT_RELATIONSHIP = "relates to"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class _Raw(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RawDocumentRef(_Raw):
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    text: str = ""


class RawNodeMetadata(_Raw):
    document_refs: list[RawDocumentRef] = Field(default_factory=list, alias="documentRefs")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class RawNode(_Raw):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    summary: str | None = None
    node_type: str | None = Field(default=None, alias="nodeType")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    metadata: RawNodeMetadata = Field(default_factory=RawNodeMetadata)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("title")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title cannot be blank")
        return value.strip()


class RawEdgeMetadata(_Raw):
    strength: float | None = Field(default=None, ge=0.0, le=1.0)


class RawEdge(_Raw):
    source: str = Field(alias="fromNodeId")
    target: str = Field(alias="toNodeId")
    relationship: str | None = None
    metadata: RawEdgeMetadata = Field(default_factory=RawEdgeMetadata)

    @field_validator("source", "target", mode="before")
    @classmethod
    def _coerce_endpoint(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class RawGraphPayload(_Raw):
    nodes: list[RawNode] = Field(min_length=1)
    edges: list[RawEdge] = Field(default_factory=list)
    mermaid_code: str | None = Field(default=None, alias="mermaidCode")
    quality: float | None = Field(default=None, ge=0.0, le=100.0)


def load_payload(raw: str | bytes | Mapping[str, Any], *, model: str | None = None) -> RawGraphPayload:
    """Decode and validate an LLM answer, raising ValidationFailed on any defect."""
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        fenced = _FENCE_RE.match(text.strip())
        if fenced:
            text = fenced.group(1)
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as exc:
            raise ValidationFailed("Response is not valid JSON", model=model, issues=[str(exc)]) from exc
    if not isinstance(data, Mapping):
        raise ValidationFailed("Response must be a JSON object", model=model, issues=[type(data).__name__])
    try:
        payload = RawGraphPayload.model_validate(data)
    except ValidationError as exc:
        issues = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
        raise ValidationFailed("Response does not match the graph schema", model=model, issues=issues) from exc

    seen: set[str] = set()
    duplicates: set[str] = set()
    for node in payload.nodes:
        if node.id in seen:
            duplicates.add(node.id)
        seen.add(node.id)
    if duplicates:
        raise ValidationFailed("Duplicate node ids in response", model=model, issues=sorted(duplicates))
    return payload


def to_candidates(payload: RawGraphPayload, chunk_index: int) -> tuple[list[CandidateNode], list[CandidateEdge]]:
    nodes = [
        CandidateNode(
            local_id=node.id,
            title=node.title,
            summary=node.summary or node.description,
            description=node.description,
            node_type=node.node_type,
            confidence=_confidence(node),
            document_refs=[DocumentRef(start=ref.start, end=ref.end, text=ref.text) for ref in node.metadata.document_refs],
            chunk_index=chunk_index,
        )
        for node in payload.nodes
    ]
    edges = [
        CandidateEdge(
            source=edge.source,
            target=edge.target,
            relationship=(edge.relationship or "").strip() or DEFAULT_RELATIONSHIP,
            strength=edge.metadata.strength,
            chunk_index=chunk_index,
        )
        for edge in payload.edges
    ]
    return nodes, edges


def _confidence(node: RawNode) -> float:
    if node.confidence is not None:
        return node.confidence
    if node.metadata.confidence is not None:
        return node.metadata.confidence
    return DEFAULT_CONFIDENCE


__all__ = ["RawGraphPayload", "load_payload", "to_candidates"]
