"""Prompt rendering for per-chunk graph extraction."""

from __future__ import annotations

from dataclasses import dataclass, field

SYSTEM_PROMPT = (
    "You are an expert knowledge graph architect. You extract key concepts and their relationships "
    "from documents to build clear, learner-friendly knowledge graphs. Only use concepts that the "
    "source text explicitly discusses, and answer with a single JSON object."
)

RELATIONSHIP_TYPES = (
    "is-a",
    "part-of",
    "has-component",
    "instance-of",
    "enables",
    "requires",
    "produces",
    "consumes",
    "supports",
    "implements",
    "precedes",
    "triggers",
    "leads to",
    "contradicts",
    "strengthens",
)

OUTPUT_SCHEMA = """{
  "nodes": [
    {
      "id": "A",
      "title": "Concept name",
      "description": "1-2 sentence description from the document",
      "summary": "2 sentence contextual summary",
      "nodeType": "concept",
      "confidence": 0.9,
      "metadata": {"documentRefs": [{"start": 150, "end": 320, "text": "verbatim quote"}]}
    }
  ],
  "edges": [
    {"fromNodeId": "A", "toNodeId": "B", "relationship": "enables", "metadata": {"strength": 0.9}}
  ]
}"""


@dataclass(frozen=True, slots=True)
class PromptContext:
    """Everything the adapter needs to extract one chunk's fragment."""

    chunk_text: str
    chunk_index: int
    total_chunks: int
    document_title: str | None = None
    known_entities: tuple[str, ...] = field(default_factory=tuple)
    max_nodes: int = 10
    chunk_offset: int = 0


def render_user_prompt(context: PromptContext) -> str:
    parts = [
        "# Task: Extract a knowledge graph fragment",
        "",
        f"Document: {context.document_title or 'Untitled'}",
        f"Section {context.chunk_index + 1} of {context.total_chunks} "
        f"(character offset {context.chunk_offset}).",
        "",
        "## Content",
        context.chunk_text,
        "",
        "## Requirements",
        f"- Extract at most {context.max_nodes} of the most important concepts in this section.",
        "- Every concept must be explicitly mentioned in the content above.",
        "- Give each node at least one documentRef quoting the content verbatim; "
        "positions are relative to the document, starting at the section offset.",
        f"- Use specific relationship types such as: {', '.join(RELATIONSHIP_TYPES)}.",
        "- Avoid vague relationships like 'relates to' or 'associated with'.",
        "- Every fromNodeId/toNodeId must reference a node id in this answer.",
    ]
    if context.known_entities:
        parts += [
            "",
            "## Concepts already extracted from earlier sections",
            "Reuse these exact titles when the same concept appears here:",
            *(f"- {title}" for title in context.known_entities),
        ]
    parts += [
        "",
        "## Output format",
        "Return ONLY a JSON object with this structure:",
        OUTPUT_SCHEMA,
    ]
    return "\n".join(parts)


def build_messages(context: PromptContext) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": render_user_prompt(context)},
    ]


__all__ = ["PromptContext", "SYSTEM_PROMPT", "build_messages", "render_user_prompt"]
