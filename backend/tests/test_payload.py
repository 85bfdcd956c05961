"""Tests for LLM payload validation."""

import pytest

from docgraph.core.errors import ValidationFailed
from docgraph.synthesis.payload import load_payload, to_candidates

RAW = """```json
{
  "nodes": [
    {
      "id": "A",
      "title": " Photosynthesis ",
      "description": "How plants make sugar.",
      "nodeType": "process",
      "metadata": {"confidence": 0.95, "documentRefs": [{"start": 10, "end": 40, "text": "plants make sugar"}]}
    },
    {"id": 2, "title": "Chlorophyll", "summary": "Green pigment."}
  ],
  "edges": [
    {"fromNodeId": "A", "toNodeId": 2, "relationship": "requires", "metadata": {"strength": 0.7}},
    {"fromNodeId": 2, "toNodeId": "A", "relationship": "  "}
  ],
  "quality": 88
}
```"""


def test_load_payload_accepts_fenced_json() -> None:
    payload = load_payload(RAW, model="claude-sonnet-4")
    assert [node.id for node in payload.nodes] == ["A", "2"]
    assert payload.nodes[0].title == "Photosynthesis"
    assert payload.edges[0].source == "A"
    assert payload.edges[0].target == "2"
    assert payload.quality == 88


def test_to_candidates_applies_defaults() -> None:
    nodes, edges = to_candidates(load_payload(RAW), chunk_index=3)
    photosynthesis, chlorophyll = nodes
    assert photosynthesis.summary == "How plants make sugar."
    assert photosynthesis.node_type == "process"
    assert photosynthesis.confidence == 0.95
    assert photosynthesis.document_refs[0].start == 10
    assert chlorophyll.summary == "Green pigment."
    assert chlorophyll.confidence == 0.8
    assert all(node.chunk_index == 3 for node in nodes)
    assert edges[0].strength == 0.7
    assert edges[1].relationship == "relates to"


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[1, 2, 3]",
        '{"nodes": []}',
        '{"nodes": [{"id": "A", "title": "   "}]}',
        '{"nodes": [{"id": "A", "title": "X", "confidence": 1.5}]}',
        '{"nodes": [{"id": "A", "title": "X"}], "edges": [{"fromNodeId": "A"}]}',
    ],
)
def test_malformed_payloads_rejected(raw: str) -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        load_payload(raw, model="claude-haiku")
    assert excinfo.value.model == "claude-haiku"


def test_duplicate_node_ids_rejected() -> None:
    raw = '{"nodes": [{"id": "A", "title": "X"}, {"id": "A", "title": "Y"}]}'
    with pytest.raises(ValidationFailed) as excinfo:
        load_payload(raw)
    assert excinfo.value.issues == ["A"]
