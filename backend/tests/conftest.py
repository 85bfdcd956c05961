"""Test fixtures for docgraph."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from docgraph.core.config import ChunkingConfig  # noqa: E402
from docgraph.cost.types import TokenUsage  # noqa: E402
from docgraph.synthesis.adapter import AdapterResponse  # noqa: E402
from docgraph.synthesis.types import CandidateEdge, CandidateNode  # noqa: E402

TOPICS = ["Light reactions", "Calvin cycle", "Stomata", "Chloroplast", "Glucose"]


class ScriptedAdapter:
    """LLM adapter double.

    ``script`` maps a chunk index to the exceptions to raise on successive
    calls; once a chunk's script is exhausted the call succeeds with a small
    fragment (the chunk's topic plus a shared "Photosynthesis" node).
    """

    def __init__(self, script: dict[int, list[Exception]] | None = None) -> None:
        self._script = {index: list(steps) for index, steps in (script or {}).items()}
        self._lock = threading.Lock()
        self.calls: list[tuple[int, str]] = []
        self.contexts = []

    def generate(self, context, model: str, max_output_tokens: int) -> AdapterResponse:
        with self._lock:
            self.calls.append((context.chunk_index, model))
            self.contexts.append(context)
            steps = self._script.get(context.chunk_index)
            step = steps.pop(0) if steps else None
        if step is not None:
            raise step
        return fragment_response(context.chunk_index, model)


def fragment_response(chunk_index: int, model: str) -> AdapterResponse:
    topic = TOPICS[chunk_index % len(TOPICS)]
    return AdapterResponse(
        nodes=[
            CandidateNode(local_id="A", title=topic, confidence=0.9, chunk_index=chunk_index),
            CandidateNode(local_id="B", title="Photosynthesis", confidence=0.8, chunk_index=chunk_index),
        ],
        edges=[CandidateEdge(source="A", target="B", relationship="supports", chunk_index=chunk_index)],
        tokens_used=TokenUsage(input=1000, output=500),
        model=model,
    )


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("DOCG_DB_PATH", str(tmp_path / "docgraph.db"))
    monkeypatch.delenv("DOCG_CONFIG", raising=False)

    from docgraph.api import dependencies as deps

    deps.reset()
    yield
    deps.reset()


@pytest.fixture(scope="session")
def sample_text() -> str:
    paragraph = ("Plants turn light into sugar. " * 14).strip()
    return "\n\n".join([paragraph] * 6)


@pytest.fixture
def small_chunking() -> ChunkingConfig:
    return ChunkingConfig(max_chunk_size=1000, overlap_size=100, min_chunk_size=200)


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter
