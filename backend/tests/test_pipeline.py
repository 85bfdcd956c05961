"""Tests for the graph generation pipeline."""

from __future__ import annotations

import pytest

from docgraph.core.config import CostLimits, RetryPolicy, Settings
from docgraph.core.errors import (
    BudgetExceeded,
    DocumentNotFound,
    DocumentNotReady,
    GenerationCancelled,
    ServiceUnavailable,
    TotalFailure,
    ValidationFailed,
)
from docgraph.cost.budget import BudgetGuard
from docgraph.cost.usage_store import InMemoryUsageStore
from docgraph.db.documents import InMemoryDocumentStore
from docgraph.db.graphs import SQLiteGraphRepository
from docgraph.db.sqlite import MEMORY, SQLiteDatabase
from docgraph.pipeline.orchestrator import CancellationToken, GraphPipeline, RunState
from docgraph.synthesis.synthesizer import GraphSynthesizer
from docgraph.utils.time import utc_now


@pytest.fixture
def settings(small_chunking) -> Settings:
    return Settings(chunking=small_chunking, retry=RetryPolicy(jitter=0))


@pytest.fixture
def store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def build(settings, store, documents):
    synthesizers: list[GraphSynthesizer] = []

    def _build(adapter, graphs=None, limits: CostLimits | None = None) -> GraphPipeline:
        synthesizer = GraphSynthesizer(
            adapter,
            retry=settings.retry,
            synthesis=settings.synthesis,
            models=settings.models,
            sleep=lambda seconds: None,
        )
        synthesizers.append(synthesizer)
        budget = BudgetGuard(store, limits=limits or settings.limits)
        return GraphPipeline(settings, synthesizer, budget, documents=documents, graphs=graphs)

    yield _build
    for synthesizer in synthesizers:
        synthesizer.close()


def _unavailable() -> ServiceUnavailable:
    return ServiceUnavailable("upstream 503")


def test_partial_failure_still_returns_graph(sample_text, build, store, scripted_adapter) -> None:
    adapter = scripted_adapter({1: [_unavailable()] * 4})
    pipeline = build(adapter)
    result = pipeline.generate_from_text(sample_text, "u1", title="Plants")

    stats = result.statistics
    assert result.is_partial
    assert stats.chunks_processed == 2
    assert stats.chunks_failed == 1
    assert any(warning.startswith("Chunk 1 ") for warning in stats.warnings)
    assert result.metadata.warnings == stats.warnings
    assert result.metadata.fallback_used is False
    assert result.metadata.model == "claude-sonnet-4"

    titles = {node.title for node in result.nodes}
    assert titles == {"Light reactions", "Photosynthesis", "Stomata"}
    assert stats.merged_nodes == 1
    assert stats.total_nodes == 3
    assert stats.total_edges == 2
    assert stats.total_cost == pytest.approx(2 * 0.0105)
    assert stats.quality_score == pytest.approx(85.0)
    assert result.mermaid_code.startswith("flowchart TD")

    records = store.records("u1")
    assert len(records) == 3
    assert [record.success for record in records] == [True, False, True]
    assert records[1].attempts == 4
    assert records[1].cost == 0
    assert all(record.graph_id == result.graph_id for record in records)
    assert pipeline.budget.outstanding_reservations() == 0


def test_fallback_used_reflects_surviving_chunks(sample_text, build, scripted_adapter) -> None:
    adapter = scripted_adapter({0: [ValidationFailed("truncated JSON")]})
    result = build(adapter).generate_from_text(sample_text, "u1")
    assert not result.is_partial
    assert result.metadata.fallback_used is True
    assert result.metadata.model == "claude-sonnet-4"


def test_total_failure(sample_text, build, scripted_adapter) -> None:
    adapter = scripted_adapter({index: [_unavailable()] * 4 for index in range(3)})
    pipeline = build(adapter)
    with pytest.raises(TotalFailure) as excinfo:
        pipeline.generate_from_text(sample_text, "u1")
    assert len([warning for warning in excinfo.value.warnings if "failed after 4 attempts" in warning]) == 3
    assert pipeline.budget.outstanding_reservations() == 0


def test_preflight_budget_denial_spends_nothing(sample_text, build, store, scripted_adapter) -> None:
    store.seed("u1", utc_now(), today=9.99)
    adapter = scripted_adapter()
    with pytest.raises(BudgetExceeded) as excinfo:
        build(adapter).generate_from_text(sample_text, "u1")
    assert excinfo.value.result.reason == "daily-limit-exceeded"
    assert adapter.calls == []
    assert store.records("u1") == []


def test_chunks_denied_mid_run_are_skipped(sample_text, build, store, scripted_adapter) -> None:
    adapter = scripted_adapter()
    pipeline = build(adapter)

    def on_progress(event) -> None:
        # another client spends the rest of today's budget once chunk 0 is recorded
        if event.stage is RunState.PER_CHUNK_SYNTHESIS and event.chunks_processed == 1:
            store.seed("u1", utc_now(), today=10.0)

    result = pipeline.generate_from_text(sample_text, "u1", progress=on_progress)

    assert [index for index, _ in adapter.calls] == [0]
    assert result.is_partial
    assert result.statistics.chunks_processed == 1
    assert result.statistics.chunks_failed == 2
    assert "Chunk 1 skipped: daily-limit-exceeded" in result.statistics.warnings
    assert "Chunk 2 skipped: daily-limit-exceeded" in result.statistics.warnings
    assert "Graph has too few nodes (2 < 3)" in result.statistics.warnings
    assert {node.title for node in result.nodes} == {"Light reactions", "Photosynthesis"}
    assert len(store.records("u1")) == 1
    assert pipeline.budget.outstanding_reservations() == 0


def test_preflight_hold_covers_the_run(sample_text, build, scripted_adapter) -> None:
    adapter = scripted_adapter()
    pipeline = build(adapter)
    held = []

    def on_progress(event) -> None:
        if event.stage is RunState.PER_CHUNK_SYNTHESIS:
            held.append(pipeline.budget.outstanding_reservations("u1"))

    pipeline.generate_from_text(sample_text, "u1", progress=on_progress)
    # the whole-document estimate is held from the start and shrinks as chunks settle
    assert held[0] > 0
    assert held == sorted(held, reverse=True)
    assert pipeline.budget.outstanding_reservations() == 0


def test_cancel_before_start(sample_text, build, scripted_adapter) -> None:
    adapter = scripted_adapter()
    token = CancellationToken()
    token.cancel()
    with pytest.raises(GenerationCancelled):
        build(adapter).generate_from_text(sample_text, "u1", cancel_token=token)
    assert adapter.calls == []


def test_cancel_between_chunks(sample_text, build, scripted_adapter) -> None:
    adapter = scripted_adapter()
    token = CancellationToken()
    pipeline = build(adapter)

    def on_progress(event) -> None:
        if event.chunks_processed >= 1:
            token.cancel()

    with pytest.raises(GenerationCancelled):
        pipeline.generate_from_text(sample_text, "u1", cancel_token=token, progress=on_progress)
    assert [index for index, _ in adapter.calls] == [0]
    assert pipeline.budget.outstanding_reservations() == 0


def test_progress_reports_stages(sample_text, build, scripted_adapter) -> None:
    events = []
    build(scripted_adapter()).generate_from_text(sample_text, "u1", progress=events.append)
    stages = [event.stage for event in events]
    assert stages[0] is RunState.PENDING
    assert stages[-3:] == [RunState.MERGING, RunState.VALIDATING, RunState.COMPLETED]
    assert events[-1].percent == 100.0
    synthesis = [event for event in events if event.stage is RunState.PER_CHUNK_SYNTHESIS]
    assert [event.chunks_processed for event in synthesis] == [0, 1, 2, 3]
    assert synthesis[-1].percent == 90.0


def test_max_nodes_prunes(sample_text, build, scripted_adapter) -> None:
    result = build(scripted_adapter()).generate_from_text(sample_text, "u1", max_nodes=2)
    assert len(result.nodes) == 2
    assert any(warning.startswith("Pruned 2 low-confidence nodes") for warning in result.statistics.warnings)
    node_ids = {node.id for node in result.nodes}
    assert all(edge.source in node_ids and edge.target in node_ids for edge in result.edges)


def test_generate_reads_document_store(sample_text, build, documents, scripted_adapter) -> None:
    record = documents.add(sample_text, title="Plant biology")
    result = build(scripted_adapter()).generate(record.id, "u1")
    assert result.document_id == record.id
    assert result.title == "Plant biology"


def test_document_must_be_ready(sample_text, build, documents, scripted_adapter) -> None:
    record = documents.add(sample_text, status="processing")
    adapter = scripted_adapter()
    with pytest.raises(DocumentNotReady):
        build(adapter).generate(record.id, "u1")
    with pytest.raises(DocumentNotFound):
        build(adapter).generate("doc_missing", "u1")
    assert adapter.calls == []


def test_graph_saved_to_repository(sample_text, build, scripted_adapter) -> None:
    db = SQLiteDatabase(MEMORY)
    db.ensure_schema()
    repository = SQLiteGraphRepository(db)
    result = build(scripted_adapter(), graphs=repository).generate_from_text(sample_text, "u1")

    stored = repository.load(result.graph_id)
    assert stored is not None
    assert [node["id"] for node in stored["nodes"]] == [node.id for node in result.nodes]
    assert [edge["id"] for edge in stored["edges"]] == [edge.id for edge in result.edges]
    assert stored["mermaid_code"] == result.mermaid_code
    assert stored["statistics"]["total_nodes"] == len(result.nodes)
    db.close()
