"""Graph generation run orchestration."""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from docgraph.chunking.chunker import chunk_text
from docgraph.chunking.types import TextChunk
from docgraph.core.config import Settings
from docgraph.core.errors import BudgetExceeded, DocumentNotReady, GenerationCancelled, TotalFailure
from docgraph.core.logging import ctx, get_logger
from docgraph.core.metrics import GENERATION_DURATION
from docgraph.cost.budget import BudgetGuard
from docgraph.cost.types import BudgetCheckRequest, CostEstimateInput, UsageRecord
from docgraph.db.documents import DocumentStore
from docgraph.db.graphs import GraphRepository
from docgraph.synthesis.merge import aggregate_quality, merge_fragments
from docgraph.synthesis.similarity import SimilarityScorer, get_scorer
from docgraph.synthesis.synthesizer import GraphSynthesizer
from docgraph.synthesis.types import ChunkOutcome, GraphMetadata, GraphResult, GraphStatistics
from docgraph.synthesis.validate import validate_graph
from docgraph.utils.ids import new_id

logger = get_logger(__name__)

OPERATION = "graph-generation"


class RunState(str, Enum):
    PENDING = "pending"
    CHUNKING = "chunking"
    PER_CHUNK_SYNTHESIS = "per_chunk_synthesis"
    MERGING = "merging"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    graph_id: str
    stage: RunState
    chunks_processed: int = 0
    total_chunks: int = 0
    percent: float = 0.0


ProgressCallback = Callable[[ProgressEvent], None]


class CancellationToken:
    """Cooperative cancellation, honored before each chunk's LLM call."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Graph generation was cancelled")


class _Run:
    """Mutable bookkeeping for one generation; shared with synthesis workers."""

    def __init__(self, graph_id: str, progress: ProgressCallback | None) -> None:
        self.graph_id = graph_id
        self.state = RunState.PENDING
        self.total_chunks = 0
        self.processed = 0
        self.warnings: list[str] = []
        self.records: list[UsageRecord] = []
        self.reservations: dict[int, str] = {}
        self.preflight_reservation: str | None = None
        self.lock = threading.Lock()
        self._progress = progress

    def enter(self, state: RunState) -> None:
        logger.debug("Run state change", extra=ctx(graph_id=self.graph_id, old=self.state.value, new=state.value))
        self.state = state
        self.notify()

    def notify(self) -> None:
        if self._progress is None:
            return
        self._progress(
            ProgressEvent(
                graph_id=self.graph_id,
                stage=self.state,
                chunks_processed=self.processed,
                total_chunks=self.total_chunks,
                percent=self.percent(),
            )
        )

    def percent(self) -> float:
        if self.state is RunState.PER_CHUNK_SYNTHESIS:
            return round(10 + 80 * (self.processed / self.total_chunks if self.total_chunks else 0), 2)
        return {
            RunState.PENDING: 0.0,
            RunState.CHUNKING: 5.0,
            RunState.MERGING: 90.0,
            RunState.VALIDATING: 95.0,
            RunState.COMPLETED: 100.0,
        }.get(self.state, 0.0)


class GraphPipeline:
    """Chunk -> pre-flight budget check -> per-chunk synthesis -> merge -> finalize."""

    def __init__(
        self,
        settings: Settings,
        synthesizer: GraphSynthesizer,
        budget: BudgetGuard,
        *,
        documents: DocumentStore | None = None,
        graphs: GraphRepository | None = None,
        scorer: SimilarityScorer | None = None,
    ) -> None:
        self.settings = settings
        self.synthesizer = synthesizer
        self.budget = budget
        self.documents = documents
        self.graphs = graphs
        self.scorer = scorer or get_scorer(settings.synthesis.similarity)

    def generate(
        self,
        document_id: str,
        user_id: str,
        *,
        max_nodes: int | None = None,
        cancel_token: CancellationToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> GraphResult:
        if self.documents is None:
            raise RuntimeError("GraphPipeline was built without a document store")
        document = self.documents.read(document_id)
        if document.status != "ready":
            raise DocumentNotReady(
                f"Document {document_id} is not ready for processing",
                details={"document_id": document_id, "status": document.status},
            )
        return self.generate_from_text(
            document.text,
            user_id,
            title=document.title,
            document_id=document_id,
            max_nodes=max_nodes,
            cancel_token=cancel_token,
            progress=progress,
        )

    def generate_from_text(
        self,
        text: str,
        user_id: str,
        *,
        title: str | None = None,
        document_id: str | None = None,
        max_nodes: int | None = None,
        cancel_token: CancellationToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> GraphResult:
        started = time.perf_counter()
        run = _Run(new_id("graph"), progress)
        token = cancel_token or CancellationToken()
        status = "failed"
        run.notify()
        try:
            run.enter(RunState.CHUNKING)
            chunking = chunk_text(text, self.settings.chunking, title)
            chunks = chunking.chunks
            run.total_chunks = len(chunks)
            run.warnings.extend(chunking.statistics.warnings)
            title = title or chunking.document_metadata.title

            run.preflight_reservation = self._preflight(user_id, document_id, chunks)
            token.raise_if_cancelled()

            run.enter(RunState.PER_CHUNK_SYNTHESIS)
            synthesis = self.synthesizer.synthesize_all(
                chunks,
                document_title=title,
                before_chunk=lambda chunk: self._admit_chunk(run, token, chunk, user_id, document_id),
                after_chunk=lambda chunk, outcome: self._record_chunk(run, chunk, outcome, user_id, document_id),
            )
            run.warnings.extend(synthesis.warnings)
            fragments = synthesis.fragments
            if not fragments:
                raise TotalFailure("No chunk produced a usable graph fragment", warnings=run.warnings)

            run.enter(RunState.MERGING)
            node_cap = max_nodes or self.settings.synthesis.max_nodes
            merged = merge_fragments(
                fragments,
                max_nodes=node_cap,
                similarity_threshold=self.settings.synthesis.similarity_threshold,
                scorer=self.scorer,
            )
            run.warnings.extend(merged.warnings)

            run.enter(RunState.VALIDATING)
            report = validate_graph(
                merged.nodes,
                merged.edges,
                min_nodes=self.settings.synthesis.min_nodes,
                max_nodes=node_cap,
                remove_isolated=self.settings.synthesis.remove_isolated_nodes,
            )
            run.warnings.extend(report.warnings)

            models = Counter(fragment.model for fragment in fragments)
            result = GraphResult(
                graph_id=run.graph_id,
                document_id=document_id,
                title=title,
                nodes=report.nodes,
                edges=report.edges,
                mermaid_code=report.mermaid_code,
                statistics=GraphStatistics(
                    chunks_processed=len(fragments),
                    chunks_failed=len(chunks) - len(fragments),
                    total_nodes=len(report.nodes),
                    total_edges=len(report.edges),
                    merged_nodes=merged.merged_nodes,
                    duplicate_edges_removed=merged.duplicate_edges_removed,
                    quality_score=aggregate_quality(fragments),
                    total_cost=sum(record.cost for record in run.records),
                    processing_time_ms=int((time.perf_counter() - started) * 1000),
                    warnings=run.warnings,
                ),
                metadata=GraphMetadata(
                    model=models.most_common(1)[0][0],
                    fallback_used=any(fragment.fallback_used for fragment in fragments),
                    warnings=run.warnings,
                ),
            )
            if self.graphs is not None:
                self.graphs.save(result)

            status = "completed"
            run.enter(RunState.COMPLETED)
            logger.info(
                "Graph generated",
                extra=ctx(
                    graph_id=result.graph_id,
                    document_id=document_id,
                    nodes=len(result.nodes),
                    edges=len(result.edges),
                    chunks_failed=result.statistics.chunks_failed,
                    total_cost=result.statistics.total_cost,
                    processing_time_ms=result.statistics.processing_time_ms,
                ),
            )
            return result
        except GenerationCancelled:
            status = "cancelled"
            run.enter(RunState.FAILED)
            logger.info("Graph generation cancelled", extra=ctx(graph_id=run.graph_id, document_id=document_id))
            raise
        except Exception as exc:
            run.enter(RunState.FAILED)
            logger.warning(
                "Graph generation failed",
                extra=ctx(graph_id=run.graph_id, document_id=document_id, error=str(exc)),
            )
            raise
        finally:
            for reservation_id in list(run.reservations.values()):
                self.budget.release(reservation_id)
            if run.preflight_reservation is not None:
                self.budget.release(run.preflight_reservation)
            GENERATION_DURATION.labels(status=status).observe(time.perf_counter() - started)

    def _preflight(self, user_id: str, document_id: str | None, chunks: list[TextChunk]) -> str | None:
        """Hold the whole chunked document's estimate before any spend.

        Per-chunk admissions draw on this hold, so funds a concurrent caller
        could take are already set aside for the rest of the run.
        """
        request = BudgetCheckRequest(
            user_id=user_id,
            cost_input=CostEstimateInput(
                text_length=sum(len(chunk.content) for chunk in chunks),
                operation_type=OPERATION,
                model=self.synthesizer.models.default_model,
                invocations=len(chunks),
            ),
            document_id=document_id,
        )
        result = self.budget.check_budget(request)
        if not result.allowed:
            raise BudgetExceeded(result)
        return result.reservation_id

    def _admit_chunk(
        self,
        run: _Run,
        token: CancellationToken,
        chunk: TextChunk,
        user_id: str,
        document_id: str | None,
    ) -> bool:
        token.raise_if_cancelled()
        result = self.budget.check_budget(
            BudgetCheckRequest(
                user_id=user_id,
                cost_input=CostEstimateInput(
                    text_length=len(chunk.content),
                    operation_type=OPERATION,
                    model=self.synthesizer.models.default_model,
                ),
                document_id=document_id,
                draw_from=run.preflight_reservation,
            )
        )
        with run.lock:
            if not result.allowed:
                run.warnings.append(f"Chunk {chunk.chunk_index} skipped: {result.reason}")
                run.processed += 1
                return False
            if result.reservation_id is not None:
                run.reservations[chunk.chunk_index] = result.reservation_id
        return True

    def _record_chunk(
        self,
        run: _Run,
        chunk: TextChunk,
        outcome: ChunkOutcome,
        user_id: str,
        document_id: str | None,
    ) -> None:
        with run.lock:
            reservation_id = run.reservations.pop(chunk.chunk_index, None)
        record = UsageRecord(
            user_id=user_id,
            operation=OPERATION,
            model=outcome.model or self.synthesizer.models.default_model,
            tokens_used=outcome.tokens_used,
            cost=outcome.cost,
            attempts=max(1, outcome.attempts),
            success=outcome.succeeded,
            document_id=document_id,
            graph_id=run.graph_id,
            quality=outcome.fragment.quality if outcome.fragment is not None else None,
        )
        self.budget.record_usage(record, reservation_id)
        with run.lock:
            run.records.append(record)
            run.processed += 1
            run.notify()


__all__ = ["CancellationToken", "GraphPipeline", "ProgressCallback", "ProgressEvent", "RunState"]
