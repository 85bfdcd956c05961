"""Per-chunk graph extraction with retry, backoff and model fallback."""

from __future__ import annotations

import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from docgraph.chunking.types import TextChunk
from docgraph.core.config import DEFAULT_MODEL_PRICING, ModelPricing, ModelsConfig, RetryPolicy, SynthesisConfig
from docgraph.core.logging import ctx, get_logger
from docgraph.core.metrics import CHUNKS_SYNTHESIZED, FALLBACKS, SYNTHESIS_ATTEMPTS
from docgraph.cost.estimator import calculate_cost
from docgraph.synthesis.adapter import (
    AdapterOutcome,
    AdapterResponse,
    LLMAdapter,
    ServiceError,
    Success,
    ValidationError,
    invoke_adapter,
)
from docgraph.synthesis.prompts import PromptContext
from docgraph.synthesis.types import ChunkFragment, ChunkOutcome, ChunkState
from docgraph.utils.text import normalize_title

logger = get_logger(__name__)

BeforeChunk = Callable[[TextChunk], bool]
AfterChunk = Callable[[TextChunk, ChunkOutcome], None]


@dataclass(frozen=True, slots=True)
class EntityAccumulator:
    """Titles discovered so far, fed into later prompts for consistent naming."""

    titles: tuple[str, ...] = ()
    limit: int = 40

    def with_fragment(self, fragment: ChunkFragment) -> "EntityAccumulator":
        titles = list(self.titles)
        seen = {normalize_title(title) for title in titles}
        for node in fragment.nodes:
            if len(titles) >= self.limit:
                break
            key = normalize_title(node.title)
            if key not in seen:
                seen.add(key)
                titles.append(node.title)
        return EntityAccumulator(titles=tuple(titles), limit=self.limit)


@dataclass(slots=True)
class SynthesisRun:
    outcomes: list[ChunkOutcome]
    warnings: list[str] = field(default_factory=list)
    accumulator: EntityAccumulator = field(default_factory=EntityAccumulator)

    @property
    def fragments(self) -> list[ChunkFragment]:
        return [outcome.fragment for outcome in self.outcomes if outcome.fragment is not None]

    @property
    def failed(self) -> list[ChunkOutcome]:
        return [outcome for outcome in self.outcomes if outcome.state is ChunkState.CHUNK_FAILED]


class GraphSynthesizer:
    """Runs the ATTEMPTING -> ... -> SUCCEEDED | CHUNK_FAILED machine for each chunk.

    With ``cross_chunk_context`` enabled chunks are processed strictly in index
    order as a fold carrying an :class:`EntityAccumulator`. Otherwise, and only
    when ``max_workers > 1``, chunks run on a bounded worker pool and entity
    consistency is left to the merge.
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        *,
        retry: RetryPolicy | None = None,
        synthesis: SynthesisConfig | None = None,
        models: ModelsConfig | None = None,
        pricing: Mapping[str, ModelPricing] = DEFAULT_MODEL_PRICING,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.adapter = adapter
        self.retry = retry or RetryPolicy()
        self.synthesis = synthesis or SynthesisConfig()
        self.models = models or ModelsConfig()
        self.pricing = pricing
        self._sleep = sleep
        self._rng = rng or random.Random()
        # timed-out calls keep their thread until they return, so leave headroom
        self._attempt_pool = ThreadPoolExecutor(
            max_workers=max(4, self.synthesis.max_workers * 2),
            thread_name_prefix="docgraph-llm",
        )

    def close(self) -> None:
        self._attempt_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "GraphSynthesizer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def parallel(self) -> bool:
        return not self.synthesis.cross_chunk_context and self.synthesis.max_workers > 1

    def synthesize_all(
        self,
        chunks: Sequence[TextChunk],
        *,
        document_title: str | None = None,
        before_chunk: BeforeChunk | None = None,
        after_chunk: AfterChunk | None = None,
    ) -> SynthesisRun:
        """Synthesize every chunk; failures become warnings, never exceptions.

        ``before_chunk`` is called right before a chunk's first LLM call and
        may veto the chunk (return False) or abort the run by raising.
        ``after_chunk`` observes each finished chunk, e.g. to record usage.
        """
        if self.parallel:
            run = self._run_parallel(chunks, document_title, before_chunk, after_chunk)
        else:
            run = self._fold(chunks, document_title, before_chunk, after_chunk)
        for outcome in run.failed:
            run.warnings.append(
                f"Chunk {outcome.chunk_index} (#{outcome.chunk_index + 1} of {len(chunks)}) failed "
                f"after {outcome.attempts} attempts: {outcome.error}"
            )
        return run

    def _fold(
        self,
        chunks: Sequence[TextChunk],
        document_title: str | None,
        before_chunk: BeforeChunk | None,
        after_chunk: AfterChunk | None,
    ) -> SynthesisRun:
        limit = self.synthesis.max_context_entities if self.synthesis.cross_chunk_context else 0
        accumulator = EntityAccumulator(limit=limit)
        outcomes: list[ChunkOutcome] = []
        for chunk in chunks:
            outcome = self._process(chunk, document_title, accumulator.titles, before_chunk, after_chunk)
            outcomes.append(outcome)
            if outcome.fragment is not None and self.synthesis.cross_chunk_context:
                accumulator = accumulator.with_fragment(outcome.fragment)
        return SynthesisRun(outcomes=outcomes, accumulator=accumulator)

    def _run_parallel(
        self,
        chunks: Sequence[TextChunk],
        document_title: str | None,
        before_chunk: BeforeChunk | None,
        after_chunk: AfterChunk | None,
    ) -> SynthesisRun:
        outcomes: list[ChunkOutcome] = []
        with ThreadPoolExecutor(
            max_workers=self.synthesis.max_workers, thread_name_prefix="docgraph-chunk"
        ) as pool:
            futures = [
                pool.submit(self._process, chunk, document_title, (), before_chunk, after_chunk) for chunk in chunks
            ]
            try:
                for future in futures:
                    outcomes.append(future.result())
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return SynthesisRun(outcomes=outcomes)

    def _process(
        self,
        chunk: TextChunk,
        document_title: str | None,
        known_entities: tuple[str, ...],
        before_chunk: BeforeChunk | None,
        after_chunk: AfterChunk | None,
    ) -> ChunkOutcome:
        if before_chunk is not None and not before_chunk(chunk):
            outcome = ChunkOutcome(chunk_index=chunk.chunk_index, state=ChunkState.SKIPPED)
            CHUNKS_SYNTHESIZED.labels(status=outcome.state.value).inc()
            return outcome
        outcome = self.synthesize_chunk(chunk, document_title=document_title, known_entities=known_entities)
        if after_chunk is not None:
            after_chunk(chunk, outcome)
        return outcome

    def synthesize_chunk(
        self,
        chunk: TextChunk,
        *,
        document_title: str | None = None,
        known_entities: tuple[str, ...] = (),
    ) -> ChunkOutcome:
        context = PromptContext(
            chunk_text=chunk.content,
            chunk_index=chunk.chunk_index,
            total_chunks=chunk.total_chunks,
            document_title=document_title,
            known_entities=known_entities,
            max_nodes=self.synthesis.max_nodes_per_chunk,
            chunk_offset=chunk.start_index,
        )
        primary = self.models.default_model
        fallback = self.models.fallback_model
        has_fallback = bool(fallback) and fallback != primary

        state = ChunkState.ATTEMPTING
        primary_attempts = 0
        attempts = 0
        last_error: str | None = None
        retry_after: float | None = None
        while True:
            if state is ChunkState.ATTEMPTING:
                primary_attempts += 1
                attempts += 1
                outcome = self._attempt(context, primary)
                if isinstance(outcome, Success):
                    return self._succeeded(chunk, outcome.response, primary, attempts, fallback_used=False)
                last_error = outcome.error.message
                if isinstance(outcome, ValidationError):
                    # malformed output will not improve by asking the same model again
                    state = ChunkState.FALLBACK_ATTEMPTING if has_fallback else ChunkState.CHUNK_FAILED
                else:
                    retry_after = outcome.error.retry_after
                    state = ChunkState.ATTEMPT_FAILED
            elif state is ChunkState.ATTEMPT_FAILED:
                if primary_attempts < self.retry.max_attempts:
                    self._sleep(self.backoff_delay(primary_attempts, retry_after))
                    state = ChunkState.ATTEMPTING
                else:
                    state = ChunkState.FALLBACK_ATTEMPTING if has_fallback else ChunkState.CHUNK_FAILED
            elif state is ChunkState.FALLBACK_ATTEMPTING:
                attempts += 1
                FALLBACKS.inc()
                logger.info(
                    "Escalating chunk to fallback model",
                    extra=ctx(chunk=chunk.chunk_index, primary=primary, fallback=fallback, error=last_error),
                )
                outcome = self._attempt(context, fallback)
                if isinstance(outcome, Success):
                    return self._succeeded(chunk, outcome.response, fallback, attempts, fallback_used=True)
                last_error = outcome.error.message
                state = ChunkState.CHUNK_FAILED
            else:
                CHUNKS_SYNTHESIZED.labels(status=ChunkState.CHUNK_FAILED.value).inc()
                logger.warning(
                    "Chunk synthesis failed",
                    extra=ctx(chunk=chunk.chunk_index, attempts=attempts, error=last_error),
                )
                return ChunkOutcome(
                    chunk_index=chunk.chunk_index,
                    state=ChunkState.CHUNK_FAILED,
                    attempts=attempts,
                    model=fallback if has_fallback else primary,
                    fallback_used=has_fallback,
                    error=last_error,
                )

    def backoff_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Exponential delay after the ``attempt``-th failure, capped and jittered."""
        delay = min(self.retry.max_delay_seconds, self.retry.base_delay_seconds * (2 ** (attempt - 1)))
        if self.retry.jitter > 0:
            delay *= 1 + self._rng.uniform(-self.retry.jitter, self.retry.jitter)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.retry.max_delay_seconds))
        return max(0.0, delay)

    def _attempt(self, context: PromptContext, model: str) -> AdapterOutcome:
        outcome = invoke_adapter(
            self.adapter,
            context,
            model,
            self.synthesis.max_output_tokens,
            executor=self._attempt_pool,
            timeout=self.retry.attempt_timeout_seconds,
        )
        if isinstance(outcome, Success):
            label = "success"
        elif isinstance(outcome, ServiceError):
            label = "timeout" if outcome.timed_out else "service_error"
        elif isinstance(outcome, ValidationError):
            label = "validation_error"
        else:  # pragma: no cover
            raise TypeError(f"Unexpected adapter outcome: {outcome!r}")
        SYNTHESIS_ATTEMPTS.labels(model=model, outcome=label).inc()
        if not isinstance(outcome, Success):
            logger.info(
                "Synthesis attempt failed",
                extra=ctx(chunk=context.chunk_index, model=model, outcome=label, error=outcome.error.message),
            )
        return outcome

    def _succeeded(
        self,
        chunk: TextChunk,
        response: AdapterResponse,
        model: str,
        attempts: int,
        *,
        fallback_used: bool,
    ) -> ChunkOutcome:
        """Build the outcome for a successful call to ``model``.

        Providers often answer with a versioned id (``anthropic/claude-sonnet-4-20250514``);
        cost and ledger entries use the configured name that was requested.
        """
        quality = response.quality
        if quality is None and response.nodes:
            quality = sum(node.confidence for node in response.nodes) / len(response.nodes) * 100
        fragment = ChunkFragment(
            chunk_index=chunk.chunk_index,
            nodes=response.nodes,
            edges=response.edges,
            model=model,
            fallback_used=fallback_used,
            quality=quality,
        )
        CHUNKS_SYNTHESIZED.labels(status=ChunkState.SUCCEEDED.value).inc()
        logger.info(
            "Chunk synthesized",
            extra=ctx(
                chunk=chunk.chunk_index,
                model=model,
                reported_model=response.model,
                attempts=attempts,
                nodes=len(response.nodes),
                edges=len(response.edges),
                fallback_used=fallback_used,
            ),
        )
        return ChunkOutcome(
            chunk_index=chunk.chunk_index,
            state=ChunkState.SUCCEEDED,
            fragment=fragment,
            attempts=attempts,
            model=model,
            tokens_used=response.tokens_used,
            cost=calculate_cost(response.tokens_used, model, self.pricing),
            fallback_used=fallback_used,
        )


__all__ = ["EntityAccumulator", "GraphSynthesizer", "SynthesisRun"]
