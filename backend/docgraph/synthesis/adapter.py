"""LLM adapter contract and the OpenAI-compatible implementation."""

from __future__ import annotations

from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Protocol, Union

from docgraph.core.config import LLMConfig, ModelsConfig
from docgraph.core.errors import ServiceUnavailable, ValidationFailed
from docgraph.core.logging import ctx, get_logger
from docgraph.cost.types import TokenUsage
from docgraph.synthesis.payload import load_payload, to_candidates
from docgraph.synthesis.prompts import PromptContext, build_messages
from docgraph.synthesis.types import CandidateEdge, CandidateNode

logger = get_logger(__name__)

_RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}


@dataclass(slots=True)
class AdapterResponse:
    nodes: list[CandidateNode]
    edges: list[CandidateEdge]
    tokens_used: TokenUsage
    model: str
    quality: float | None = None


class LLMAdapter(Protocol):
    def generate(self, context: PromptContext, model: str, max_output_tokens: int) -> AdapterResponse:
        """Extract one chunk's fragment.

        Raises ServiceUnavailable for transient failures and ValidationFailed
        for malformed answers.
        """
        ...


@dataclass(frozen=True, slots=True)
class Success:
    response: AdapterResponse


@dataclass(frozen=True, slots=True)
class ServiceError:
    error: ServiceUnavailable
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class ValidationError:
    error: ValidationFailed


AdapterOutcome = Union[Success, ServiceError, ValidationError]


def invoke_adapter(
    adapter: LLMAdapter,
    context: PromptContext,
    model: str,
    max_output_tokens: int,
    *,
    executor: Executor,
    timeout: float | None,
) -> AdapterOutcome:
    """Run one attempt on ``executor`` and classify its result.

    A call still running after ``timeout`` seconds counts as a failed attempt;
    its eventual result is discarded.
    """
    future = executor.submit(adapter.generate, context, model, max_output_tokens)
    try:
        return Success(future.result(timeout=timeout))
    except FutureTimeout:
        future.cancel()
        return ServiceError(
            ServiceUnavailable(f"Attempt timed out after {timeout}s", model=model),
            timed_out=True,
        )
    except ServiceUnavailable as exc:
        return ServiceError(exc)
    except ValidationFailed as exc:
        return ValidationError(exc)
    except Exception as exc:
        logger.exception("Adapter raised an unexpected error", extra=ctx(model=model, chunk=context.chunk_index))
        return ServiceError(ServiceUnavailable(f"Adapter error: {exc}", model=model))


def _build_default_client(settings: LLMConfig) -> Any:
    from openai import OpenAI

    # retries belong to the synthesizer, not the SDK
    return OpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.request_timeout_seconds,
        max_retries=0,
    )


def _is_retryable(exc: Exception) -> bool:
    status_code = getattr(exc, "status_code", None)
    if status_code in _RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return type(exc).__name__ in {
        "RateLimitError",
        "APITimeoutError",
        "APIConnectionError",
        "InternalServerError",
    }


def _retry_after(exc: Exception) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _message_text(response: Any, model: str) -> str:
    choices = getattr(response, "choices", None)
    if not isinstance(choices, list) or not choices:
        raise ValidationFailed("Completion response missing choices", model=model)
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if isinstance(content, list):
        content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
    text = str(content or "").strip()
    if not text:
        raise ValidationFailed("Completion response returned empty text", model=model)
    return text


class OpenAIChatAdapter:
    """Chat-completions adapter for any OpenAI-compatible endpoint (OpenRouter by default)."""

    def __init__(self, settings: LLMConfig, models: ModelsConfig | None = None, *, client: Any | None = None) -> None:
        self._settings = settings
        self._models = models or ModelsConfig()
        self._client = client or _build_default_client(settings)

    def provider_id(self, model: str) -> str:
        return self._models.provider_ids.get(model, model)

    def generate(self, context: PromptContext, model: str, max_output_tokens: int) -> AdapterResponse:
        try:
            response = self._client.chat.completions.create(
                model=self.provider_id(model),
                messages=build_messages(context),
                temperature=self._settings.temperature,
                max_tokens=max_output_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            # anything the SDK raises is a failed call; only some are worth retrying soon
            retryable = _is_retryable(exc)
            logger.warning(
                "LLM request failed",
                extra=ctx(model=model, chunk=context.chunk_index, retryable=retryable, error=str(exc)),
            )
            raise ServiceUnavailable(
                f"LLM request failed: {exc}",
                model=model,
                retry_after=_retry_after(exc),
            ) from exc

        payload = load_payload(_message_text(response, model), model=model)
        nodes, edges = to_candidates(payload, context.chunk_index)
        usage = getattr(response, "usage", None)
        tokens = TokenUsage(
            input=int(getattr(usage, "prompt_tokens", 0) or 0),
            output=int(getattr(usage, "completion_tokens", 0) or 0),
        )
        return AdapterResponse(nodes=nodes, edges=edges, tokens_used=tokens, model=model, quality=payload.quality)


__all__ = [
    "AdapterOutcome",
    "AdapterResponse",
    "LLMAdapter",
    "OpenAIChatAdapter",
    "ServiceError",
    "Success",
    "ValidationError",
    "invoke_adapter",
]
