"""Deterministic cost estimation for AI operations.

Nothing here performs I/O or keeps state, so every function is safe to call
from any thread without synchronization.
"""

from __future__ import annotations

import math
from types import MappingProxyType
from typing import Mapping

from docgraph.core.config import DEFAULT_MODEL_PRICING, ModelPricing
from docgraph.core.errors import InvalidEstimateInput, UnknownModel, UnknownOperation
from docgraph.cost.types import CostBreakdown, CostEstimate, CostEstimateInput, TokenUsage

DEFAULT_MODEL = "claude-sonnet-4"
CHARS_PER_TOKEN = 4
TOKENS_PER_MILLION = 1_000_000

# input multiplier covers prompt overhead; output is a fixed per-call estimate
OPERATION_ESTIMATES: Mapping[str, Mapping[str, float]] = MappingProxyType(
    {
        "graph-generation": MappingProxyType({"input_multiplier": 1.2, "output_tokens": 2000}),
        "connection-explanation": MappingProxyType({"input_multiplier": 1.1, "output_tokens": 500}),
        "quiz-generation": MappingProxyType({"input_multiplier": 1.15, "output_tokens": 1500}),
        "image-description": MappingProxyType({"input_multiplier": 1.0, "output_tokens": 300}),
        "node-description": MappingProxyType({"input_multiplier": 1.0, "output_tokens": 400}),
    }
)


def estimate_cost(
    request: CostEstimateInput,
    pricing: Mapping[str, ModelPricing] = DEFAULT_MODEL_PRICING,
    default_model: str = DEFAULT_MODEL,
) -> CostEstimate:
    """Price an operation before running it."""
    model = request.model or default_model
    model_pricing = _pricing_for(model, pricing)
    operation = OPERATION_ESTIMATES.get(request.operation_type)
    if operation is None:
        raise UnknownOperation(f"Unknown operation type: {request.operation_type}")
    if request.text_length < 0 or request.image_count < 0 or request.invocations < 1 or (request.text_tokens or 0) < 0:
        raise InvalidEstimateInput(
            "text_length, text_tokens and image_count must be >= 0 and invocations >= 1",
            details={
                "text_length": request.text_length,
                "text_tokens": request.text_tokens,
                "image_count": request.image_count,
                "invocations": request.invocations,
            },
        )

    # cost uses the unrounded token count so it grows with every extra character
    raw_tokens = float(request.text_tokens) if request.text_tokens is not None else request.text_length / CHARS_PER_TOKEN
    raw_input_tokens = raw_tokens * operation["input_multiplier"]
    output_tokens = int(operation["output_tokens"]) * request.invocations

    text_cost = raw_input_tokens / TOKENS_PER_MILLION * model_pricing.input
    output_cost = output_tokens / TOKENS_PER_MILLION * model_pricing.output
    image_cost = request.image_count * model_pricing.per_image_cost if request.image_count > 0 else 0.0

    return CostEstimate(
        estimated_cost=text_cost + image_cost + output_cost,
        breakdown=CostBreakdown(
            text_processing=text_cost,
            image_processing=image_cost,
            output_generation=output_cost,
        ),
        estimated_tokens=TokenUsage(input=math.ceil(raw_input_tokens), output=output_tokens),
        model=model,
    )


def calculate_cost(
    tokens_used: TokenUsage,
    model: str,
    pricing: Mapping[str, ModelPricing] = DEFAULT_MODEL_PRICING,
) -> float:
    """Actual spend for tokens reported by the provider."""
    model_pricing = _pricing_for(model, pricing)
    return (
        tokens_used.input / TOKENS_PER_MILLION * model_pricing.input
        + tokens_used.output / TOKENS_PER_MILLION * model_pricing.output
    )


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"


def cost_exceeds_limit(cost: float, limit: float) -> bool:
    return cost > limit


def _pricing_for(model: str, pricing: Mapping[str, ModelPricing]) -> ModelPricing:
    try:
        return pricing[model]
    except KeyError:
        raise UnknownModel(f"Unknown model: {model}", details={"known": sorted(pricing)}) from None


__all__ = [
    "DEFAULT_MODEL",
    "OPERATION_ESTIMATES",
    "calculate_cost",
    "cost_exceeds_limit",
    "estimate_cost",
    "format_cost",
]
