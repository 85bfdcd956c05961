"""Chunking and cost estimation routes."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends

from docgraph.api.dependencies import get_app_settings, get_budget_guard
from docgraph.chunking.chunker import chunk_text
from docgraph.core.config import Settings
from docgraph.cost.budget import BudgetGuard
from docgraph.cost.estimator import estimate_cost, format_cost
from docgraph.cost.types import BudgetCheckRequest, CostEstimateInput
from docgraph.models.dto import (
    BudgetCheckIn,
    BudgetCheckResponse,
    ChunkOut,
    ChunkRequest,
    ChunkResponse,
    EstimateRequest,
    EstimateResponse,
    ReleaseResponse,
    UsageResponse,
)

router = APIRouter()


def _cost_input(request: EstimateRequest, settings: Settings) -> CostEstimateInput:
    return CostEstimateInput(
        text_length=len(request.text) if request.text is not None else request.text_length,
        text_tokens=request.text_tokens,
        image_count=request.image_count,
        operation_type=request.operation_type,
        model=request.model or settings.models.default_model,
        invocations=request.invocations,
    )


@router.post("/chunk", response_model=ChunkResponse, summary="Split text into overlapping chunks")
async def chunk(request: ChunkRequest, settings: Settings = Depends(get_app_settings)) -> ChunkResponse:
    overrides = request.model_dump(
        include={"max_chunk_size", "overlap_size", "min_chunk_size", "preserve_markdown"},
        exclude_none=True,
    )
    config = settings.chunking.model_copy(update=overrides)
    result = chunk_text(request.text, config, request.title)
    payload = result.to_dict()
    return ChunkResponse(
        chunks=[ChunkOut(**item) for item in payload["chunks"]],
        document_metadata=payload["document_metadata"],
        statistics=payload["statistics"],
    )


@router.post("/estimate", response_model=EstimateResponse, summary="Estimate the cost of an operation")
async def estimate(request: EstimateRequest, settings: Settings = Depends(get_app_settings)) -> EstimateResponse:
    result = estimate_cost(_cost_input(request, settings), settings.models.pricing, settings.models.default_model)
    return EstimateResponse(
        estimated_cost=result.estimated_cost,
        formatted_cost=format_cost(result.estimated_cost),
        breakdown={
            "text_processing": result.breakdown.text_processing,
            "image_processing": result.breakdown.image_processing,
            "output_generation": result.breakdown.output_generation,
        },
        estimated_tokens={"input": result.estimated_tokens.input, "output": result.estimated_tokens.output},
        model=result.model,
    )


@router.post("/budget/check", response_model=BudgetCheckResponse, summary="Check a user's budget")
async def check_budget(
    request: BudgetCheckIn,
    settings: Settings = Depends(get_app_settings),
    budget: BudgetGuard = Depends(get_budget_guard),
) -> BudgetCheckResponse:
    result = budget.check_budget(
        BudgetCheckRequest(
            user_id=request.user_id,
            cost_input=_cost_input(request.estimate, settings),
            document_id=request.document_id,
        )
    )
    return BudgetCheckResponse(
        allowed=result.allowed,
        estimated_cost=result.estimated_cost,
        current_usage={"today": result.current_usage.today, "this_month": result.current_usage.this_month},
        reason=result.reason,
        reset_at=result.reset_at,
        reservation_id=result.reservation_id,
    )


@router.delete(
    "/budget/reservations/{reservation_id}",
    response_model=ReleaseResponse,
    summary="Release funds held by an earlier budget check",
)
async def release_reservation(
    reservation_id: str,
    budget: BudgetGuard = Depends(get_budget_guard),
) -> ReleaseResponse:
    return ReleaseResponse(reservation_id=reservation_id, released=budget.release(reservation_id))


@router.get("/budget/usage/{user_id}", response_model=UsageResponse, summary="Usage summary for a user")
async def usage(
    user_id: str,
    period: Literal["day", "month"] = "day",
    budget: BudgetGuard = Depends(get_budget_guard),
) -> UsageResponse:
    summary = budget.get_usage_summary(user_id, period)
    return UsageResponse(
        user_id=user_id,
        period=period,
        total_cost=summary.total_cost,
        total_tokens=summary.total_tokens,
        operation_count=summary.operation_count,
        average_cost_per_operation=summary.average_cost_per_operation,
        token_breakdown={"input": summary.token_breakdown.input, "output": summary.token_breakdown.output},
        by_operation=[
            {
                "operation": item.operation,
                "total_cost": item.total_cost,
                "count": item.count,
                "average_cost": item.average_cost,
                "percentage": item.percentage,
            }
            for item in budget.get_cost_breakdown(user_id, period)
        ],
    )
