"""Translate docgraph errors into HTTP responses."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from docgraph.core.errors import (
    BudgetExceeded,
    ChunkingError,
    ConfigError,
    DocGraphError,
    DocumentNotFound,
    DocumentNotReady,
    GenerationCancelled,
    InvalidEstimateInput,
    InvalidUsageData,
    ServiceUnavailable,
    TotalFailure,
    ValidationFailed,
)
from docgraph.core.logging import ctx, get_logger

logger = get_logger(__name__)

# most specific first
_STATUS_CODES: tuple[tuple[type[DocGraphError], int], ...] = (
    (BudgetExceeded, 402),
    (DocumentNotFound, 404),
    (DocumentNotReady, 409),
    (GenerationCancelled, 409),
    (ConfigError, 422),
    (ChunkingError, 422),
    (InvalidEstimateInput, 422),
    (InvalidUsageData, 422),
    (TotalFailure, 502),
    (ValidationFailed, 502),
    (ServiceUnavailable, 503),
)


def status_for(exc: DocGraphError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status
    return 500


async def docgraph_error_handler(request: Request, exc: DocGraphError) -> JSONResponse:
    status = status_for(exc)
    logger.info(
        "Request failed",
        extra=ctx(path=request.url.path, status=status, code=exc.code, error=exc.message),
    )
    return JSONResponse(status_code=status, content=exc.to_dict())


__all__ = ["docgraph_error_handler", "status_for"]
