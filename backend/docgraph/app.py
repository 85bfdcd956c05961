"""FastAPI application setup for docgraph."""

from __future__ import annotations

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from docgraph.api.dependencies import get_app_settings, get_budget_guard, get_database
from docgraph.api.errors import docgraph_error_handler
from docgraph.api.routes_chunking import router as chunking_router
from docgraph.api.routes_graphs import router as graphs_router
from docgraph.core.errors import DocGraphError
from docgraph.core.logging import configure_logging
from docgraph.core.metrics import metrics_response

configure_logging()

app = FastAPI(
    title="docgraph",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5174",
        "http://localhost:5174",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(DocGraphError, docgraph_error_handler)

app.include_router(chunking_router, prefix="", tags=["chunking"])
app.include_router(graphs_router, prefix="", tags=["graphs"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup; the LLM client is built lazily."""
    configure_logging(get_app_settings().log_level)
    get_database()
    get_budget_guard()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}


@app.get("/metrics", tags=["admin"])
def metrics() -> Response:
    return metrics_response()
