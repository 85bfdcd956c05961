"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from docgraph.core.config import Settings, get_settings
from docgraph.cost.budget import BudgetGuard
from docgraph.cost.usage_store import SQLiteUsageStore
from docgraph.db.documents import SQLiteDocumentStore
from docgraph.db.graphs import SQLiteGraphRepository
from docgraph.db.sqlite import SQLiteDatabase
from docgraph.pipeline.orchestrator import GraphPipeline
from docgraph.synthesis.adapter import LLMAdapter, OpenAIChatAdapter
from docgraph.synthesis.synthesizer import GraphSynthesizer

_DB: SQLiteDatabase | None = None
_BUDGET: BudgetGuard | None = None
_ADAPTER: LLMAdapter | None = None
_SYNTHESIZER: GraphSynthesizer | None = None
_PIPELINE: GraphPipeline | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_budget_guard() -> BudgetGuard:
    global _BUDGET
    if _BUDGET is None:
        settings = get_app_settings()
        _BUDGET = BudgetGuard(
            SQLiteUsageStore(get_database()),
            limits=settings.limits,
            thresholds=settings.thresholds,
            pricing=settings.models.pricing,
            default_model=settings.models.default_model,
        )
    return _BUDGET


def get_document_store() -> SQLiteDocumentStore:
    return SQLiteDocumentStore(get_database())


def get_adapter() -> LLMAdapter:
    global _ADAPTER
    if _ADAPTER is None:
        settings = get_app_settings()
        _ADAPTER = OpenAIChatAdapter(settings.llm, settings.models)
    return _ADAPTER


def get_synthesizer() -> GraphSynthesizer:
    global _SYNTHESIZER
    if _SYNTHESIZER is None:
        settings = get_app_settings()
        _SYNTHESIZER = GraphSynthesizer(
            get_adapter(),
            retry=settings.retry,
            synthesis=settings.synthesis,
            models=settings.models,
            pricing=settings.models.pricing,
        )
    return _SYNTHESIZER


def get_pipeline() -> GraphPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        database = get_database()
        _PIPELINE = GraphPipeline(
            get_app_settings(),
            get_synthesizer(),
            get_budget_guard(),
            documents=SQLiteDocumentStore(database),
            graphs=SQLiteGraphRepository(database),
        )
    return _PIPELINE


def reset() -> None:
    """Drop cached singletons (tests, config reloads)."""
    global _DB, _BUDGET, _ADAPTER, _SYNTHESIZER, _PIPELINE
    if _SYNTHESIZER is not None:
        _SYNTHESIZER.close()
    if _DB is not None:
        _DB.close()
    _DB = _BUDGET = _ADAPTER = _SYNTHESIZER = _PIPELINE = None
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "get_adapter",
    "get_app_settings",
    "get_budget_guard",
    "get_database",
    "get_document_store",
    "get_pipeline",
    "get_synthesizer",
    "reset",
]
