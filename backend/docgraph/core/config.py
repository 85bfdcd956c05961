"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "DOCG_"
DEFAULT_CONFIG_PATH = Path("~/.config/docgraph/config.yaml")

DEFAULT_SEPARATORS = [
    "\n# ",  # chapters
    "\n## ",  # sections
    "\n### ",
    "\n\n",  # paragraphs
    ". ",  # sentences
    " ",  # words
]

_YAML_KEY_MAP: Mapping[tuple[str, ...], tuple[str, ...]] = {
    ("storage", "db_path"): ("db_path",),
    ("logging", "level"): ("log_level",),
    ("limits", "per_day"): ("limits", "per_user_per_day"),
    ("limits", "per_month"): ("limits", "per_user_per_month"),
    ("models", "default"): ("models", "default_model"),
    ("models", "fallback"): ("models", "fallback_model"),
}


class _Section(BaseModel):
    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }


class ChunkingConfig(_Section):
    """Chunker options. Consistency checks live in the chunker (ConfigError)."""

    max_chunk_size: int = 30_000
    overlap_size: int = 1_000
    min_chunk_size: int = 1_000
    separators: list[str] = Field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    preserve_markdown: bool = True
    min_document_length: int = 50
    max_document_length: int = 2_000_000
    large_document_warning: int = 200_000
    optimal_size_band: tuple[float, float] = (0.5, 1.0)
    quality_weights: dict[str, float] = Field(
        default_factory=lambda: {"clean_boundaries": 0.4, "optimal_size": 0.4, "overlap_efficiency": 0.2}
    )
    ideal_overlap_fraction: float = 0.2


class CostLimits(_Section):
    per_document: float = 5.0
    per_user_per_day: float = 10.0
    per_user_per_month: float = 50.0
    reservation_ttl_seconds: float = 900.0


class WarningThresholds(_Section):
    daily: float = 0.8
    monthly: float = 0.9
    enable_alerts: bool = True


class RetryPolicy(_Section):
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    jitter: float = 0.25
    attempt_timeout_seconds: float = 60.0

    @field_validator("max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be >= 1")
        return value


class SynthesisConfig(_Section):
    max_nodes: int = 15
    min_nodes: int = 3
    remove_isolated_nodes: bool = False
    max_nodes_per_chunk: int = 10
    max_output_tokens: int = 4096
    similarity_threshold: float = 0.85
    similarity: str = "sequence"
    cross_chunk_context: bool = True
    max_context_entities: int = 40
    max_workers: int = 1


class ModelPricing(_Section):
    """Prices in USD per 1M tokens; per_image_cost is a flat USD amount."""

    input: float
    output: float
    per_image_cost: float = 0.0


DEFAULT_MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4": ModelPricing(input=3.0, output=15.0, per_image_cost=0.0048),
    "claude-haiku": ModelPricing(input=0.25, output=1.25, per_image_cost=0.0004),
    "gpt-4-turbo": ModelPricing(input=10.0, output=30.0, per_image_cost=0.01),
    "gpt-4-vision": ModelPricing(input=10.0, output=30.0, per_image_cost=0.00765),
}


class ModelsConfig(_Section):
    default_model: str = "claude-sonnet-4"
    fallback_model: str = "claude-haiku"
    pricing: dict[str, ModelPricing] = Field(default_factory=lambda: dict(DEFAULT_MODEL_PRICING))
    provider_ids: dict[str, str] = Field(default_factory=dict)


class LLMConfig(_Section):
    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str | None = None
    request_timeout_seconds: float = 120.0
    temperature: float = 0.2


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".docgraph" / "docgraph.db")
    log_level: str = "INFO"
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    limits: CostLimits = Field(default_factory=CostLimits)
    thresholds: WarningThresholds = Field(default_factory=WarningThresholds)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    synthesis: SynthesisConfig = Field(default_factory=SynthesisConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            _deep_merge(data, _remap_yaml(raw))
        _deep_merge(data, _load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _remap_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Rewrite aliased YAML keys into the nested Settings layout."""
    remapped: dict[str, Any] = {}
    for key, value in raw.items():
        path = prefix + (str(key),)
        target = _YAML_KEY_MAP.get(path)
        if target is not None:
            _deep_merge(remapped, _nest(target, value))
        elif isinstance(value, Mapping) and not _is_leaf_mapping(path):
            _deep_merge(remapped, _remap_yaml(value, prefix=path))
        else:
            _deep_merge(remapped, _nest(path, value))
    return remapped


def _is_leaf_mapping(path: tuple[str, ...]) -> bool:
    # dict-valued fields whose keys are data, not settings
    return path in {
        ("chunking", "quality_weights"),
        ("models", "pricing"),
        ("models", "provider_ids"),
    }


def _nest(path: tuple[str, ...], value: Any) -> dict[str, Any]:
    nested: Any = value
    for part in reversed(path):
        nested = {part: nested}
    return nested


def _deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def _load_env_overrides() -> dict[str, Any]:
    """Map DOCG_ environment variables into Settings fields; `__` nests."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG":
            continue
        path = tuple(part.lower() for part in key[len(ENV_PREFIX) :].split("__"))
        if path[0] not in Settings.model_fields:
            continue
        if len(path) > 1:
            section = Settings.model_fields[path[0]].annotation
            fields = getattr(section, "model_fields", {})
            if path[1] not in fields:
                continue
        _deep_merge(overrides, _nest(path, value))
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = [
    "ChunkingConfig",
    "CostLimits",
    "DEFAULT_MODEL_PRICING",
    "DEFAULT_SEPARATORS",
    "LLMConfig",
    "ModelPricing",
    "ModelsConfig",
    "RetryPolicy",
    "Settings",
    "SynthesisConfig",
    "WarningThresholds",
    "get_settings",
]
