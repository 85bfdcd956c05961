"""Graph synthesis components."""

from .adapter import AdapterResponse, LLMAdapter, OpenAIChatAdapter, invoke_adapter
from .merge import merge_fragments, render_mermaid
from .prompts import PromptContext
from .synthesizer import EntityAccumulator, GraphSynthesizer
from .validate import ValidationReport, validate_graph

__all__ = [
    "AdapterResponse",
    "EntityAccumulator",
    "GraphSynthesizer",
    "LLMAdapter",
    "OpenAIChatAdapter",
    "PromptContext",
    "ValidationReport",
    "invoke_adapter",
    "merge_fragments",
    "render_mermaid",
    "validate_graph",
]
