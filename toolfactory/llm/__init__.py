"""LLM access for the pipeline stages.

Stages depend only on CompletionPort. ModelRouter is the production port
(Anthropic and Gemini behind one interface); MockBackend runs offline.
"""

from toolfactory.llm.backends import (
    DEFAULT_MAX_TOKENS,
    AnthropicBackend,
    CompletionPort,
    CompletionResponse,
    GeminiBackend,
    TokenUsage,
)
from toolfactory.llm.client import extract_html, extract_json, parse_llm_json_response
from toolfactory.llm.factory import DEFAULT_MODEL, ModelRouter, get_backend
from toolfactory.llm.mock import MockBackend

__all__ = [
    "DEFAULT_MAX_TOKENS",
    "AnthropicBackend",
    "CompletionPort",
    "CompletionResponse",
    "GeminiBackend",
    "TokenUsage",
    "extract_html",
    "extract_json",
    "parse_llm_json_response",
    "DEFAULT_MODEL",
    "ModelRouter",
    "get_backend",
    "MockBackend",
]
