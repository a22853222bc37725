"""LLM backend abstraction for multi-model support.

Provides a unified async interface for calling different LLM providers
(Anthropic Claude, Google Gemini) with consistent response format.

Each backend handles provider-specific concerns:
- Client creation and timeout configuration
- Response parsing and token counting

The orchestrator handles model-agnostic concerns:
- Retry with exponential backoff (pipeline.retry)
- Stage timing and logging
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from toolfactory.errors import LLMUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class CompletionResponse:
    """Normalized response from any LLM backend."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: int = 0


@runtime_checkable
class CompletionPort(Protocol):
    """What stages need from an LLM: one async completion call."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        model: Optional[str] = None,
    ) -> CompletionResponse: ...


class AnthropicBackend:
    """Anthropic Claude backend.

    The client is created lazily on first use and kept on the instance, so
    each backend owns its connection pool and nothing is shared at module level.
    """

    def __init__(
        self,
        model_id: str = "claude-sonnet-4-5-20250929",
        api_key: Optional[str] = None,
        read_timeout: float = 600.0,
    ):
        self._model_id = model_id
        self._api_key = api_key
        self._read_timeout = read_timeout
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        if self._client is not None:
            return self._client

        api_key = self._api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise LLMUnavailableError(
                "LLM service unavailable. Set ANTHROPIC_API_KEY environment variable."
            )
        try:
            import httpx
            from anthropic import AsyncAnthropic
        except ImportError:
            raise LLMUnavailableError(
                "anthropic package not installed. Install with: pip install anthropic"
            )

        self._client = AsyncAnthropic(
            api_key=api_key,
            # The factory owns retries; the SDK must not retry behind our back.
            max_retries=0,
            timeout=httpx.Timeout(
                connect=60.0,
                read=self._read_timeout,
                write=120.0,
                pool=60.0,
            ),
        )
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        model: Optional[str] = None,
    ) -> CompletionResponse:
        client = self._get_client()
        model_id = model or self._model_id
        start_time = time.time()

        logger.info(
            f"[{model_id}] Anthropic call: system_len={len(system_prompt):,}, "
            f"user_len={len(user_prompt):,}, max_tokens={max_tokens}"
        )

        response = await client.messages.create(
            model=model_id,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                raw_text += block.text

        if not raw_text.strip():
            raise RuntimeError(f"[{model_id}] Empty response from model")

        logger.info(
            f"[{model_id}] Completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms"
        )

        return CompletionResponse(
            content=raw_text.strip(),
            model=model_id,
            usage=TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            duration_ms=duration_ms,
        )


class GeminiBackend:
    """Google Gemini backend.

    Requires GEMINI_API_KEY environment variable.
    Requires google-genai package: pip install google-genai
    """

    def __init__(self, model_id: str = "gemini-2.5-pro", api_key: Optional[str] = None):
        self._model_id = model_id
        self._api_key = api_key
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from google import genai
        except ImportError:
            raise LLMUnavailableError(
                "google-genai package not installed. "
                "Install with: pip install google-genai"
            )

        api_key = self._api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise LLMUnavailableError(
                "GEMINI_API_KEY not set. Set the environment variable to use Gemini."
            )
        self._client = genai.Client(api_key=api_key)
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        model: Optional[str] = None,
    ) -> CompletionResponse:
        from google import genai

        client = self._get_client()
        model_id = model or self._model_id
        start_time = time.time()

        logger.info(
            f"[{model_id}] Gemini call: system_len={len(system_prompt):,}, "
            f"user_len={len(user_prompt):,}, max_tokens={max_tokens}"
        )

        config_kwargs: dict[str, Any] = {
            "system_instruction": system_prompt,
            "max_output_tokens": max_tokens,
        }
        response = await client.aio.models.generate_content(
            model=model_id,
            contents=user_prompt,
            config=genai.types.GenerateContentConfig(**config_kwargs),
        )

        duration_ms = int((time.time() - start_time) * 1000)
        raw_text = response.text or ""
        if not raw_text.strip():
            raise RuntimeError(f"[{model_id}] Empty response from model")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", 0) or 0
        output_tokens = getattr(usage, "candidates_token_count", 0) or 0

        logger.info(
            f"[{model_id}] Completed: {input_tokens}+{output_tokens} tokens, {duration_ms}ms"
        )

        return CompletionResponse(
            content=raw_text.strip(),
            model=model_id,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            duration_ms=duration_ms,
        )
