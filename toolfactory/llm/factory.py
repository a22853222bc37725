"""Model backend factory.

Resolves model IDs to the appropriate backend implementation, and provides
ModelRouter: a CompletionPort that picks the backend per call so stages can
ask for a cheaper model without knowing about providers.
"""

import logging
from typing import Optional, Union

from toolfactory.llm.backends import (
    DEFAULT_MAX_TOKENS,
    AnthropicBackend,
    CompletionResponse,
    GeminiBackend,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


def get_backend(model_id: str) -> Union[AnthropicBackend, GeminiBackend]:
    """Get the appropriate backend for a model ID.

    Args:
        model_id: Full model identifier (e.g. 'claude-sonnet-4-5-20250929',
                  'gemini-2.5-pro')

    Returns:
        Backend instance for the model

    Raises:
        ValueError: If model_id is not recognized
    """
    if model_id.startswith("claude-"):
        return AnthropicBackend(model_id=model_id)
    elif model_id.startswith("gemini-"):
        return GeminiBackend(model_id=model_id)
    else:
        raise ValueError(
            f"Unknown model: '{model_id}'. "
            f"Expected a model ID starting with 'claude-' or 'gemini-'."
        )


class ModelRouter:
    """CompletionPort that dispatches each call to a per-model backend.

    Backends are cached on the router instance. Share one router across
    concurrent runs; it holds no per-run state.
    """

    def __init__(self, default_model: str = DEFAULT_MODEL):
        self.default_model = default_model
        self._backends: dict[str, Union[AnthropicBackend, GeminiBackend]] = {}

    def backend_for(self, model_id: str) -> Union[AnthropicBackend, GeminiBackend]:
        backend = self._backends.get(model_id)
        if backend is None:
            backend = get_backend(model_id)
            self._backends[model_id] = backend
            logger.debug(f"Created backend for {model_id}")
        return backend

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        model: Optional[str] = None,
    ) -> CompletionResponse:
        model_id = model or self.default_model
        return await self.backend_for(model_id).complete(
            system_prompt, user_prompt, max_tokens, model=model_id
        )
