"""Stage contract and the shared LLM-backed stage implementation.

Every stage exposes `async execute(input, context) -> output`. The
orchestrator only ever talks to stages through that one method.

LLMStage handles the parts every model-backed stage shares: composing the
system prompt, calling the completion port with the stage's model settings,
and logging the call. Subclasses supply the user prompt and the parser.
Stages never retry; the orchestrator's retry policy wraps every call.
"""

import logging
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from toolfactory.errors import StageOutputError
from toolfactory.llm.backends import CompletionPort
from toolfactory.llm.client import extract_html, extract_json, snippet, validate_html_structure
from toolfactory.stages.composer import StageComposer
from toolfactory.stages.schemas import StageName

if TYPE_CHECKING:
    from toolfactory.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)


@runtime_checkable
class Stage(Protocol):
    """A named unit of pipeline work."""

    name: StageName

    async def execute(self, input: Any, context: "PipelineContext") -> Any: ...


class LLMStage:
    """Base class for stages that make one completion call per execute()."""

    name: ClassVar[StageName]

    def __init__(self, llm: CompletionPort, composer: Optional[StageComposer] = None):
        self.llm = llm
        self.composer = composer or StageComposer()

    def prompt_variables(self, input: Any) -> dict[str, Any]:
        """Extra variables for the system prompt template."""
        return {}

    def build_user_prompt(self, input: Any) -> str:
        raise NotImplementedError

    def parse(self, raw_text: str, input: Any) -> BaseModel:
        raise NotImplementedError

    async def execute(self, input: Any, context: "PipelineContext") -> BaseModel:
        label = f"{context.run_id}:{self.name.value}"
        prompt = self.composer.compose(self.name, **self.prompt_variables(input))
        user_prompt = self.build_user_prompt(input)

        response = await self.llm.complete(
            prompt.system_prompt,
            user_prompt,
            prompt.max_tokens,
            model=prompt.model,
        )
        logger.debug(
            f"[{label}] {response.model}: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {len(response.content):,} chars"
        )
        return self.parse(response.content, input)

    # ── Parsing helpers ─────────────────────────────────

    def require_json(self, raw_text: str) -> Any:
        """Extract JSON or raise StageOutputError."""
        parsed = extract_json(raw_text)
        if parsed is None:
            raise StageOutputError(
                self.name.value, "Failed to extract JSON from response", snippet(raw_text)
            )
        return parsed

    def optional_json(self, raw_text: str) -> Optional[dict]:
        """Extract a JSON object, or None (logged) when the reply has none."""
        parsed = extract_json(raw_text)
        if not isinstance(parsed, dict):
            logger.warning(f"[{self.name.value}] Failed to parse response, using defaults")
            return None
        return parsed

    def require_html(self, raw_text: str) -> str:
        """Extract a complete HTML document or raise StageOutputError."""
        try:
            html = extract_html(raw_text)
        except ValueError as e:
            raise StageOutputError(self.name.value, str(e), snippet(raw_text))
        if not validate_html_structure(html):
            raise StageOutputError(
                self.name.value,
                "Generated HTML missing required structure (html, head, body tags)",
                snippet(html),
            )
        return html
