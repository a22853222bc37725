"""Specification extraction stage.

Turns a free-form request into a ToolSpec, or into a ClarificationRequest
when the request lacks information the tool cannot be built without.
"""

import logging

from pydantic import ValidationError

from toolfactory.errors import StageOutputError
from toolfactory.llm.client import snippet
from toolfactory.stages.base import LLMStage
from toolfactory.stages.schemas import (
    ClarificationRequest,
    SpecExtractionInput,
    SpecExtractionOutput,
    StageName,
    ToolSpec,
)

logger = logging.getLogger(__name__)


class SpecExtractionStage(LLMStage):
    name = StageName.SPEC_EXTRACTION

    def build_user_prompt(self, input: SpecExtractionInput) -> str:
        return input.source_text

    def parse(self, raw_text: str, input: SpecExtractionInput) -> SpecExtractionOutput:
        parsed = self.require_json(raw_text)
        if not isinstance(parsed, dict):
            raise StageOutputError(self.name.value, "Expected a JSON object", snippet(raw_text))

        if parsed.get("needs_clarification"):
            questions = parsed.get("questions")
            if not isinstance(questions, list) or not questions:
                raise StageOutputError(
                    self.name.value,
                    "Invalid clarification request: questions array is required",
                    snippet(raw_text),
                )
            clarification = ClarificationRequest(
                questions=[str(q) for q in questions],
                partial_spec=parsed.get("partial_spec") or {},
            )
            logger.info(
                f"[{self.name.value}] Clarification needed: {len(clarification.questions)} questions"
            )
            return SpecExtractionOutput(kind="clarification", clarification=clarification)

        try:
            spec = ToolSpec.model_validate(parsed)
        except ValidationError as e:
            raise StageOutputError(
                self.name.value, f"Invalid tool spec: {e.error_count()} field errors", snippet(raw_text)
            ) from e

        logger.info(f"[{self.name.value}] Extracted spec '{spec.name}' with {len(spec.inputs)} inputs")
        return SpecExtractionOutput(kind="spec", tool_spec=spec)
