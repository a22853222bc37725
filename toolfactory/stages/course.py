"""Structured-source stages: content summarization, course analysis, tool design.

These run only when the request is course material. The sequencing
(summarize if large, chunk if very large, then analyze and design) lives in
pipeline.course.CourseProcessor.
"""

import logging

from pydantic import ValidationError

from toolfactory.errors import StageOutputError
from toolfactory.llm.client import snippet
from toolfactory.stages.base import LLMStage
from toolfactory.stages.schemas import (
    ContentSummarizationInput,
    ContentSummarizationOutput,
    CourseAnalysis,
    CourseAnalysisInput,
    CourseAnalysisOutput,
    StageName,
    ToolDesign,
    ToolDesignInput,
    ToolDesignOutput,
)

logger = logging.getLogger(__name__)

SECTION_CHAR_LIMIT = 15_000


class ContentSummarizationStage(LLMStage):
    name = StageName.CONTENT_SUMMARIZATION

    def prompt_variables(self, input: ContentSummarizationInput) -> dict:
        return {"chunked": input.chunk}

    def build_user_prompt(self, input: ContentSummarizationInput) -> str:
        if input.chunk:
            return input.content[:SECTION_CHAR_LIMIT]
        return input.content

    def parse(self, raw_text: str, input: ContentSummarizationInput) -> ContentSummarizationOutput:
        summary = raw_text.strip()
        if not summary:
            raise StageOutputError(self.name.value, "Empty summary")
        return ContentSummarizationOutput(summary=summary)


class CourseAnalysisStage(LLMStage):
    name = StageName.COURSE_ANALYSIS

    def build_user_prompt(self, input: CourseAnalysisInput) -> str:
        return (
            "## Course Content\n\n"
            f"{input.content}\n\n"
            "Extract the module's framework, terminology, quotes and decision criteria."
        )

    def parse(self, raw_text: str, input: CourseAnalysisInput) -> CourseAnalysisOutput:
        parsed = self.require_json(raw_text)
        try:
            analysis = CourseAnalysis.model_validate(parsed)
        except ValidationError as e:
            raise StageOutputError(
                self.name.value, f"Invalid course analysis: {e.error_count()} field errors", snippet(raw_text)
            ) from e

        items = len(analysis.numbered_framework.items) if analysis.numbered_framework else 0
        logger.info(
            f"[{self.name.value}] '{analysis.module_title}': {items} framework items, "
            f"{len(analysis.key_terminology)} terms, {len(analysis.expert_wisdom)} quotes"
        )
        return CourseAnalysisOutput(analysis=analysis)


class ToolDesignStage(LLMStage):
    name = StageName.TOOL_DESIGN

    def build_user_prompt(self, input: ToolDesignInput) -> str:
        prompt = (
            "## Course Analysis\n\n"
            f"{input.analysis.model_dump_json(indent=2, exclude_none=True)}"
        )
        if input.content_excerpt:
            prompt += f"\n\n## Source Excerpt\n\n{input.content_excerpt}"
        return prompt + "\n\nDesign the decision tool that applies this knowledge."

    def parse(self, raw_text: str, input: ToolDesignInput) -> ToolDesignOutput:
        parsed = self.require_json(raw_text)
        try:
            design = ToolDesign.model_validate(parsed)
        except ValidationError as e:
            raise StageOutputError(
                self.name.value, f"Invalid tool design: {e.error_count()} field errors", snippet(raw_text)
            ) from e
        logger.info(f"[{self.name.value}] Designed '{design.name}' with {len(design.inputs)} inputs")
        return ToolDesignOutput(design=design)
