"""Template selection, artifact building and feedback revision stages."""

import logging

from pydantic import ValidationError

from toolfactory.errors import StageOutputError
from toolfactory.llm.client import snippet
from toolfactory.stages.base import LLMStage
from toolfactory.stages.schemas import (
    ArtifactBuildingInput,
    ArtifactBuildingOutput,
    BuilderContext,
    FeedbackRevisionInput,
    FeedbackRevisionOutput,
    StageName,
    TemplateDecision,
    TemplateSelectionInput,
    TemplateSelectionOutput,
    TemplateType,
)

logger = logging.getLogger(__name__)


class TemplateSelectionStage(LLMStage):
    name = StageName.TEMPLATE_SELECTION

    def prompt_variables(self, input: TemplateSelectionInput) -> dict:
        return {"templates": [t.value for t in TemplateType]}

    def build_user_prompt(self, input: TemplateSelectionInput) -> str:
        return (
            "## Tool Specification\n\n"
            f"{input.tool_spec.model_dump_json(indent=2, exclude_none=True)}\n\n"
            "Analyze this specification and select the most appropriate template pattern."
        )

    def parse(self, raw_text: str, input: TemplateSelectionInput) -> TemplateSelectionOutput:
        parsed = self.require_json(raw_text)
        try:
            decision = TemplateDecision.model_validate(parsed)
        except ValidationError as e:
            raise StageOutputError(
                self.name.value,
                "Invalid template decision: template must be one of "
                + ", ".join(t.value for t in TemplateType),
                snippet(raw_text),
            ) from e
        logger.info(f"[{self.name.value}] Selected {decision.template.value}")
        return TemplateSelectionOutput(decision=decision)


def render_required_content(context: BuilderContext) -> str:
    """Markdown section listing everything the artifact must contain verbatim."""
    lines = [
        "## Required Content",
        "",
        f"Tool: {context.tool.name} ({context.tool.tagline})",
        f"Module: {context.tool.module_reference}",
    ]
    if context.framework_items:
        lines += ["", "### Framework items (one input each, exact labels)"]
        for item in context.framework_items:
            lines.append(
                f"{item.index}. {item.label} [{item.input_kind}, placeholder: {item.placeholder}]"
                + (f": {item.definition}" if item.definition else "")
            )
    if context.terminology:
        lines += ["", "### Terminology (use exactly)"]
        lines += [f"- {t.term} (in {t.usage_hint})" for t in context.terminology]
    if context.expert_quote:
        source = f" ({context.expert_quote.source})" if context.expert_quote.source else ""
        lines += ["", "### Expert quote (display verbatim)", f"\"{context.expert_quote.quote}\"{source}"]
    if context.checklist:
        lines += ["", "### Checklist"]
        lines += [f"- {c}" for c in context.checklist]
    if context.calculation:
        lines += [
            "",
            "### Calculation",
            f"Formula: {context.calculation.formula}",
            f"GO when: {context.calculation.go_criterion}",
            f"NO-GO when: {context.calculation.no_go_criterion}",
        ]
    return "\n".join(lines)


class ArtifactBuildingStage(LLMStage):
    name = StageName.ARTIFACT_BUILDING

    def build_user_prompt(self, input: ArtifactBuildingInput) -> str:
        parts = [
            "## Tool Specification\n\n"
            + input.tool_spec.model_dump_json(indent=2, exclude_none=True)
        ]
        if input.template:
            parts.append(
                f"## Template Pattern\n\nUse the {input.template.value} template pattern for this tool."
            )
        if input.builder_context:
            parts.append(render_required_content(input.builder_context))
        if input.fix_instructions:
            fixes = "\n".join(f"{i + 1}. {fix}" for i, fix in enumerate(input.fix_instructions))
            parts.append(
                "## Corrections Required\n\n"
                "The previous attempt was missing required content. Fix ALL of these:\n\n"
                + fixes
            )
        return "\n\n".join(parts)

    def parse(self, raw_text: str, input: ArtifactBuildingInput) -> ArtifactBuildingOutput:
        return ArtifactBuildingOutput(html=self.require_html(raw_text))


class FeedbackRevisionStage(LLMStage):
    name = StageName.FEEDBACK_REVISION

    def build_user_prompt(self, input: FeedbackRevisionInput) -> str:
        feedback = "\n".join(f"{i + 1}. {item}" for i, item in enumerate(input.feedback))
        return (
            "## Original Tool Specification\n\n"
            f"{input.tool_spec.model_dump_json(indent=2, exclude_none=True)}\n\n"
            f"## Current HTML Tool\n\n```html\n{input.html}\n```\n\n"
            f"## Issues to Fix\n\n{feedback}\n\n"
            "Apply minimal changes to fix these issues while preserving all working "
            "functionality. Return the complete revised HTML."
        )

    def parse(self, raw_text: str, input: FeedbackRevisionInput) -> FeedbackRevisionOutput:
        return FeedbackRevisionOutput(html=self.require_html(raw_text))
