"""Enrichment stages: audience profile, examples, microcopy.

Each reads only the base ToolSpec. Their outputs are advisory context for the
builder, so an unparseable reply falls back to a generic default instead of
failing the run.
"""

import copy
import logging
from typing import Any

from toolfactory.stages.base import LLMStage
from toolfactory.stages.schemas import (
    AudienceProfilingInput,
    AudienceProfilingOutput,
    CopyGenerationInput,
    CopyGenerationOutput,
    ExampleGenerationInput,
    ExampleGenerationOutput,
    StageName,
    ToolSpec,
)

logger = logging.getLogger(__name__)


def describe_spec(spec: ToolSpec, detailed: bool = False) -> str:
    """Short plain-text rendering of a spec for enrichment prompts."""
    if detailed:
        inputs = "\n".join(
            f"  - {i.name}: {i.label} ({i.type}{', required' if i.required else ''})"
            for i in spec.inputs
        )
        inputs = "\n" + inputs if inputs else " none"
    else:
        inputs = " " + (", ".join(f"{i.label} ({i.type})" for i in spec.inputs) or "none")
    lines = [
        "TOOL SPECIFICATION:",
        f"- Tool Name: {spec.name}",
        f"- Decision: {spec.purpose}",
        f"- Inputs:{inputs}",
    ]
    if spec.processing_logic:
        lines.append(f"- Processing Logic: {spec.processing_logic}")
    return "\n".join(lines)


DEFAULT_PROFILE: dict[str, Any] = {
    "primary_persona": {
        "name": "Growth-Stage Entrepreneur",
        "business_stage": "GROWTH",
        "decision_style": "DATA_DRIVEN",
        "technical_comfort": "NUMBERS_AWARE",
        "quote": "I need to make the right call here.",
    },
    "language_guidelines": {
        "tone": "Direct and supportive",
        "complexity": "MEDIUM",
        "jargon_level": "Business-friendly, avoid technical terms",
        "examples_style": "Revenue and profit numbers",
    },
    "ux_recommendations": {
        "input_style": "Number inputs with clear labels",
        "result_format": "Single verdict with supporting data",
        "help_text_density": "MODERATE",
    },
    "red_flags": ["Overly complex inputs", "Jargon-heavy labels", "Unclear verdicts"],
}


class AudienceProfilingStage(LLMStage):
    name = StageName.AUDIENCE_PROFILING

    def build_user_prompt(self, input: AudienceProfilingInput) -> str:
        return (
            f"{describe_spec(input.tool_spec)}\n\n"
            f"CONTENT CONTEXT:\n{input.content_summary or 'None provided.'}\n\n"
            "Create a detailed audience profile for the users of this tool."
        )

    def parse(self, raw_text: str, input: AudienceProfilingInput) -> AudienceProfilingOutput:
        parsed = self.optional_json(raw_text)
        if parsed is None:
            parsed = copy.deepcopy(DEFAULT_PROFILE)
        return AudienceProfilingOutput(profile=parsed)


class ExampleGenerationStage(LLMStage):
    name = StageName.EXAMPLE_GENERATION

    def build_user_prompt(self, input: ExampleGenerationInput) -> str:
        return (
            f"{describe_spec(input.tool_spec)}\n\n"
            "Generate test scenarios and inspiring case studies for this tool."
        )

    def parse(self, raw_text: str, input: ExampleGenerationInput) -> ExampleGenerationOutput:
        parsed = self.optional_json(raw_text)
        if parsed is None:
            return ExampleGenerationOutput(
                test_scenarios=[
                    {
                        "name": "GO Scenario - Strong Case",
                        "inputs": {},
                        "expected_verdict": "GO",
                        "reasoning": "All metrics exceed thresholds",
                    },
                    {
                        "name": "NO-GO Scenario - Below Threshold",
                        "inputs": {},
                        "expected_verdict": "NO-GO",
                        "reasoning": "Key metrics below minimum requirements",
                    },
                ],
                case_studies=[],
            )
        return ExampleGenerationOutput(
            test_scenarios=[s for s in parsed.get("test_scenarios") or [] if isinstance(s, dict)],
            case_studies=[c for c in parsed.get("case_studies") or [] if isinstance(c, dict)],
        )


class CopyGenerationStage(LLMStage):
    name = StageName.COPY_GENERATION

    def build_user_prompt(self, input: CopyGenerationInput) -> str:
        return (
            f"{describe_spec(input.tool_spec, detailed=True)}\n\n"
            "Write all microcopy for this tool."
        )

    def parse(self, raw_text: str, input: CopyGenerationInput) -> CopyGenerationOutput:
        parsed = self.optional_json(raw_text)
        if parsed is not None:
            return CopyGenerationOutput(copy_text=parsed)

        spec = input.tool_spec
        return CopyGenerationOutput(copy_text={
            "tool_title": f"THE {spec.name.upper()}",
            "tool_subtitle": spec.purpose,
            "field_labels": {},
            "verdicts": {
                "go": {"headline": "GO", "subtext": "The numbers support this decision."},
                "no_go": {"headline": "NO-GO", "subtext": "The numbers don't support this decision."},
            },
            "commitment": {
                "headline": "LOCK IN YOUR DECISION",
                "who_label": "WHO WILL OWN THIS?",
                "what_label": "WHAT SPECIFIC ACTION?",
                "when_label": "BY WHEN?",
            },
            "cta": {"primary": "GET MY VERDICT", "secondary": "CLEAR FORM"},
        })
