"""Structured-source sub-pipeline.

Course material goes through: summarize (if large, per section if very large)
-> analyze -> design. The result is a ToolSpec plus the BuilderContext the
generated artifact is later validated against.

Every model call goes through the orchestrator's execute(), so the sub-pipeline
gets the same retry, timing and event logging as the main sequence.
"""

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from toolfactory.config import FactoryConfig
from toolfactory.pipeline.validation import (
    ValidationResult,
    build_builder_context,
    format_validation_result,
    validate_design_alignment,
    validate_extraction,
)
from toolfactory.stages.schemas import (
    BuilderContext,
    ContentSummarizationInput,
    CourseAnalysis,
    CourseAnalysisInput,
    StageInput,
    StageName,
    StageOutput,
    ToolDesign,
    ToolDesignInput,
    ToolInput,
    ToolSpec,
)

if TYPE_CHECKING:
    from toolfactory.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

STRUCTURE_MARKERS = [
    re.compile(r"MODULE[:\s]", re.IGNORECASE),
    re.compile(r"SPRINT[:\s]", re.IGNORECASE),
    re.compile(r"learning objective", re.IGNORECASE),
    re.compile(r"INDIVIDUAL PREPARATION", re.IGNORECASE),
    re.compile(r"TEAM MEETING", re.IGNORECASE),
    re.compile(r"BRAIN JUICE", re.IGNORECASE),
    re.compile(r"DEEP DIVE", re.IGNORECASE),
    re.compile(r"Fast Track", re.IGNORECASE),
    re.compile(r"\[EXPECTED TIME:", re.IGNORECASE),
    re.compile(r"think and do", re.IGNORECASE),
]
MIN_STRUCTURE_MARKERS = 3

_SECTION_SPLIT = re.compile(r"(?=^#{1,3}\s|\n---\n)", re.MULTILINE)
MIN_SECTION_CHARS = 100
SECTION_SEPARATOR = "\n\n---\n\n"
DESIGN_EXCERPT_CHARS = 3_000


def detect_structured_source(text: str) -> bool:
    """True if the text looks like course material (3+ structural markers)."""
    hits = sum(1 for pattern in STRUCTURE_MARKERS if pattern.search(text))
    return hits >= MIN_STRUCTURE_MARKERS


def split_sections(content: str) -> list[str]:
    """Split on markdown headings (# to ###) and --- rules, dropping short fragments."""
    return [
        section.strip()
        for section in _SECTION_SPLIT.split(content)
        if len(section.strip()) >= MIN_SECTION_CHARS
    ]


ExecuteFn = Callable[[StageName, StageInput, "PipelineContext"], Awaitable[StageOutput]]


@dataclass
class CourseResult:
    tool_spec: ToolSpec
    builder_context: BuilderContext
    analysis: CourseAnalysis
    design: ToolDesign
    content: str
    extraction_validation: ValidationResult
    design_validation: ValidationResult


def design_to_spec(design: ToolDesign, analysis: CourseAnalysis) -> ToolSpec:
    """ToolSpec for the builder, carrying the course context along."""
    processing = design.processing_logic
    if design.formula:
        processing = f"{processing}\nFormula: {design.formula}".strip()

    framework = analysis.numbered_framework
    return ToolSpec(
        name=design.name,
        purpose=design.tagline or analysis.core_concept or design.name,
        inputs=[
            ToolInput(
                name=i.name,
                type=i.type,
                label=i.label or i.name,
                required=i.required,
                options=i.options,
                placeholder=i.placeholder,
            )
            for i in design.inputs
        ],
        output_type="text",
        processing_logic=processing,
        course_context={
            "module_title": analysis.module_title,
            "core_concept": analysis.core_concept,
            "learning_objective": analysis.learning_objective,
            "framework_name": framework.framework_name if framework else None,
            "formulas": analysis.formulas,
            "go_threshold": design.go_threshold,
            "no_go_threshold": design.no_go_threshold,
            "on_go": design.on_go,
            "on_no_go": design.on_no_go,
        },
    )


class CourseProcessor:
    """Runs the summarize -> analyze -> design sequence for one run."""

    def __init__(self, execute: ExecuteFn, config: FactoryConfig):
        self.execute = execute
        self.config = config

    async def process(self, content: str, context: "PipelineContext") -> CourseResult:
        label = f"{context.run_id}:course"
        processable = content

        if len(content) > self.config.summarize_threshold_chars:
            logger.info(f"[{label}] Content too large ({len(content):,} chars), summarizing")
            processable = await self.summarize(content, context)
            logger.info(f"[{label}] Summarized {len(content):,} -> {len(processable):,} chars")

        analysis_out = await self.execute(
            StageName.COURSE_ANALYSIS, CourseAnalysisInput(content=processable), context
        )
        analysis = analysis_out.analysis

        extraction_validation = validate_extraction(analysis)
        if not extraction_validation.passed:
            logger.warning(f"[{label}] {format_validation_result(extraction_validation)}")

        design_out = await self.execute(
            StageName.TOOL_DESIGN,
            ToolDesignInput(analysis=analysis, content_excerpt=processable[:DESIGN_EXCERPT_CHARS]),
            context,
        )
        design = design_out.design

        design_validation = validate_design_alignment(analysis, design)
        if not design_validation.passed:
            logger.warning(f"[{label}] {format_validation_result(design_validation)}")

        return CourseResult(
            tool_spec=design_to_spec(design, analysis),
            builder_context=build_builder_context(analysis, design),
            analysis=analysis,
            design=design,
            content=processable,
            extraction_validation=extraction_validation,
            design_validation=design_validation,
        )

    async def summarize(self, content: str, context: "PipelineContext") -> str:
        if len(content) > self.config.chunk_threshold_chars:
            sections = split_sections(content)
            if sections:
                logger.info(f"[{context.run_id}:course] Summarizing {len(sections)} sections")
                summaries = []
                for section in sections:
                    out = await self.execute(
                        StageName.CONTENT_SUMMARIZATION,
                        ContentSummarizationInput(content=section, chunk=True),
                        context,
                    )
                    summaries.append(out.summary)
                return SECTION_SEPARATOR.join(summaries)

        out = await self.execute(
            StageName.CONTENT_SUMMARIZATION,
            ContentSummarizationInput(content=content),
            context,
        )
        return out.summary
