"""
Pytest configuration and fixtures.

Fake stages return scripted outputs and record every call in a shared log,
so orchestrator tests can assert exact stage order without any model calls.
"""

from typing import Any, Callable, Optional

import pytest

from toolfactory.config import FactoryConfig
from toolfactory.pipeline.events import PipelineEventLog
from toolfactory.pipeline.orchestrator import ToolFactory
from toolfactory.pipeline.retry import RetryPolicy
from toolfactory.stages.registry import StageRegistry
from toolfactory.stages.schemas import (
    ArtifactBuildingOutput,
    AudienceProfilingOutput,
    ComplianceAuditingOutput,
    ContentSummarizationOutput,
    CopyGenerationOutput,
    CourseAnalysis,
    CourseAnalysisOutput,
    DesignInput,
    ExampleGenerationOutput,
    ExpertWisdom,
    FeedbackRevisionOutput,
    FrameworkItemSource,
    GradeResult,
    NumberedFramework,
    QualityGradingOutput,
    SpecExtractionOutput,
    StageName,
    TemplateDecision,
    TemplateSelectionOutput,
    TemplateType,
    TermSource,
    ToolDesign,
    ToolDesignOutput,
    ToolInput,
    ToolSpec,
)

BASIC_HTML = (
    "<!DOCTYPE html><html><head><title>BMI</title></head>"
    "<body><h1>BMI Calculator</h1></body></html>"
)
REVISED_HTML = (
    "<!DOCTYPE html><html><head><title>BMI</title></head>"
    "<body><h1>BMI Calculator</h1><p>revised</p></body></html>"
)

BMI_SPEC = ToolSpec(
    name="BMI Calculator",
    purpose="Calculate body mass index from height and weight",
    inputs=[
        ToolInput(name="height", type="number", label="Height (cm)"),
        ToolInput(name="weight", type="number", label="Weight (kg)"),
    ],
    output_type="text",
    processing_logic="weight / (height/100)^2",
)


def passing_grade(score: int = 8) -> QualityGradingOutput:
    return QualityGradingOutput(result=GradeResult(passed=True, score=score, summary="good"))


def failing_grade(score: int = 3) -> QualityGradingOutput:
    return QualityGradingOutput(result=GradeResult(
        passed=False,
        score=score,
        summary=f"score {score}",
        must_fix=[f"fix from grade {score}"],
    ))


def course_analysis() -> CourseAnalysis:
    return CourseAnalysis(
        module_title="Sprint 6: Cashflow Story",
        core_concept="Improve cash with small lever changes",
        numbered_framework=NumberedFramework(
            framework_name="Power of One",
            items=[
                FrameworkItemSource(
                    number=1, name="Price", full_label="Lever 1: Price",
                    definition="Raise price by 1%", tool_input_label="Price Increase %",
                ),
                FrameworkItemSource(
                    number=2, name="Volume", full_label="Lever 2: Volume",
                    definition="Sell 1% more units", tool_input_label="Volume Increase %",
                ),
            ],
        ),
        key_terminology=[TermSource(term="Power of One", definition="Small lever changes")],
        expert_wisdom=[ExpertWisdom(quote="Revenue is vanity, profit is sanity, but cash is king.", source="Alan Miltz")],
    )


def tool_design() -> ToolDesign:
    return ToolDesign(
        name="Cashflow Lever Tool",
        tagline="See what 1% does to your cash",
        inputs=[
            DesignInput(name="price", type="number", label="Price Increase %", placeholder="e.g., 1"),
            DesignInput(name="volume", type="number", label="Volume Increase %", placeholder="e.g., 2"),
        ],
        processing_logic="Sum the cash impact of each lever",
        go_threshold="Cash impact above 10k",
        no_go_threshold="Cash impact below 10k",
    )


DEFAULT_OUTPUTS: dict[StageName, Any] = {
    StageName.SPEC_EXTRACTION: SpecExtractionOutput(kind="spec", tool_spec=BMI_SPEC),
    StageName.CONTENT_SUMMARIZATION: ContentSummarizationOutput(summary="summary"),
    StageName.COURSE_ANALYSIS: CourseAnalysisOutput(analysis=course_analysis()),
    StageName.TOOL_DESIGN: ToolDesignOutput(design=tool_design()),
    StageName.AUDIENCE_PROFILING: AudienceProfilingOutput(profile={"persona": "founder"}),
    StageName.EXAMPLE_GENERATION: ExampleGenerationOutput(test_scenarios=[{"name": "GO"}]),
    StageName.COPY_GENERATION: CopyGenerationOutput(copy_text={"tool_title": "THE BMI CALCULATOR"}),
    StageName.TEMPLATE_SELECTION: TemplateSelectionOutput(
        decision=TemplateDecision(template=TemplateType.CALCULATOR, reasoning="numeric inputs")
    ),
    StageName.ARTIFACT_BUILDING: ArtifactBuildingOutput(html=BASIC_HTML),
    StageName.COMPLIANCE_AUDITING: ComplianceAuditingOutput(),
    StageName.QUALITY_GRADING: passing_grade(),
    StageName.FEEDBACK_REVISION: FeedbackRevisionOutput(html=REVISED_HTML),
}


class FakeStage:
    """Scripted stage.

    Returns `outputs` in order, repeating the last one. An exception in the
    list is raised instead of returned. `handler`, when given, wins.
    """

    def __init__(
        self,
        name: StageName,
        outputs: Optional[list[Any]] = None,
        handler: Optional[Callable[[Any, Any], Any]] = None,
        call_log: Optional[list[str]] = None,
    ):
        self.name = name
        self.outputs = list(outputs) if outputs else [DEFAULT_OUTPUTS[name]]
        self.handler = handler
        self.call_log = call_log
        self.inputs: list[Any] = []

    async def execute(self, input: Any, context: Any) -> Any:
        self.inputs.append(input)
        if self.call_log is not None:
            self.call_log.append(self.name.value)
        if self.handler is not None:
            return self.handler(input, context)
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(output, BaseException):
            raise output
        return output

    @property
    def call_count(self) -> int:
        return len(self.inputs)


class SleepRecorder:
    """Stands in for asyncio.sleep; records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def call_log() -> list[str]:
    return []


@pytest.fixture
def stages(call_log) -> dict[StageName, FakeStage]:
    """One FakeStage per stage name, all writing to call_log."""
    return {name: FakeStage(name, call_log=call_log) for name in StageName}


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def event_log() -> PipelineEventLog:
    return PipelineEventLog()


@pytest.fixture
def make_factory(stages, sleeper, event_log):
    """Build a ToolFactory over the fake stages.

    Usage:
        factory = make_factory(max_revisions=3, scorer=scorer)
    """

    def _make(
        scorer=None,
        omit: tuple[StageName, ...] = (),
        **config_overrides: Any,
    ) -> ToolFactory:
        config = FactoryConfig(**config_overrides)
        registry = StageRegistry(s for name, s in stages.items() if name not in omit)
        retry_policy = RetryPolicy(
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            sleep=sleeper,
        )
        return ToolFactory(
            registry,
            config=config,
            retry_policy=retry_policy,
            scorer=scorer,
            event_log=event_log,
        )

    return _make
