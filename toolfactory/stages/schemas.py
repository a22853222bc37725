"""Pydantic schemas for pipeline stages.

Every stage has exactly one input model and one output model. Both carry a
`stage` literal so that StageInput / StageOutput are closed discriminated
unions: the executor dispatches on the tag instead of sniffing fields.

Business-shaped payloads (audience profile, case studies, microcopy) are kept
as plain dicts. The orchestrator only forwards them to the builder.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class StageName(str, Enum):
    """Stage identifiers for the factory pipeline."""

    SPEC_EXTRACTION = "spec_extraction"
    CONTENT_SUMMARIZATION = "content_summarization"
    COURSE_ANALYSIS = "course_analysis"
    TOOL_DESIGN = "tool_design"
    AUDIENCE_PROFILING = "audience_profiling"
    EXAMPLE_GENERATION = "example_generation"
    COPY_GENERATION = "copy_generation"
    TEMPLATE_SELECTION = "template_selection"
    ARTIFACT_BUILDING = "artifact_building"
    COMPLIANCE_AUDITING = "compliance_auditing"
    QUALITY_GRADING = "quality_grading"
    FEEDBACK_REVISION = "feedback_revision"


class TemplateType(str, Enum):
    """Available tool template patterns."""

    CALCULATOR = "CALCULATOR"
    GENERATOR = "GENERATOR"
    ANALYZER = "ANALYZER"
    CONVERTER = "CONVERTER"
    CHECKER = "CHECKER"


class StageDefinition(BaseModel):
    """How a stage talks to the model. Loaded from definitions/stages.yaml."""

    name: StageName
    title: str = Field(..., description="Heading rendered at the top of the system prompt")
    template: str = Field(..., description="Template file under stages/templates/")
    model: Optional[str] = Field(
        default=None,
        description="Model override; None means the router's default model",
    )
    max_tokens: int = Field(default=4096, gt=0)


# ── Tool specification ──────────────────────────────────


class ToolInput(BaseModel):
    """A single input field for a tool."""

    name: str
    type: str = Field(default="number", description="text | number | select | textarea")
    label: str
    required: bool = True
    options: Optional[list[str]] = None
    placeholder: Optional[str] = None


class EnhancedContext(BaseModel):
    """Enrichment stage outputs merged into the spec before building."""

    audience_profile: dict[str, Any] = Field(default_factory=dict)
    case_studies: list[dict[str, Any]] = Field(default_factory=list)
    test_scenarios: list[dict[str, Any]] = Field(default_factory=list)
    copy_text: dict[str, Any] = Field(default_factory=dict)


class ToolSpec(BaseModel):
    """Structured tool specification."""

    name: str
    purpose: str
    inputs: list[ToolInput] = Field(default_factory=list)
    output_type: str = Field(default="text", description="text | list | table | download")
    processing_logic: str = ""
    course_context: Optional[dict[str, Any]] = Field(
        default=None,
        description="Module title, framework, formulas and decision criteria (course sources only)",
    )
    enhanced_context: Optional[EnhancedContext] = None


class ClarificationRequest(BaseModel):
    """Returned by spec extraction when the request lacks required information."""

    questions: list[str] = Field(..., min_length=1)
    partial_spec: dict[str, Any] = Field(default_factory=dict)


class TemplateDecision(BaseModel):
    template: TemplateType
    reasoning: str
    adaptations: list[str] = Field(default_factory=list)


class QACriterion(BaseModel):
    passed: bool
    feedback: str = "OK"


QA_CRITERIA = (
    "clarity",
    "consistency",
    "actionability",
    "simplicity",
    "completeness",
    "usability",
    "correctness",
    "polish",
)


class GradeResult(BaseModel):
    """Result of one QA grading call."""

    passed: bool
    score: int = Field(..., ge=0, le=8)
    criteria: dict[str, QACriterion] = Field(default_factory=dict)
    summary: str = ""
    must_fix: list[str] = Field(default_factory=list)


class ComplianceViolation(BaseModel):
    category: str
    severity: str = "MINOR"
    location: str = ""
    issue: str
    current_value: str = ""
    correct_value: str = ""


# ── Course sub-pipeline shapes ──────────────────────────


class FrameworkItemSource(BaseModel):
    """One item of a numbered methodology as extracted from course material."""

    number: int
    name: str = ""
    full_label: str = ""
    definition: str = ""
    tool_input_label: str = ""


class NumberedFramework(BaseModel):
    framework_name: str = ""
    items: list[FrameworkItemSource] = Field(default_factory=list)


class TermSource(BaseModel):
    term: str = ""
    definition: str = ""
    how_to_use_in_tool: str = ""


class ExpertWisdom(BaseModel):
    quote: str
    source: str = ""


class DecisionCriteria(BaseModel):
    go_condition: str = ""
    no_go_condition: str = ""
    thresholds: list[str] = Field(default_factory=list)


class CourseAnalysis(BaseModel):
    """What the course analysis stage extracts from structured material."""

    module_title: str = ""
    core_concept: str = ""
    learning_objective: str = ""
    numbered_framework: Optional[NumberedFramework] = None
    key_terminology: list[TermSource] = Field(default_factory=list)
    expert_wisdom: list[ExpertWisdom] = Field(default_factory=list)
    checklist: list[str] = Field(default_factory=list)
    framework_steps: list[str] = Field(
        default_factory=list, description="Un-numbered framework steps"
    )
    formulas: list[dict[str, Any]] = Field(default_factory=list)
    decision_criteria: Optional[DecisionCriteria] = None


class DesignInput(BaseModel):
    name: str
    type: str = "number"
    label: str = ""
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    required: bool = True
    options: Optional[list[str]] = None


class ToolDesign(BaseModel):
    """The tool design stage's blueprint for applying the course knowledge."""

    name: str = "Decision Tool"
    tagline: str = "Make informed decisions"
    inputs: list[DesignInput] = Field(default_factory=list)
    processing_logic: str = ""
    formula: Optional[str] = None
    go_threshold: str = ""
    no_go_threshold: str = ""
    on_go: str = ""
    on_no_go: str = ""
    result_interpretation: str = ""
    expert_quote_to_display: Optional[ExpertWisdom] = None


# ── Builder context (required-content contract) ─────────


class FrameworkItem(BaseModel):
    index: int
    label: str
    definition: str = ""
    input_kind: str = "number"
    placeholder: str = ""


class TermRequirement(BaseModel):
    term: str
    usage_hint: str = "helpText"


class ExpertQuote(BaseModel):
    quote: str
    source: str = ""


class Calculation(BaseModel):
    formula: str
    go_criterion: str
    no_go_criterion: str


class ToolIdentity(BaseModel):
    name: str
    tagline: str = ""
    module_reference: str = ""


class BuilderContext(BaseModel):
    """Content the generated artifact must carry verbatim.

    framework_items is non-empty only when the source had an explicit
    numbered methodology; every item is then required content.
    """

    tool: ToolIdentity
    framework_items: list[FrameworkItem] = Field(default_factory=list)
    terminology: list[TermRequirement] = Field(default_factory=list)
    expert_quote: Optional[ExpertQuote] = None
    checklist: Optional[list[str]] = None
    calculation: Optional[Calculation] = None


# ── Stage inputs ────────────────────────────────────────


class SpecExtractionInput(BaseModel):
    stage: Literal["spec_extraction"] = "spec_extraction"
    source_text: str


class ContentSummarizationInput(BaseModel):
    stage: Literal["content_summarization"] = "content_summarization"
    content: str
    chunk: bool = Field(default=False, description="Summarize section by section")


class CourseAnalysisInput(BaseModel):
    stage: Literal["course_analysis"] = "course_analysis"
    content: str


class ToolDesignInput(BaseModel):
    stage: Literal["tool_design"] = "tool_design"
    analysis: CourseAnalysis
    content_excerpt: str = ""


class AudienceProfilingInput(BaseModel):
    stage: Literal["audience_profiling"] = "audience_profiling"
    tool_spec: ToolSpec
    content_summary: str = ""


class ExampleGenerationInput(BaseModel):
    stage: Literal["example_generation"] = "example_generation"
    tool_spec: ToolSpec


class CopyGenerationInput(BaseModel):
    stage: Literal["copy_generation"] = "copy_generation"
    tool_spec: ToolSpec


class TemplateSelectionInput(BaseModel):
    stage: Literal["template_selection"] = "template_selection"
    tool_spec: ToolSpec


class ArtifactBuildingInput(BaseModel):
    stage: Literal["artifact_building"] = "artifact_building"
    tool_spec: ToolSpec
    template: Optional[TemplateType] = None
    builder_context: Optional[BuilderContext] = None
    fix_instructions: list[str] = Field(
        default_factory=list,
        description="Corrections from the previous attempt's output validation",
    )


class ComplianceAuditingInput(BaseModel):
    stage: Literal["compliance_auditing"] = "compliance_auditing"
    html: str


class QualityGradingInput(BaseModel):
    stage: Literal["quality_grading"] = "quality_grading"
    html: str
    tool_spec: ToolSpec


class FeedbackRevisionInput(BaseModel):
    stage: Literal["feedback_revision"] = "feedback_revision"
    html: str
    feedback: list[str]
    tool_spec: ToolSpec


StageInput = Annotated[
    Union[
        SpecExtractionInput,
        ContentSummarizationInput,
        CourseAnalysisInput,
        ToolDesignInput,
        AudienceProfilingInput,
        ExampleGenerationInput,
        CopyGenerationInput,
        TemplateSelectionInput,
        ArtifactBuildingInput,
        ComplianceAuditingInput,
        QualityGradingInput,
        FeedbackRevisionInput,
    ],
    Field(discriminator="stage"),
]


# ── Stage outputs ───────────────────────────────────────


class SpecExtractionOutput(BaseModel):
    stage: Literal["spec_extraction"] = "spec_extraction"
    kind: Literal["spec", "clarification"]
    tool_spec: Optional[ToolSpec] = None
    clarification: Optional[ClarificationRequest] = None


class ContentSummarizationOutput(BaseModel):
    stage: Literal["content_summarization"] = "content_summarization"
    summary: str
    sections_summarized: int = 1


class CourseAnalysisOutput(BaseModel):
    stage: Literal["course_analysis"] = "course_analysis"
    analysis: CourseAnalysis


class ToolDesignOutput(BaseModel):
    stage: Literal["tool_design"] = "tool_design"
    design: ToolDesign


class AudienceProfilingOutput(BaseModel):
    stage: Literal["audience_profiling"] = "audience_profiling"
    profile: dict[str, Any] = Field(default_factory=dict)


class ExampleGenerationOutput(BaseModel):
    stage: Literal["example_generation"] = "example_generation"
    case_studies: list[dict[str, Any]] = Field(default_factory=list)
    test_scenarios: list[dict[str, Any]] = Field(default_factory=list)


class CopyGenerationOutput(BaseModel):
    stage: Literal["copy_generation"] = "copy_generation"
    copy_text: dict[str, Any] = Field(default_factory=dict)


class TemplateSelectionOutput(BaseModel):
    stage: Literal["template_selection"] = "template_selection"
    decision: TemplateDecision


class ArtifactBuildingOutput(BaseModel):
    stage: Literal["artifact_building"] = "artifact_building"
    html: str


class ComplianceAuditingOutput(BaseModel):
    stage: Literal["compliance_auditing"] = "compliance_auditing"
    overall_compliance: Literal["PASS", "FAIL", "NEEDS_FIXES"] = "PASS"
    score: float = 0.0
    violations: list[ComplianceViolation] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    recommendation: str = ""


class QualityGradingOutput(BaseModel):
    stage: Literal["quality_grading"] = "quality_grading"
    result: GradeResult


class FeedbackRevisionOutput(BaseModel):
    stage: Literal["feedback_revision"] = "feedback_revision"
    html: str


StageOutput = Annotated[
    Union[
        SpecExtractionOutput,
        ContentSummarizationOutput,
        CourseAnalysisOutput,
        ToolDesignOutput,
        AudienceProfilingOutput,
        ExampleGenerationOutput,
        CopyGenerationOutput,
        TemplateSelectionOutput,
        ArtifactBuildingOutput,
        ComplianceAuditingOutput,
        QualityGradingOutput,
        FeedbackRevisionOutput,
    ],
    Field(discriminator="stage"),
]


STAGE_IO: dict[StageName, tuple[type[BaseModel], type[BaseModel]]] = {
    StageName.SPEC_EXTRACTION: (SpecExtractionInput, SpecExtractionOutput),
    StageName.CONTENT_SUMMARIZATION: (ContentSummarizationInput, ContentSummarizationOutput),
    StageName.COURSE_ANALYSIS: (CourseAnalysisInput, CourseAnalysisOutput),
    StageName.TOOL_DESIGN: (ToolDesignInput, ToolDesignOutput),
    StageName.AUDIENCE_PROFILING: (AudienceProfilingInput, AudienceProfilingOutput),
    StageName.EXAMPLE_GENERATION: (ExampleGenerationInput, ExampleGenerationOutput),
    StageName.COPY_GENERATION: (CopyGenerationInput, CopyGenerationOutput),
    StageName.TEMPLATE_SELECTION: (TemplateSelectionInput, TemplateSelectionOutput),
    StageName.ARTIFACT_BUILDING: (ArtifactBuildingInput, ArtifactBuildingOutput),
    StageName.COMPLIANCE_AUDITING: (ComplianceAuditingInput, ComplianceAuditingOutput),
    StageName.QUALITY_GRADING: (QualityGradingInput, QualityGradingOutput),
    StageName.FEEDBACK_REVISION: (FeedbackRevisionInput, FeedbackRevisionOutput),
}
