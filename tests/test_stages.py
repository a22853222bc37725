"""
Tests for LLM-backed stages, the prompt library and the stage registry.

Stages run against an AsyncMock completion port; the end-to-end tests run the
real registry over the offline MockBackend.
"""

import json
from unittest.mock import AsyncMock

import pytest

from toolfactory.errors import StageOutputError, UnknownStageError
from toolfactory.llm.backends import CompletionResponse
from toolfactory.llm.mock import MockBackend
from toolfactory.pipeline.context import PipelineContext, RunRequest
from toolfactory.pipeline.orchestrator import ToolFactory
from toolfactory.stages.building import ArtifactBuildingStage, TemplateSelectionStage
from toolfactory.stages.composer import StageComposer
from toolfactory.stages.enrichment import DEFAULT_PROFILE, AudienceProfilingStage
from toolfactory.stages.extraction import SpecExtractionStage
from toolfactory.stages.library import PromptLibrary
from toolfactory.stages.registry import StageRegistry, build_stage_registry
from toolfactory.stages.review import (
    QA_PARSE_FAILED,
    ComplianceAuditingStage,
    QualityGradingStage,
    parse_grade,
)
from toolfactory.stages.schemas import (
    STAGE_IO,
    ArtifactBuildingInput,
    AudienceProfilingInput,
    ComplianceAuditingInput,
    QualityGradingInput,
    SpecExtractionInput,
    StageName,
    TemplateSelectionInput,
    TemplateType,
)

from conftest import BASIC_HTML, BMI_SPEC


def port_returning(content: str) -> AsyncMock:
    port = AsyncMock()
    port.complete.return_value = CompletionResponse(content=content, model="test-model")
    return port


@pytest.fixture
def context():
    return PipelineContext(run_id="stage-test")


@pytest.fixture(scope="module")
def composer():
    return StageComposer()


class TestPromptLibrary:
    """Stage definitions and templates shipped with the package."""

    def test_every_stage_has_definition_and_template(self):
        library = PromptLibrary()
        assert set(library.list_definitions()) == set(StageName)
        for name in StageName:
            definition = library.get_definition(name)
            assert library.get_template(definition.template), name

    def test_unknown_stage_raises(self, tmp_path):
        """A library without definitions knows no stages."""
        library = PromptLibrary(definitions_file=tmp_path / "missing.yaml", templates_dir=tmp_path)
        with pytest.raises(UnknownStageError):
            library.get_definition(StageName.SPEC_EXTRACTION)

    def test_compose_renders_title_and_budget(self, composer):
        prompt = composer.compose(StageName.ARTIFACT_BUILDING)
        assert prompt.system_prompt.startswith("# Tool Building")
        assert prompt.max_tokens == 8192
        assert prompt.model is None

    def test_compose_renders_variables(self, composer):
        prompt = composer.compose(StageName.QUALITY_GRADING, criteria=["decision", "brand"], pass_score=5)
        assert "A tool passes with 5 or more" in prompt.system_prompt
        assert '"decision"' in prompt.system_prompt

    def test_model_override_from_definitions(self, composer):
        prompt = composer.compose(StageName.SPEC_EXTRACTION)
        assert prompt.model == "claude-haiku-4-5-20251001"


class TestSpecExtractionStage:
    """Free-form request to ToolSpec or ClarificationRequest."""

    @pytest.mark.asyncio
    async def test_spec_reply(self, context, composer):
        port = port_returning("```json\n" + BMI_SPEC.model_dump_json() + "\n```")
        stage = SpecExtractionStage(port, composer)

        output = await stage.execute(SpecExtractionInput(source_text="BMI please"), context)

        assert output.kind == "spec"
        assert output.tool_spec.name == "BMI Calculator"
        system_prompt, user_prompt, max_tokens = port.complete.await_args.args
        assert system_prompt.startswith("# Tool Specification Extraction")
        assert user_prompt == "BMI please"
        assert port.complete.await_args.kwargs["model"] == "claude-haiku-4-5-20251001"

    @pytest.mark.asyncio
    async def test_clarification_reply(self, context, composer):
        reply = json.dumps({"needs_clarification": True, "questions": ["What inputs?"]})
        stage = SpecExtractionStage(port_returning(reply), composer)

        output = await stage.execute(SpecExtractionInput(source_text="a tool"), context)

        assert output.kind == "clarification"
        assert output.clarification.questions == ["What inputs?"]
        assert output.tool_spec is None

    @pytest.mark.asyncio
    async def test_clarification_without_questions_is_error(self, context, composer):
        stage = SpecExtractionStage(port_returning('{"needs_clarification": true}'), composer)
        with pytest.raises(StageOutputError):
            await stage.execute(SpecExtractionInput(source_text="a tool"), context)

    @pytest.mark.asyncio
    async def test_unparseable_reply_is_error(self, context, composer):
        stage = SpecExtractionStage(port_returning("I cannot help with that."), composer)
        with pytest.raises(StageOutputError, match="spec_extraction"):
            await stage.execute(SpecExtractionInput(source_text="a tool"), context)


class TestEnrichmentStages:
    """Enrichment never fails a run on an unparseable reply."""

    @pytest.mark.asyncio
    async def test_profile_parsed(self, context, composer):
        stage = AudienceProfilingStage(port_returning('{"persona": "CFO"}'), composer)
        output = await stage.execute(AudienceProfilingInput(tool_spec=BMI_SPEC), context)
        assert output.profile["persona"] == "CFO"

    @pytest.mark.asyncio
    async def test_profile_defaults_on_garbage(self, context, composer):
        stage = AudienceProfilingStage(port_returning("no json here"), composer)
        output = await stage.execute(AudienceProfilingInput(tool_spec=BMI_SPEC), context)
        assert output.stage == "audience_profiling"
        assert output.profile

    @pytest.mark.asyncio
    async def test_default_profiles_are_independent(self, context, composer):
        """Editing one fallback profile leaves later fallbacks and the defaults untouched."""
        stage = AudienceProfilingStage(port_returning("no json here"), composer)
        first = await stage.execute(AudienceProfilingInput(tool_spec=BMI_SPEC), context)
        second = await stage.execute(AudienceProfilingInput(tool_spec=BMI_SPEC), context)

        first.profile["primary_persona"]["name"] = "Edited"
        first.profile["red_flags"].append("Edited")

        assert first.profile["primary_persona"] is not second.profile["primary_persona"]
        assert second.profile["primary_persona"]["name"] == "Growth-Stage Entrepreneur"
        assert DEFAULT_PROFILE["primary_persona"]["name"] == "Growth-Stage Entrepreneur"
        assert "Edited" not in DEFAULT_PROFILE["red_flags"]


class TestBuildingStages:
    """Template selection and HTML generation."""

    @pytest.mark.asyncio
    async def test_template_selection(self, context, composer):
        reply = '{"template": "CHECKER", "reasoning": "yes or no answer"}'
        stage = TemplateSelectionStage(port_returning(reply), composer)
        output = await stage.execute(TemplateSelectionInput(tool_spec=BMI_SPEC), context)
        assert output.decision.template == TemplateType.CHECKER

    @pytest.mark.asyncio
    async def test_builder_extracts_fenced_html(self, context, composer):
        port = port_returning(f"Here is your tool:\n```html\n{BASIC_HTML}\n```\nEnjoy!")
        stage = ArtifactBuildingStage(port, composer)
        output = await stage.execute(ArtifactBuildingInput(tool_spec=BMI_SPEC), context)
        assert output.html == BASIC_HTML

    @pytest.mark.asyncio
    async def test_builder_prompt_carries_fix_instructions(self, context, composer):
        port = port_returning(BASIC_HTML)
        stage = ArtifactBuildingStage(port, composer)
        await stage.execute(
            ArtifactBuildingInput(
                tool_spec=BMI_SPEC,
                template=TemplateType.CALCULATOR,
                fix_instructions=["Include the exact framework item label \"Price\" as visible text."],
            ),
            context,
        )
        user_prompt = port.complete.await_args.args[1]
        assert "## Corrections Required" in user_prompt
        assert '1. Include the exact framework item label "Price"' in user_prompt
        assert "CALCULATOR" in user_prompt

    @pytest.mark.asyncio
    async def test_builder_rejects_fragment(self, context, composer):
        stage = ArtifactBuildingStage(port_returning("<div>not a document</div>"), composer)
        with pytest.raises(StageOutputError):
            await stage.execute(ArtifactBuildingInput(tool_spec=BMI_SPEC), context)


class TestReviewStages:
    """Compliance audit and QA grading."""

    @pytest.mark.asyncio
    async def test_compliance_defaults_to_pass(self, context, composer):
        stage = ComplianceAuditingStage(port_returning("unreadable"), composer)
        output = await stage.execute(ComplianceAuditingInput(html=BASIC_HTML), context)
        assert output.overall_compliance == "PASS"
        assert output.violations == []

    @pytest.mark.asyncio
    async def test_grading_applies_pass_score(self, context, composer):
        """The model's own pass flag is ignored in favour of the threshold."""
        reply = json.dumps({"passed": True, "score": 5, "must_fix": ["Add a verdict"]})
        stage = QualityGradingStage(port_returning(reply), composer, pass_score=6)
        output = await stage.execute(QualityGradingInput(html=BASIC_HTML, tool_spec=BMI_SPEC), context)

        assert output.result.score == 5
        assert not output.result.passed
        assert output.result.must_fix == ["Add a verdict"]

    def test_unparseable_grade_fails_for_manual_review(self):
        result = parse_grade("The tool looks great!", pass_score=6)
        assert not result.passed
        assert result.score == 6
        assert result.must_fix == [QA_PARSE_FAILED]

    def test_score_computed_from_criteria_when_missing(self):
        reply = json.dumps({"criteria": {
            "decision": {"passed": True},
            "brand": {"passed": True},
            "results": {"passed": False, "feedback": "too small"},
        }})
        result = parse_grade(reply, pass_score=2)
        assert result.score == 2
        assert result.passed
        assert result.criteria["results"].feedback == "too small"

    def test_out_of_range_score_falls_back(self):
        result = parse_grade('{"score": 42}', pass_score=6)
        assert result.score == 6
        assert result.passed


class TestStageRegistry:

    def test_build_registers_every_stage(self):
        registry = build_stage_registry(MockBackend())
        assert set(registry.list_stages()) == set(StageName)

    def test_unknown_stage(self):
        registry = StageRegistry()
        with pytest.raises(UnknownStageError, match="quality_grading"):
            registry.get(StageName.QUALITY_GRADING)
        with pytest.raises(UnknownStageError):
            registry.get("not_a_stage")
        assert StageName.QUALITY_GRADING not in registry

    def test_stage_io_covers_every_stage(self):
        """Each stage maps to the input and output models tagged with its name."""
        assert set(STAGE_IO) == set(StageName)
        for name, (input_cls, output_cls) in STAGE_IO.items():
            assert input_cls.model_fields["stage"].default == name.value
            assert output_cls.model_fields["stage"].default == name.value


class TestMockBackendRun:
    """Full runs over the real stages and the offline backend."""

    @pytest.mark.asyncio
    async def test_free_form_run(self):
        llm = MockBackend()
        factory = ToolFactory(build_stage_registry(llm))
        result = await factory.process_request(RunRequest(
            run_id="mock-1",
            source_text="Build a BMI calculator from height and weight",
        ))

        assert result.status == "completed"
        assert result.revision_count == 0
        assert result.grade_result.score == 8
        assert "<!DOCTYPE html>" in result.artifact
        assert llm.calls == [
            "tool specification extraction",
            "audience profiling",
            "example generation",
            "microcopy writing",
            "template selection",
            "tool building",
            "brand compliance audit",
            "quality grading",
        ]

    @pytest.mark.asyncio
    async def test_structured_run(self):
        llm = MockBackend()
        factory = ToolFactory(build_stage_registry(llm))
        content = (
            "MODULE: Sprint 6 Cashflow Story\n"
            "Learning objective: pick the cash lever to pull first.\n"
            "BRAIN JUICE\nTHINK AND DO: list your levers.\n"
        )
        result = await factory.process_request(RunRequest(run_id="mock-2", source_text=content))

        assert result.status == "completed"
        assert llm.calls[:2] == ["course knowledge analysis", "decision tool design"]
        assert result.validation.passed
        assert result.tool_spec.course_context["module_title"].startswith("MODULE: Sprint 6")
