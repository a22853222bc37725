"""
Tests for ToolFactory: stage sequencing, revision loop, failure handling,
output validation and background scoring.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from toolfactory.errors import StageInputMismatchError, StageOutputError, UnknownStageError
from toolfactory.pipeline.context import PipelineContext, RunRequest
from toolfactory.stages.schemas import (
    ArtifactBuildingOutput,
    ClarificationRequest,
    ExampleGenerationInput,
    SpecExtractionInput,
    SpecExtractionOutput,
    StageName,
    TemplateType,
)

from conftest import (
    BASIC_HTML,
    BMI_SPEC,
    REVISED_HTML,
    FakeStage,
    failing_grade,
    passing_grade,
)

BMI_REQUEST = "Build a BMI calculator that takes height and weight and tells me my category"

FREE_FORM_SEQUENCE = [
    "spec_extraction",
    "audience_profiling",
    "example_generation",
    "copy_generation",
    "template_selection",
    "artifact_building",
    "compliance_auditing",
    "quality_grading",
]

COURSE_CONTENT = """# MODULE: Sprint 6 Cashflow Story
SPRINT 6 learning objective: decide which cash lever to pull first.
INDIVIDUAL PREPARATION
List your Power of One levers: Price and Volume.
"""

QUOTE = "Revenue is vanity, profit is sanity, but cash is king."


def request(source: str = BMI_REQUEST, run_id: str = "run-1", **fields) -> RunRequest:
    return RunRequest(run_id=run_id, source_text=source, **fields)


class TestHappyPath:
    """A free-form request that passes QA first time."""

    @pytest.mark.asyncio
    async def test_bmi_request_completes_without_revision(self, make_factory, stages, call_log):
        """Stages run in order; the builder runs once and no revision happens."""
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.status == "completed"
        assert result.success
        assert result.revision_count == 0
        assert result.artifact == BASIC_HTML
        assert result.grade_result.passed
        assert result.validation is None
        assert result.error is None
        assert call_log == FREE_FORM_SEQUENCE
        assert stages[StageName.ARTIFACT_BUILDING].call_count == 1

    @pytest.mark.asyncio
    async def test_timing_covers_every_stage_run(self, make_factory):
        factory = make_factory()
        result = await factory.process_request(request())

        assert set(result.timing.per_stage) == set(FREE_FORM_SEQUENCE)
        assert result.timing.total_ms >= 0

    @pytest.mark.asyncio
    async def test_enrichment_sees_base_spec_only(self, make_factory, stages):
        """Enrichment stages get the unenriched spec; the builder gets the merged one."""
        factory = make_factory()
        result = await factory.process_request(request())

        for name in (
            StageName.AUDIENCE_PROFILING,
            StageName.EXAMPLE_GENERATION,
            StageName.COPY_GENERATION,
        ):
            assert stages[name].inputs[0].tool_spec.enhanced_context is None

        built_spec = stages[StageName.ARTIFACT_BUILDING].inputs[0].tool_spec
        assert built_spec.enhanced_context.audience_profile == {"persona": "founder"}
        assert built_spec.enhanced_context.test_scenarios == [{"name": "GO"}]
        assert built_spec.enhanced_context.copy_text == {"tool_title": "THE BMI CALCULATOR"}
        assert result.tool_spec == built_spec

    @pytest.mark.asyncio
    async def test_template_hint_skips_selection(self, make_factory, stages, call_log):
        factory = make_factory()
        result = await factory.process_request(request(template_hint=TemplateType.CHECKER))

        assert result.status == "completed"
        assert "template_selection" not in call_log
        assert stages[StageName.ARTIFACT_BUILDING].inputs[0].template == TemplateType.CHECKER

    @pytest.mark.asyncio
    async def test_skip_template_selection(self, make_factory, stages, call_log):
        factory = make_factory()
        await factory.process_request(request(skip_template_selection=True))

        assert "template_selection" not in call_log
        assert stages[StageName.ARTIFACT_BUILDING].inputs[0].template is None

    @pytest.mark.asyncio
    async def test_selected_template_reaches_builder(self, make_factory, stages):
        factory = make_factory()
        await factory.process_request(request())
        assert stages[StageName.ARTIFACT_BUILDING].inputs[0].template == TemplateType.CALCULATOR

    @pytest.mark.asyncio
    async def test_events_recorded_per_stage(self, make_factory, event_log):
        """Each stage emits start then complete, tagged with the run id."""
        factory = make_factory()
        await factory.process_request(request())

        events = event_log.events("run-1")
        stage_events = [(e.event, e.stage) for e in events if e.stage]
        assert ("start", "spec_extraction") in stage_events
        assert ("complete", "quality_grading") in stage_events
        assert events[-1].event == "complete"
        assert events[-1].stage is None


class TestClarification:
    """Spec extraction can stop the run with questions."""

    @pytest.mark.asyncio
    async def test_clarification_short_circuits(self, make_factory, stages, call_log):
        """No stage after spec extraction runs."""
        stages[StageName.SPEC_EXTRACTION].outputs = [SpecExtractionOutput(
            kind="clarification",
            clarification=ClarificationRequest(questions=["What inputs?", "What output?"]),
        )]
        factory = make_factory()
        result = await factory.process_request(request("Build me a tool"))

        assert result.status == "needs_clarification"
        assert not result.success
        assert result.clarification.questions == ["What inputs?", "What output?"]
        assert result.artifact is None
        assert result.tool_spec is None
        assert call_log == ["spec_extraction"]


class TestRevisionLoop:
    """Grade, revise and re-grade, bounded by max_revisions."""

    @pytest.mark.asyncio
    async def test_always_failing_qa_stops_at_budget(self, make_factory, stages):
        """With max_revisions=3 the run completes with revision_count 3 and the third grade."""
        stages[StageName.QUALITY_GRADING].outputs = [failing_grade(s) for s in (1, 2, 3, 4, 5)]
        factory = make_factory(max_revisions=3)
        result = await factory.process_request(request())

        assert result.status == "completed"
        assert result.revision_count == 3
        assert result.grade_result.score == 3
        assert not result.grade_result.passed
        assert stages[StageName.QUALITY_GRADING].call_count == 3
        assert stages[StageName.FEEDBACK_REVISION].call_count == 2
        assert result.artifact == REVISED_HTML

    @pytest.mark.asyncio
    async def test_revision_passes_on_regrade(self, make_factory, stages):
        stages[StageName.QUALITY_GRADING].outputs = [failing_grade(4), passing_grade(7)]
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.revision_count == 1
        assert result.grade_result.score == 7
        assert result.artifact == REVISED_HTML

    @pytest.mark.asyncio
    async def test_revision_receives_must_fix_list(self, make_factory, stages):
        stages[StageName.QUALITY_GRADING].outputs = [failing_grade(4), passing_grade()]
        factory = make_factory()
        await factory.process_request(request())

        revision_input = stages[StageName.FEEDBACK_REVISION].inputs[0]
        assert revision_input.feedback == ["fix from grade 4"]
        assert revision_input.html == BASIC_HTML

    @pytest.mark.asyncio
    async def test_zero_budget_never_revises(self, make_factory, stages):
        stages[StageName.QUALITY_GRADING].outputs = [failing_grade(2)]
        factory = make_factory(max_revisions=0)
        result = await factory.process_request(request())

        assert result.status == "completed"
        assert result.revision_count == 0
        assert stages[StageName.FEEDBACK_REVISION].call_count == 0


class TestFailures:
    """Stage failures end the run with status failed and the failing stage."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, make_factory, stages, sleeper, event_log):
        stages[StageName.SPEC_EXTRACTION].outputs = [
            RuntimeError("503 Service Unavailable"),
            SpecExtractionOutput(kind="spec", tool_spec=BMI_SPEC),
        ]
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.status == "completed"
        assert sleeper.delays == [1.0]
        assert stages[StageName.SPEC_EXTRACTION].call_count == 2
        assert any(e.event == "retry" and e.stage == "spec_extraction" for e in event_log.events())

    @pytest.mark.asyncio
    async def test_permanent_failure_names_stage(self, make_factory, stages, call_log, sleeper):
        stages[StageName.AUDIENCE_PROFILING].outputs = [ValueError("invalid spec")]
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.status == "failed"
        assert not result.success
        assert result.error.stage == StageName.AUDIENCE_PROFILING
        assert "invalid spec" in result.error.message
        assert result.artifact is None
        assert call_log == ["spec_extraction", "audience_profiling"]
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_run(self, make_factory, stages):
        stages[StageName.QUALITY_GRADING].outputs = [ConnectionError("network down")]
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.status == "failed"
        assert result.error.stage == StageName.QUALITY_GRADING
        assert stages[StageName.QUALITY_GRADING].call_count == 3

    @pytest.mark.asyncio
    async def test_unregistered_stage_fails_run(self, make_factory):
        factory = make_factory(omit=(StageName.COPY_GENERATION,))
        result = await factory.process_request(request())

        assert result.status == "failed"
        assert result.error.stage == StageName.COPY_GENERATION
        assert "copy_generation" in result.error.message

    @pytest.mark.asyncio
    async def test_wrong_output_variant_fails_run(self, make_factory, stages):
        stages[StageName.COMPLIANCE_AUDITING].outputs = [ArtifactBuildingOutput(html=BASIC_HTML)]
        factory = make_factory()
        result = await factory.process_request(request())

        assert result.status == "failed"
        assert result.error.stage == StageName.COMPLIANCE_AUDITING

    @pytest.mark.asyncio
    async def test_execute_rejects_unknown_name(self, make_factory):
        factory = make_factory()
        with pytest.raises(UnknownStageError):
            await factory.execute("no_such_stage", SpecExtractionInput(source_text="x"),
                                  PipelineContext(run_id="r"))

    @pytest.mark.asyncio
    async def test_execute_rejects_mismatched_input(self, make_factory, stages):
        """An input variant for another stage is rejected before the stage runs."""
        factory = make_factory()
        bad_input = ExampleGenerationInput(tool_spec=BMI_SPEC)
        with pytest.raises(StageInputMismatchError):
            await factory.execute(StageName.SPEC_EXTRACTION, bad_input, PipelineContext(run_id="r"))
        assert stages[StageName.SPEC_EXTRACTION].call_count == 0

    @pytest.mark.asyncio
    async def test_execute_rejects_lookalike_input(self, make_factory, stages):
        """Carrying the right stage tag is not enough; the input must be that stage's model."""
        factory = make_factory()
        lookalike = SimpleNamespace(stage="spec_extraction", source_text="x")
        with pytest.raises(StageInputMismatchError):
            await factory.execute(StageName.SPEC_EXTRACTION, lookalike, PipelineContext(run_id="r"))
        assert stages[StageName.SPEC_EXTRACTION].call_count == 0

    @pytest.mark.asyncio
    async def test_execute_rejects_lookalike_output(self, make_factory, stages):
        """A stage returning something other than its own output model fails."""
        stages[StageName.SPEC_EXTRACTION].outputs = [
            SimpleNamespace(stage="spec_extraction", tool_spec=BMI_SPEC)
        ]
        factory = make_factory()
        with pytest.raises(StageOutputError):
            await factory.execute(
                StageName.SPEC_EXTRACTION,
                SpecExtractionInput(source_text=BMI_REQUEST),
                PipelineContext(run_id="r"),
            )
        assert stages[StageName.SPEC_EXTRACTION].call_count == 1


class TestRequestValidation:
    """Requests are checked before any stage runs."""

    @pytest.mark.asyncio
    async def test_empty_source_fails_before_stages(self, make_factory, call_log):
        factory = make_factory()
        result = await factory.process_request(request("   "))

        assert result.status == "failed"
        assert result.error.stage == StageName.SPEC_EXTRACTION
        assert call_log == []

    @pytest.mark.asyncio
    async def test_oversized_free_form_fails(self, make_factory, call_log):
        factory = make_factory()
        result = await factory.process_request(request("x" * 10_001))

        assert result.status == "failed"
        assert "too long" in result.error.message
        assert call_log == []

    def test_structured_source_gets_larger_limit(self, make_factory):
        factory = make_factory()
        source = COURSE_CONTENT + "detail " * 3_000
        assert len(source) > 10_000
        assert factory.validate_request(request(source)) is True


class TestStructuredSource:
    """Course material goes through analysis, design and output validation."""

    def _builds(self, stages, *htmls):
        stages[StageName.ARTIFACT_BUILDING].outputs = [ArtifactBuildingOutput(html=h) for h in htmls]

    @pytest.mark.asyncio
    async def test_course_sequence(self, make_factory, stages, call_log):
        """Small course material skips summarization and spec extraction."""
        self._builds(stages, f"<div>Price Increase % Volume Increase % {QUOTE}</div>")
        factory = make_factory()
        result = await factory.process_request(request(COURSE_CONTENT))

        assert result.status == "completed"
        assert call_log[:2] == ["course_analysis", "tool_design"]
        assert "spec_extraction" not in call_log
        assert "content_summarization" not in call_log
        assert result.tool_spec.name == "Cashflow Lever Tool"
        assert result.validation.passed

    @pytest.mark.asyncio
    async def test_rebuilds_with_fix_instructions(self, make_factory, stages):
        """Each rebuild carries fixes for what the previous build missed."""
        self._builds(
            stages,
            "<div>nothing useful</div>",
            "<div>Price Increase % and Volume Increase %</div>",
            f"<div>Price Increase % Volume Increase % {QUOTE}</div>",
        )
        factory = make_factory()
        result = await factory.process_request(request(COURSE_CONTENT))

        builder = stages[StageName.ARTIFACT_BUILDING]
        assert builder.call_count == 3
        assert [len(i.fix_instructions) for i in builder.inputs] == [0, 3, 1]
        assert builder.inputs[0].builder_context is not None
        assert result.validation.passed
        assert QUOTE in result.artifact

    @pytest.mark.asyncio
    async def test_validation_exhaustion_keeps_last_artifact(self, make_factory, stages):
        """After 1 + max_output_validation_retries builds the run continues anyway."""
        self._builds(stages, "<div>missing everything</div>")
        factory = make_factory()
        result = await factory.process_request(request(COURSE_CONTENT))

        assert result.status == "completed"
        assert stages[StageName.ARTIFACT_BUILDING].call_count == 3
        assert not result.validation.passed
        assert result.artifact == "<div>missing everything</div>"

    @pytest.mark.asyncio
    async def test_large_course_summarized_per_section(self, make_factory, stages, call_log):
        sections = [f"## Part {i}\n" + "lorem ipsum " * 15 for i in range(3)]
        content = COURSE_CONTENT + "\n".join(sections)
        self._builds(stages, f"<div>Price Increase % Volume Increase % {QUOTE}</div>")
        factory = make_factory(summarize_threshold_chars=200, chunk_threshold_chars=400)
        result = await factory.process_request(request(content))

        summarizer = stages[StageName.CONTENT_SUMMARIZATION]
        assert result.status == "completed"
        # Module header plus three parts
        assert summarizer.call_count == 4
        assert all(i.chunk for i in summarizer.inputs)
        assert summarizer.inputs[1].content.startswith("## Part 0")
        analysis_input = stages[StageName.COURSE_ANALYSIS].inputs[0]
        assert analysis_input.content == "\n\n---\n\n".join(["summary"] * 4)
        assert call_log.index("course_analysis") > call_log.index("content_summarization")


class TestBackgroundScoring:
    """Quality scoring runs after the result and never affects it."""

    @pytest.mark.asyncio
    async def test_scorer_receives_artifact(self, make_factory):
        scorer = AsyncMock()
        factory = make_factory(scorer=scorer)
        result = await factory.process_request(request())
        await factory.wait_for_background()

        scorer.score.assert_awaited_once()
        run_id, artifact_id, artifact = scorer.score.await_args.args
        assert run_id == "run-1"
        assert artifact_id.startswith("run-1-")
        assert artifact == result.artifact

    @pytest.mark.asyncio
    async def test_scorer_failure_is_swallowed(self, make_factory):
        scorer = AsyncMock()
        scorer.score.side_effect = RuntimeError("score store unavailable")
        factory = make_factory(scorer=scorer)
        result = await factory.process_request(request())
        await factory.wait_for_background()

        assert result.status == "completed"
        scorer.score.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_scored_when_clarification_needed(self, make_factory, stages):
        stages[StageName.SPEC_EXTRACTION].outputs = [SpecExtractionOutput(
            kind="clarification",
            clarification=ClarificationRequest(questions=["What inputs?"]),
        )]
        scorer = AsyncMock()
        factory = make_factory(scorer=scorer)
        await factory.process_request(request())
        await factory.wait_for_background()

        scorer.score.assert_not_awaited()


class TestConcurrentRuns:
    """One factory serves independent runs."""

    @pytest.mark.asyncio
    async def test_runs_do_not_share_state(self, make_factory, stages):
        stages[StageName.QUALITY_GRADING] = FakeStage(
            StageName.QUALITY_GRADING,
            handler=lambda input, context: (
                failing_grade(2) if context.run_id == "run-a" else passing_grade()
            ),
        )
        factory = make_factory(max_revisions=2)
        result_a, result_b = await asyncio.gather(
            factory.process_request(request(run_id="run-a")),
            factory.process_request(request(run_id="run-b")),
        )

        assert result_a.run_id == "run-a"
        assert result_a.revision_count == 2
        assert result_b.run_id == "run-b"
        assert result_b.revision_count == 0
