"""Tool factory orchestrator.

One run is a fixed sequence:

1. Validate the request (size ceiling depends on whether the source is course material)
2. Course sub-pipeline, or spec extraction (which may stop at needs_clarification)
3. Enrichment: audience profile, examples, microcopy (each from the base spec only)
4. Template selection, unless the caller gave a hint or opted out
5. Build, validating against the BuilderContext and rebuilding with fix instructions
6. Compliance audit (logged, never gating)
7. Grade, revise on failure, re-grade, bounded by max_revisions
8. Assemble the RunResult; quality scoring runs in the background

Any exception from a stage ends the run with status "failed" naming the stage
that was active. Content-validation and grading shortfalls never fail a run.
"""

import asyncio
import hashlib
import logging
import time
from typing import Optional

from toolfactory.config import FactoryConfig
from toolfactory.errors import (
    RequestValidationError,
    StageInputMismatchError,
    StageOutputError,
    UnknownStageError,
)
from toolfactory.pipeline.context import (
    Clarification,
    PipelineContext,
    RunError,
    RunRequest,
    RunResult,
)
from toolfactory.pipeline.course import CourseProcessor, detect_structured_source
from toolfactory.pipeline.events import PipelineEventLog, RunLogger
from toolfactory.pipeline.retry import RetryPolicy
from toolfactory.pipeline.validation import (
    ValidationResult,
    build_fix_instructions,
    format_validation_result,
    validate_tool_output,
)
from toolfactory.scoring.scorer import QualityScorer
from toolfactory.stages.registry import StageRegistry
from toolfactory.stages.schemas import (
    STAGE_IO,
    ArtifactBuildingInput,
    AudienceProfilingInput,
    BuilderContext,
    ComplianceAuditingInput,
    CopyGenerationInput,
    EnhancedContext,
    ExampleGenerationInput,
    FeedbackRevisionInput,
    GradeResult,
    QualityGradingInput,
    SpecExtractionInput,
    StageInput,
    StageName,
    StageOutput,
    TemplateSelectionInput,
    TemplateType,
    ToolSpec,
)

logger = logging.getLogger(__name__)


class ToolFactory:
    """Runs tool generation requests end to end.

    Holds only shared, read-only collaborators; all run state lives in the
    PipelineContext created per call, so one factory serves concurrent runs.
    """

    def __init__(
        self,
        registry: StageRegistry,
        config: Optional[FactoryConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        scorer: Optional[QualityScorer] = None,
        event_log: Optional[PipelineEventLog] = None,
    ):
        self.registry = registry
        self.config = config or FactoryConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.scorer = scorer
        self.event_log = event_log
        self.course_processor = CourseProcessor(self.execute, self.config)
        self._background: set[asyncio.Task] = set()

    # ── Stage execution ─────────────────────────────────

    async def execute(
        self, stage_name: StageName, input: StageInput, context: PipelineContext
    ) -> StageOutput:
        """Run one stage with retry, timing and events.

        Raises:
            UnknownStageError: If the name is not a stage or nothing is registered for it
            StageInputMismatchError: If the input is not this stage's input model
            StageOutputError: If the stage did not return its own output model
        """
        try:
            name = StageName(stage_name)
        except ValueError:
            raise UnknownStageError(str(stage_name)) from None

        input_cls, output_cls = STAGE_IO[name]
        if not isinstance(input, input_cls):
            got = getattr(input, "stage", None) or type(input).__name__
            raise StageInputMismatchError(name.value, str(got))

        context.current_stage = name
        stage = self.registry.get(name)
        log = RunLogger(context.run_id, self.event_log)

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            log.emit(
                "retry",
                name.value,
                summary=f"attempt {attempt} failed ({error}); retrying in {delay:.1f}s",
            )

        log.emit("start", name.value)
        start_time = time.monotonic()
        try:
            output = await self.retry_policy.run(
                lambda: stage.execute(input, context),
                label=f"{context.run_id}:{name.value}",
                on_retry=on_retry,
            )
            if not isinstance(output, output_cls):
                raise StageOutputError(
                    name.value, f"Stage returned {type(output).__name__}, not its own output"
                )
        except Exception as e:
            duration_ms = self._record_duration(context, name, start_time)
            log.emit("fail", name.value, duration_ms=duration_ms, summary=str(e))
            raise

        duration_ms = self._record_duration(context, name, start_time)
        context.stage_outputs[name] = output
        log.emit("complete", name.value, duration_ms=duration_ms)
        return output

    @staticmethod
    def _record_duration(context: PipelineContext, name: StageName, start_time: float) -> int:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        # Stages that run more than once accumulate
        context.stage_durations[name] = context.stage_durations.get(name, 0) + duration_ms
        return duration_ms

    # ── Request validation ──────────────────────────────

    def validate_request(self, request: RunRequest) -> bool:
        """Check a request before any stage runs.

        Returns:
            True if the source is structured course material

        Raises:
            RequestValidationError: On an empty run id, empty source or oversized source
        """
        if not request.run_id or not request.run_id.strip():
            raise RequestValidationError("run_id", "must not be empty")
        if not request.source_text or not request.source_text.strip():
            raise RequestValidationError("source_text", "must not be empty")

        structured = detect_structured_source(request.source_text)
        limit = self.config.max_structured_chars if structured else self.config.max_free_form_chars
        if len(request.source_text) > limit:
            kind = "structured source" if structured else "request"
            raise RequestValidationError(
                "source_text",
                f"too long for a {kind}: {len(request.source_text):,} chars (limit {limit:,})",
            )
        return structured

    # ── Run ─────────────────────────────────────────────

    async def process_request(self, request: RunRequest) -> RunResult:
        """Run one request to a terminal RunResult. Never raises for stage failures."""
        context = PipelineContext(run_id=request.run_id, max_revisions=self.config.max_revisions)
        log = RunLogger(request.run_id, self.event_log)

        try:
            structured = self.validate_request(request)
        except RequestValidationError as e:
            log.emit("fail", StageName.SPEC_EXTRACTION.value, summary=str(e))
            return RunResult.from_context(
                context,
                "failed",
                error=RunError(stage=StageName.SPEC_EXTRACTION, message=str(e)),
            )

        log.emit(
            "start",
            summary=(
                f"{'structured' if structured else 'free-form'} source, "
                f"{len(request.source_text):,} chars"
            ),
        )

        try:
            result = await self._run(request, context, structured)
        except Exception as e:
            stage = context.current_stage or StageName.SPEC_EXTRACTION
            logger.exception(f"[{request.run_id}] Run failed at {stage.value}")
            log.emit("fail", stage.value, duration_ms=context.elapsed_ms(), summary=str(e))
            return RunResult.from_context(
                context,
                "failed",
                error=RunError(stage=stage, message=str(e)),
            )

        log.emit(
            "complete",
            duration_ms=result.timing.total_ms,
            summary=f"status={result.status}, revisions={result.revision_count}",
        )
        if result.status == "completed" and result.artifact is not None:
            self._schedule_scoring(request.run_id, result.artifact)
        return result

    async def _run(self, request: RunRequest, context: PipelineContext, structured: bool) -> RunResult:
        builder_context: Optional[BuilderContext] = None

        if structured:
            course = await self.course_processor.process(request.source_text, context)
            spec = course.tool_spec
            builder_context = course.builder_context
            content_summary = course.content[: self.config.content_summary_chars]
        else:
            extraction = await self.execute(
                StageName.SPEC_EXTRACTION,
                SpecExtractionInput(source_text=request.source_text),
                context,
            )
            if extraction.kind == "clarification":
                logger.info(f"[{context.run_id}] Needs clarification, stopping")
                return RunResult.from_context(
                    context,
                    "needs_clarification",
                    clarification=Clarification(questions=extraction.clarification.questions),
                )
            spec = extraction.tool_spec
            content_summary = request.source_text[: self.config.content_summary_chars]

        enhanced_spec = await self._enrich(spec, content_summary, context)

        template = request.template_hint
        if template is None and not request.skip_template_selection:
            selection = await self.execute(
                StageName.TEMPLATE_SELECTION,
                TemplateSelectionInput(tool_spec=enhanced_spec),
                context,
            )
            template = selection.decision.template

        html, validation = await self._build_validated(enhanced_spec, template, builder_context, context)

        await self._audit(html, context)

        html, grade = await self._revision_loop(html, enhanced_spec, context)

        return RunResult.from_context(
            context,
            "completed",
            tool_spec=enhanced_spec,
            artifact=html,
            grade_result=grade,
            validation=validation,
        )

    async def _enrich(self, spec: ToolSpec, content_summary: str, context: PipelineContext) -> ToolSpec:
        """Run the three enrichment stages against the base spec and merge the results."""
        profile = await self.execute(
            StageName.AUDIENCE_PROFILING,
            AudienceProfilingInput(tool_spec=spec, content_summary=content_summary),
            context,
        )
        examples = await self.execute(
            StageName.EXAMPLE_GENERATION,
            ExampleGenerationInput(tool_spec=spec),
            context,
        )
        copy_out = await self.execute(
            StageName.COPY_GENERATION,
            CopyGenerationInput(tool_spec=spec),
            context,
        )
        return spec.model_copy(update={
            "enhanced_context": EnhancedContext(
                audience_profile=profile.profile,
                case_studies=examples.case_studies,
                test_scenarios=examples.test_scenarios,
                copy_text=copy_out.copy_text,
            )
        })

    async def _build_validated(
        self,
        spec: ToolSpec,
        template: Optional[TemplateType],
        builder_context: Optional[BuilderContext],
        context: PipelineContext,
    ) -> tuple[str, Optional[ValidationResult]]:
        """Build, then rebuild with fix instructions while required content is missing.

        Bounded at 1 + max_output_validation_retries builds. On exhaustion the
        last artifact is kept with its outstanding errors.
        """
        label = f"{context.run_id}:{StageName.ARTIFACT_BUILDING.value}"
        max_builds = 1 + self.config.max_output_validation_retries
        fix_instructions: list[str] = []
        validation: Optional[ValidationResult] = None
        html = ""

        for attempt in range(1, max_builds + 1):
            built = await self.execute(
                StageName.ARTIFACT_BUILDING,
                ArtifactBuildingInput(
                    tool_spec=spec,
                    template=template,
                    builder_context=builder_context,
                    fix_instructions=fix_instructions,
                ),
                context,
            )
            html = built.html
            if builder_context is None:
                break

            validation = validate_tool_output(html, builder_context)
            if validation.passed:
                if attempt > 1:
                    logger.info(f"[{label}] Output validation passed on build {attempt}")
                break

            fix_instructions = build_fix_instructions(validation)
            if attempt < max_builds:
                logger.warning(
                    f"[{label}] Build {attempt}/{max_builds} missing required content, "
                    f"rebuilding with {len(fix_instructions)} fixes"
                )
            else:
                logger.warning(
                    f"[{label}] Output validation still failing after {max_builds} builds, "
                    f"continuing with last artifact\n{format_validation_result(validation)}"
                )

        return html, validation

    async def _audit(self, html: str, context: PipelineContext) -> None:
        audit = await self.execute(
            StageName.COMPLIANCE_AUDITING,
            ComplianceAuditingInput(html=html),
            context,
        )
        if audit.violations:
            logger.info(
                f"[{context.run_id}] Compliance {audit.overall_compliance}: "
                f"{len(audit.violations)} violations"
            )
            for violation in audit.violations:
                logger.debug(
                    f"[{context.run_id}] {violation.severity} {violation.category}: {violation.issue}"
                )

    async def _revision_loop(
        self, html: str, spec: ToolSpec, context: PipelineContext
    ) -> tuple[str, GradeResult]:
        """Grade, then revise and re-grade while failing.

        Every failed grade counts one revision; once revision_count reaches
        max_revisions the last grade is returned as it stands.
        """
        label = f"{context.run_id}:revision"
        grade = await self._grade(html, spec, context)

        while not grade.passed and context.revision_count < context.max_revisions:
            context.revision_count += 1
            if context.revision_count >= context.max_revisions:
                logger.info(
                    f"[{label}] Revision budget ({context.max_revisions}) exhausted "
                    f"at score {grade.score}/8"
                )
                break

            feedback = grade.must_fix or [grade.summary]
            logger.info(
                f"[{label}] Revision {context.revision_count}/{context.max_revisions}: "
                f"{len(feedback)} fixes"
            )
            revised = await self.execute(
                StageName.FEEDBACK_REVISION,
                FeedbackRevisionInput(html=html, feedback=feedback, tool_spec=spec),
                context,
            )
            html = revised.html
            grade = await self._grade(html, spec, context)

        return html, grade

    async def _grade(self, html: str, spec: ToolSpec, context: PipelineContext) -> GradeResult:
        graded = await self.execute(
            StageName.QUALITY_GRADING,
            QualityGradingInput(html=html, tool_spec=spec),
            context,
        )
        return graded.result

    # ── Background scoring ──────────────────────────────

    def _schedule_scoring(self, run_id: str, artifact: str) -> None:
        if self.scorer is None:
            return
        artifact_id = f"{run_id}-{hashlib.sha256(artifact.encode('utf-8')).hexdigest()[:12]}"
        task = asyncio.create_task(self._score_safely(run_id, artifact_id, artifact))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _score_safely(self, run_id: str, artifact_id: str, artifact: str) -> None:
        try:
            await self.scorer.score(run_id, artifact_id, artifact)
        except Exception as e:
            logger.warning(f"[{run_id}] Quality scoring failed (ignored): {e}")

    async def wait_for_background(self) -> None:
        """Wait for pending background scoring. Useful before shutdown and in tests."""
        if self._background:
            await asyncio.gather(*list(self._background))
