"""Run-scoped state: the request, the mutable pipeline context, the result.

RunRequest and RunResult are immutable pydantic models. PipelineContext is a
plain dataclass owned by exactly one in-flight run; only the orchestrator
mutates it, stages read it to see earlier outputs.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from toolfactory.pipeline.validation import ValidationResult
from toolfactory.stages.schemas import GradeResult, StageName, TemplateType, ToolSpec


class RunRequest(BaseModel):
    """Immutable input to one orchestration run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    source_text: str
    template_hint: Optional[TemplateType] = None
    skip_template_selection: bool = False


@dataclass
class PipelineContext:
    """Mutable state threaded through every stage call of one run."""

    run_id: str
    max_revisions: int = 3
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    start_time: float = field(default_factory=time.monotonic)
    current_stage: Optional[StageName] = None
    stage_outputs: dict[StageName, Any] = field(default_factory=dict)
    stage_durations: dict[StageName, int] = field(default_factory=dict)
    revision_count: int = 0

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)


class Timing(BaseModel):
    total_ms: int
    per_stage: dict[str, int] = Field(default_factory=dict)


class RunError(BaseModel):
    stage: StageName
    message: str


class Clarification(BaseModel):
    questions: list[str]


RunStatus = Literal["completed", "needs_clarification", "failed"]


class RunResult(BaseModel):
    """Terminal record of one run. Serialize with model_dump(mode="json")."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    status: RunStatus
    success: bool
    tool_spec: Optional[ToolSpec] = None
    artifact: Optional[str] = None
    grade_result: Optional[GradeResult] = None
    validation: Optional[ValidationResult] = Field(
        default=None,
        description="Last output validation, when a builder context existed",
    )
    revision_count: int = 0
    timing: Timing
    error: Optional[RunError] = None
    clarification: Optional[Clarification] = None

    @classmethod
    def from_context(cls, context: PipelineContext, status: RunStatus, **fields: Any) -> "RunResult":
        """Assemble a result from the final context state."""
        return cls(
            run_id=context.run_id,
            status=status,
            success=status == "completed",
            revision_count=context.revision_count,
            timing=Timing(
                total_ms=context.elapsed_ms(),
                per_stage={stage.value: ms for stage, ms in context.stage_durations.items()},
            ),
            **fields,
        )
