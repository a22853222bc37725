"""Orchestration core: run context, retry policy, output validation, orchestrator."""

from toolfactory.pipeline.context import PipelineContext, RunRequest, RunResult
from toolfactory.pipeline.events import PipelineEvent, PipelineEventLog
from toolfactory.pipeline.retry import RetryPolicy, is_transient_error
from toolfactory.pipeline.validation import (
    ValidationIssue,
    ValidationResult,
    build_builder_context,
    build_fix_instructions,
    validate_design_alignment,
    validate_extraction,
    validate_tool_output,
)
from toolfactory.pipeline.orchestrator import ToolFactory

__all__ = [
    "PipelineContext",
    "RunRequest",
    "RunResult",
    "PipelineEvent",
    "PipelineEventLog",
    "RetryPolicy",
    "is_transient_error",
    "ValidationIssue",
    "ValidationResult",
    "build_builder_context",
    "build_fix_instructions",
    "validate_design_alignment",
    "validate_extraction",
    "validate_tool_output",
    "ToolFactory",
]
