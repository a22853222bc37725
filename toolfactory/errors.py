"""Exception hierarchy for the tool factory.

Only configuration, request and infrastructure failures are exceptions.
Content shortfalls (missing framework items, failing QA grades) are reported
through ValidationResult / GradeResult and never raised.
"""

from typing import Optional


class FactoryError(Exception):
    """Base class for all tool factory errors."""


class RequestValidationError(FactoryError):
    """A run request was rejected before any stage ran."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid request: {field} {reason}")


class UnknownStageError(FactoryError):
    """A stage name could not be resolved. Programming error, never retried."""

    def __init__(self, stage_name: str):
        self.stage_name = stage_name
        super().__init__(f"Unknown stage: {stage_name}")


class StageInputMismatchError(FactoryError):
    """The input handed to execute() is not that stage's input model."""

    def __init__(self, stage_name: str, input_stage: str):
        self.stage_name = stage_name
        self.input_stage = input_stage
        super().__init__(
            f"Stage '{stage_name}' was given input for stage '{input_stage}'"
        )


class StageOutputError(FactoryError):
    """A stage could not turn the model reply into its output shape."""

    def __init__(self, stage_name: str, message: str, raw_snippet: Optional[str] = None):
        self.stage_name = stage_name
        self.raw_snippet = raw_snippet
        super().__init__(f"[{stage_name}] {message}")


class LLMUnavailableError(FactoryError):
    """No usable completion backend (missing key or SDK)."""
