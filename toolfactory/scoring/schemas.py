"""Quality score models."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

CriterionId = Literal[
    "decision",
    "zero_questions",
    "easy_steps",
    "feedback",
    "gamification",
    "results",
    "commitment",
    "brand",
]


class CriterionScore(BaseModel):
    criterion_id: CriterionId
    score: float = Field(..., description="0 (fail), 0.5 (partial) or 1 (pass)")
    passed: bool
    reason: str
    evidence: list[str] = Field(default_factory=list)


class QualityScore(BaseModel):
    """Heuristic 8-point assessment of one generated artifact."""

    run_id: str
    artifact_id: str
    html_hash: str = Field(..., description="SHA-256 of the artifact text")
    overall_score: float = Field(..., ge=0, le=100)
    passed: bool = Field(..., description="True if all 8 criteria pass")
    criteria: list[CriterionScore]
    scoring_duration_ms: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
