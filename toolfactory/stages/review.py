"""Review stages: brand compliance audit and QA grading."""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from toolfactory.llm.backends import CompletionPort
from toolfactory.llm.client import extract_json
from toolfactory.stages.base import LLMStage
from toolfactory.stages.composer import StageComposer
from toolfactory.stages.schemas import (
    QA_CRITERIA,
    ComplianceAuditingInput,
    ComplianceAuditingOutput,
    ComplianceViolation,
    GradeResult,
    QACriterion,
    QualityGradingInput,
    QualityGradingOutput,
    StageName,
)

logger = logging.getLogger(__name__)

QA_PARSE_FAILED = "QA parsing failed - manual review required"


class ComplianceAuditingStage(LLMStage):
    """Brand audit. Observational: the orchestrator logs it and moves on."""

    name = StageName.COMPLIANCE_AUDITING

    def build_user_prompt(self, input: ComplianceAuditingInput) -> str:
        return (
            f"TOOL HTML TO AUDIT:\n```html\n{input.html}\n```\n\n"
            "Audit this tool for brand compliance. Be STRICT."
        )

    def parse(self, raw_text: str, input: ComplianceAuditingInput) -> ComplianceAuditingOutput:
        parsed = self.optional_json(raw_text)
        if parsed is None:
            return ComplianceAuditingOutput(
                overall_compliance="PASS",
                score=100.0,
                recommendation="Audit response could not be parsed",
            )

        score = parsed.get("score", 0)
        if isinstance(score, dict):
            score = score.get("overall", 0)

        violations = []
        for raw in parsed.get("violations") or []:
            try:
                violations.append(ComplianceViolation.model_validate(raw))
            except ValidationError:
                logger.debug(f"[{self.name.value}] Skipping malformed violation: {raw!r}")

        compliance = str(parsed.get("overall_compliance", "PASS")).upper()
        if compliance not in ("PASS", "FAIL", "NEEDS_FIXES"):
            compliance = "NEEDS_FIXES" if violations else "PASS"

        return ComplianceAuditingOutput(
            overall_compliance=compliance,
            score=float(score) if isinstance(score, (int, float)) else 0.0,
            violations=violations,
            strengths=[str(s) for s in parsed.get("strengths") or []],
            recommendation=str(parsed.get("recommendation", "")),
        )


def _default_criteria() -> dict[str, QACriterion]:
    criteria = {name: QACriterion(passed=True, feedback="OK") for name in QA_CRITERIA}
    criteria["polish"] = QACriterion(passed=False, feedback="Requires manual review")
    return criteria


def _parse_criteria(raw: Any) -> Optional[dict[str, QACriterion]]:
    if not isinstance(raw, dict):
        return None
    criteria = {}
    for name, value in raw.items():
        if isinstance(value, dict):
            criteria[name] = QACriterion(
                passed=bool(value.get("passed")),
                feedback=str(value.get("feedback", "")),
            )
        elif isinstance(value, bool):
            criteria[name] = QACriterion(passed=value)
    return criteria or None


def parse_grade(raw_text: str, pass_score: int = 6) -> GradeResult:
    """Parse a QA reply into a GradeResult.

    The pass decision is always score >= pass_score, whatever the model
    claimed. A reply with no JSON yields a failing "manual review" result
    rather than an error, so the revision loop still runs.
    """
    parsed = extract_json(raw_text)
    if not isinstance(parsed, dict):
        logger.warning("[quality_grading] QA response could not be parsed")
        return GradeResult(
            passed=False,
            score=pass_score,
            criteria=_default_criteria(),
            summary="QA response could not be parsed - needs manual review",
            must_fix=[QA_PARSE_FAILED],
        )

    criteria = _parse_criteria(parsed.get("criteria"))

    score = parsed.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 8:
        if criteria is not None:
            score = sum(1 for c in criteria.values() if c.passed)
        else:
            score = pass_score
    score = min(int(score), 8)

    must_fix = parsed.get("must_fix")
    return GradeResult(
        passed=score >= pass_score,
        score=score,
        criteria=criteria if criteria is not None else _default_criteria(),
        summary=str(parsed.get("summary") or f"QA Score: {score}/8"),
        must_fix=[str(m) for m in must_fix] if isinstance(must_fix, list) else [],
    )


class QualityGradingStage(LLMStage):
    name = StageName.QUALITY_GRADING

    def __init__(
        self,
        llm: CompletionPort,
        composer: Optional[StageComposer] = None,
        pass_score: int = 6,
    ):
        super().__init__(llm, composer)
        self.pass_score = pass_score

    def prompt_variables(self, input: QualityGradingInput) -> dict:
        return {"criteria": list(QA_CRITERIA), "pass_score": self.pass_score}

    def build_user_prompt(self, input: QualityGradingInput) -> str:
        return (
            "## Original Tool Specification\n\n"
            f"{input.tool_spec.model_dump_json(indent=2, exclude_none=True)}\n\n"
            f"## Generated HTML Tool\n\n```html\n{input.html}\n```\n\n"
            "Evaluate this tool against all 8 quality criteria. Return your assessment as JSON."
        )

    def parse(self, raw_text: str, input: QualityGradingInput) -> QualityGradingOutput:
        result = parse_grade(raw_text, self.pass_score)
        logger.info(
            f"[{self.name.value}] Score {result.score}/8, passed={result.passed}, "
            f"must_fix={len(result.must_fix)}"
        )
        return QualityGradingOutput(result=result)
