"""Heuristic quality scorer for generated HTML tools.

Eight pattern checks, each scoring 0, 0.5 or 1. The overall score is the
equal-weighted average scaled to 0-100. No model calls: scoring is cheap,
deterministic and safe to run after every completed run.
"""

import hashlib
import logging
import re
import time
from typing import Callable, Protocol, runtime_checkable

from toolfactory.scoring.schemas import CriterionId, CriterionScore, QualityScore

logger = logging.getLogger(__name__)


@runtime_checkable
class QualityScorer(Protocol):
    async def score(self, run_id: str, artifact_id: str, artifact_text: str) -> QualityScore: ...


VERDICT_PATTERNS = [
    re.compile(r"\bNO[-\s]?GO\b", re.IGNORECASE),
    re.compile(r"\bGO\b"),
    re.compile(r"\b(PROCEED|STOP|YES|NO)\b"),
]

BRAND_COLORS = ("#000000", "#000", "#ffffff", "#fff", "#fff469", "#b2b2b2")

FORBIDDEN_WORDS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bempower",
        r"\bunlock",
        r"\bunleash",
        r"\bsynerg",
        r"\bparadigm",
        r"\bholistic",
        r"\bleverage\b",
    )
]


def _has_class_or_id(html: str, name: str) -> bool:
    return re.search(
        rf"""(class|id)\s*=\s*["'][^"']*\b{re.escape(name)}[\w-]*""", html, re.IGNORECASE
    ) is not None


def _grade(criterion: CriterionId, score: float, reasons: tuple[str, str, str], evidence: list[str]) -> CriterionScore:
    reason = reasons[0] if score == 1 else reasons[1] if score == 0.5 else reasons[2]
    return CriterionScore(
        criterion_id=criterion,
        score=score,
        passed=score == 1,
        reason=reason,
        evidence=evidence,
    )


def check_decision(html: str) -> CriterionScore:
    evidence = [f"Found verdict: {m.group(0)}" for p in VERDICT_PATTERNS for m in [p.search(html)] if m]
    has_section = any(_has_class_or_id(html, n) for n in ("verdict", "decision", "result", "recommendation"))
    if has_section:
        evidence.append("Found verdict/result section")
    score = 1.0 if evidence and has_section else 0.5 if evidence else 0.0
    return _grade("decision", score, (
        "Tool ends in a clear verdict",
        "Verdict text or section present, but not both",
        "Missing verdict section",
    ), evidence)


def check_zero_questions(html: str) -> CriterionScore:
    inputs = len(re.findall(r"<(input|select|textarea)\b", html, re.IGNORECASE))
    labels = len(re.findall(r"<label\b", html, re.IGNORECASE))
    placeholders = len(re.findall(r"placeholder\s*=", html, re.IGNORECASE))
    evidence = [f"{inputs} inputs, {labels} labels, {placeholders} placeholders"]
    if inputs == 0:
        score = 0.0
    elif labels >= inputs and placeholders >= inputs:
        score = 1.0
    elif labels or placeholders:
        score = 0.5
    else:
        score = 0.0
    return _grade("zero_questions", score, (
        "Every input is labelled with an example",
        "Some inputs lack labels or placeholders",
        "Inputs have no labels or placeholders",
    ), evidence)


def check_easy_steps(html: str) -> CriterionScore:
    inputs = len(re.findall(r"<(input|select|textarea)\b", html, re.IGNORECASE))
    evidence = [f"{inputs} inputs"]
    score = 1.0 if 1 <= inputs <= 8 else 0.5 if inputs > 8 else 0.0
    return _grade("easy_steps", score, (
        "Short, simple entry",
        "Long form; first steps may intimidate",
        "No inputs found",
    ), evidence)


def check_feedback(html: str) -> CriterionScore:
    evidence = []
    if re.search(r"\brequired\b", html, re.IGNORECASE):
        evidence.append("Required fields marked")
    if re.search(r"addEventListener\(\s*['\"](input|change)['\"]|oninput=|onchange=", html):
        evidence.append("Live input handlers")
    if _has_class_or_id(html, "error") or _has_class_or_id(html, "valid"):
        evidence.append("Validation states styled")
    score = 1.0 if len(evidence) >= 2 else 0.5 if evidence else 0.0
    return _grade("feedback", score, (
        "Inputs give live feedback",
        "Some feedback, not on every step",
        "No input feedback",
    ), evidence)


def check_gamification(html: str) -> CriterionScore:
    evidence = []
    if re.search(r"<progress\b", html, re.IGNORECASE) or _has_class_or_id(html, "progress"):
        evidence.append("Progress indicator")
    if re.search(r"@keyframes|transition\s*:|animation\s*:", html, re.IGNORECASE):
        evidence.append("Animated reveal")
    score = 1.0 if len(evidence) == 2 else 0.5 if evidence else 0.0
    return _grade("gamification", score, (
        "Progress and reveal feel rewarding",
        "Some progress cues",
        "Feels like a plain form",
    ), evidence)


def check_results(html: str) -> CriterionScore:
    evidence = []
    if _has_class_or_id(html, "result") or _has_class_or_id(html, "verdict"):
        evidence.append("Result section")
    if re.search(r"(toLocaleString|Intl\.NumberFormat|toFixed)\(", html):
        evidence.append("Formatted numbers")
    score = 1.0 if len(evidence) == 2 else 0.5 if evidence else 0.0
    return _grade("results", score, (
        "Results are prominent and readable",
        "Results present but plain",
        "No visible results section",
    ), evidence)


def check_commitment(html: str) -> CriterionScore:
    evidence = [w for w in ("WHO", "WHAT", "WHEN") if re.search(rf"\b{w}\b", html)]
    if _has_class_or_id(html, "commitment"):
        evidence.append("Commitment section")
    score = 1.0 if len(evidence) >= 4 else 0.5 if evidence else 0.0
    return _grade("commitment", score, (
        "Commitment section with WHO/WHAT/WHEN",
        "Partial commitment mechanism",
        "No commitment section",
    ), evidence)


def check_brand(html: str) -> CriterionScore:
    html_lower = html.lower()
    colors = [c for c in BRAND_COLORS if c in html_lower]
    forbidden = [m.group(0) for p in FORBIDDEN_WORDS for m in [p.search(html)] if m]
    external = re.findall(r"""<(script|link)\b[^>]*(src|href)\s*=\s*["']https?://""", html, re.IGNORECASE)
    evidence = [f"Brand colors: {', '.join(colors) or 'none'}"]
    if forbidden:
        evidence.append(f"Forbidden words: {', '.join(forbidden)}")
    if external:
        evidence.append(f"{len(external)} external resources")
    problems = bool(forbidden) + bool(external)
    if colors and not problems:
        score = 1.0
    elif colors or not problems:
        score = 0.5
    else:
        score = 0.0
    return _grade("brand", score, (
        "On-brand colors and language",
        "Partly on-brand",
        "Off-brand colors, language or external resources",
    ), evidence)


CRITERIA_CHECKS: list[Callable[[str], CriterionScore]] = [
    check_decision,
    check_zero_questions,
    check_easy_steps,
    check_feedback,
    check_gamification,
    check_results,
    check_commitment,
    check_brand,
]


class HtmlQualityScorer:
    """Deterministic QualityScorer over the artifact HTML."""

    async def score(self, run_id: str, artifact_id: str, artifact_text: str) -> QualityScore:
        start_time = time.monotonic()
        criteria = [check(artifact_text) for check in CRITERIA_CHECKS]
        overall = sum(c.score for c in criteria) / len(criteria) * 100

        result = QualityScore(
            run_id=run_id,
            artifact_id=artifact_id,
            html_hash=hashlib.sha256(artifact_text.encode("utf-8")).hexdigest(),
            overall_score=round(overall, 1),
            passed=all(c.passed for c in criteria),
            criteria=criteria,
            scoring_duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        logger.info(
            f"[{run_id}] Quality score {result.overall_score}/100 "
            f"({sum(c.passed for c in criteria)}/8 criteria passed)"
        )
        return result
