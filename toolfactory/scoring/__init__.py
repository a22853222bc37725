"""Fire-and-forget quality scoring of finished artifacts."""

from toolfactory.scoring.schemas import CriterionScore, QualityScore
from toolfactory.scoring.scorer import HtmlQualityScorer, QualityScorer

__all__ = ["CriterionScore", "QualityScore", "HtmlQualityScorer", "QualityScorer"]
