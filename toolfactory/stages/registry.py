"""Stage registry: stage name -> Stage implementation.

Read-only after construction, so one registry is shared by concurrent runs.
"""

import logging
from typing import Iterable, Optional

from toolfactory.errors import UnknownStageError
from toolfactory.llm.backends import CompletionPort
from toolfactory.stages.base import Stage
from toolfactory.stages.building import (
    ArtifactBuildingStage,
    FeedbackRevisionStage,
    TemplateSelectionStage,
)
from toolfactory.stages.composer import StageComposer
from toolfactory.stages.course import (
    ContentSummarizationStage,
    CourseAnalysisStage,
    ToolDesignStage,
)
from toolfactory.stages.enrichment import (
    AudienceProfilingStage,
    CopyGenerationStage,
    ExampleGenerationStage,
)
from toolfactory.stages.extraction import SpecExtractionStage
from toolfactory.stages.review import ComplianceAuditingStage, QualityGradingStage
from toolfactory.stages.schemas import StageName

logger = logging.getLogger(__name__)


class StageRegistry:
    """Lookup from stage name to Stage."""

    def __init__(self, stages: Iterable[Stage] = ()):
        self._stages: dict[StageName, Stage] = {}
        for stage in stages:
            self.register(stage)

    def register(self, stage: Stage) -> None:
        name = StageName(stage.name)
        if name in self._stages:
            logger.warning(f"Replacing registered stage: {name.value}")
        self._stages[name] = stage

    def get(self, name: str) -> Stage:
        """Resolve a stage.

        Raises:
            UnknownStageError: If nothing is registered under the name
        """
        try:
            return self._stages[StageName(name)]
        except (ValueError, KeyError):
            raise UnknownStageError(str(getattr(name, "value", name))) from None

    def __contains__(self, name: object) -> bool:
        try:
            return StageName(name) in self._stages
        except ValueError:
            return False

    def list_stages(self) -> list[StageName]:
        return list(self._stages.keys())


def build_stage_registry(
    llm: CompletionPort,
    composer: Optional[StageComposer] = None,
    qa_pass_score: int = 6,
) -> StageRegistry:
    """Registry with every LLM-backed stage wired to one completion port."""
    composer = composer or StageComposer()
    registry = StageRegistry([
        SpecExtractionStage(llm, composer),
        ContentSummarizationStage(llm, composer),
        CourseAnalysisStage(llm, composer),
        ToolDesignStage(llm, composer),
        AudienceProfilingStage(llm, composer),
        ExampleGenerationStage(llm, composer),
        CopyGenerationStage(llm, composer),
        TemplateSelectionStage(llm, composer),
        ArtifactBuildingStage(llm, composer),
        ComplianceAuditingStage(llm, composer),
        QualityGradingStage(llm, composer, pass_score=qa_pass_score),
        FeedbackRevisionStage(llm, composer),
    ])
    logger.info(f"StageRegistry: Registered {len(registry.list_stages())} stages")
    return registry
