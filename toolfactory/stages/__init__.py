"""Pipeline stages.

Architecture:
- definitions/     - stages.yaml: title, template, model and token budget per stage
- templates/       - Jinja2 system prompt templates, one per stage
- schemas.py       - Pydantic models, including the StageInput/StageOutput unions
- library.py       - PromptLibrary for loading definitions and templates
- composer.py      - StageComposer for rendering system prompts
- base.py          - Stage contract and the shared LLMStage
- registry.py      - StageRegistry mapping stage names to implementations
"""

from .schemas import (
    STAGE_IO,
    StageDefinition,
    StageInput,
    StageName,
    StageOutput,
    TemplateType,
    ToolSpec,
)
from .library import PromptLibrary
from .composer import ComposedPrompt, StageComposer
from .base import LLMStage, Stage
from .registry import StageRegistry, build_stage_registry

__all__ = [
    "STAGE_IO",
    "StageDefinition",
    "StageInput",
    "StageName",
    "StageOutput",
    "TemplateType",
    "ToolSpec",
    "PromptLibrary",
    "ComposedPrompt",
    "StageComposer",
    "LLMStage",
    "Stage",
    "StageRegistry",
    "build_stage_registry",
]
