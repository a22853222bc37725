"""Prompt library: stage definitions and their Jinja2 templates.

Definitions are loaded from stages/definitions/stages.yaml, templates from
stages/templates/*.md.j2. Both are cached on the instance; there is no
module-level singleton, callers own the library they build.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from toolfactory.errors import UnknownStageError
from toolfactory.stages.schemas import StageDefinition, StageName

logger = logging.getLogger(__name__)

_BASE_DIR = Path(__file__).parent


class PromptLibrary:
    """Cache of stage definitions and raw prompt templates."""

    def __init__(
        self,
        definitions_file: Optional[Path] = None,
        templates_dir: Optional[Path] = None,
    ):
        """Initialize the library.

        Args:
            definitions_file: YAML file of stage definitions
                (default: stages/definitions/stages.yaml)
            templates_dir: Path to templates directory (default: stages/templates)
        """
        self.definitions_file = definitions_file or _BASE_DIR / "definitions" / "stages.yaml"
        self.templates_dir = templates_dir or _BASE_DIR / "templates"

        self._definitions: dict[StageName, StageDefinition] = {}
        self._templates: dict[str, str] = {}

        self._load_definitions()
        self._load_templates()

    def _load_definitions(self) -> None:
        if not self.definitions_file.exists():
            logger.warning(f"Stage definitions file not found: {self.definitions_file}")
            return

        with open(self.definitions_file, "r") as f:
            data = yaml.safe_load(f) or {}

        for name, raw in (data.get("stages") or {}).items():
            definition = StageDefinition.model_validate({"name": name, **raw})
            self._definitions[definition.name] = definition

        logger.info(f"PromptLibrary: Loaded {len(self._definitions)} stage definitions")

    def _load_templates(self) -> None:
        if not self.templates_dir.exists():
            logger.warning(f"Templates directory not found: {self.templates_dir}")
            return

        for template_file in sorted(self.templates_dir.glob("*.md.j2")):
            key = template_file.name[: -len(".md.j2")]
            self._templates[key] = template_file.read_text()
            logger.debug(f"Loaded template: {key}")

        logger.info(f"PromptLibrary: Loaded {len(self._templates)} templates")

    def get_definition(self, stage: StageName) -> StageDefinition:
        """Get the definition for a stage.

        Raises:
            UnknownStageError: If the stage has no definition
        """
        definition = self._definitions.get(StageName(stage))
        if definition is None:
            raise UnknownStageError(str(stage))
        return definition

    def get_template(self, key: str) -> Optional[str]:
        """Get a raw template by file stem (e.g. "spec_extraction")."""
        return self._templates.get(key)

    def list_definitions(self) -> list[StageName]:
        return list(self._definitions.keys())

    def list_templates(self) -> list[str]:
        return list(self._templates.keys())

    def reload(self) -> None:
        """Reload definitions and templates from disk."""
        self._definitions.clear()
        self._templates.clear()
        self._load_definitions()
        self._load_templates()
