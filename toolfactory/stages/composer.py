"""Stage prompt composer using Jinja2 templates.

Renders a stage's system prompt from its template and definition, and
returns it together with the model settings the stage should call with.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from jinja2 import BaseLoader, Environment, TemplateError
from pydantic import BaseModel

from toolfactory.stages.library import PromptLibrary
from toolfactory.stages.schemas import StageName

logger = logging.getLogger(__name__)


class ComposedPrompt(BaseModel):
    """A rendered system prompt plus the call settings for one stage."""

    stage: StageName
    title: str
    system_prompt: str
    model: Optional[str] = None
    max_tokens: int
    composed_at: str


def _numbered(items) -> str:
    return "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items))


class StageComposer:
    """Composes stage prompts from templates and definitions.

    Usage:
        composer = StageComposer()
        prompt = composer.compose(StageName.QUALITY_GRADING, pass_score=6)
    """

    def __init__(self, library: Optional[PromptLibrary] = None):
        self.library = library or PromptLibrary()

        self.env = Environment(
            loader=BaseLoader(),
            autoescape=False,  # We're generating markdown, not HTML
            trim_blocks=True,
            lstrip_blocks=True,
        )

        self.env.filters["join_lines"] = lambda items: "\n".join(f"- {item}" for item in items)
        self.env.filters["numbered"] = _numbered
        self.env.filters["pretty_json"] = lambda value: json.dumps(value, indent=2, default=str)

    def compose(self, stage: StageName, **variables: Any) -> ComposedPrompt:
        """Compose a stage's system prompt.

        Args:
            stage: Stage to compose for
            **variables: Extra template variables

        Returns:
            ComposedPrompt with fully rendered prompt text

        Raises:
            UnknownStageError: If the stage has no definition
            ValueError: If the template is missing or fails to render
        """
        definition = self.library.get_definition(stage)

        template_str = self.library.get_template(definition.template)
        if not template_str:
            raise ValueError(f"Template not found for stage: {definition.name.value}")

        try:
            template = self.env.from_string(template_str)
            rendered = template.render(title=definition.title, **variables)
        except TemplateError as e:
            raise ValueError(f"Template rendering error for {definition.name.value}: {e}")

        return ComposedPrompt(
            stage=definition.name,
            title=definition.title,
            system_prompt=rendered.strip(),
            model=definition.model,
            max_tokens=definition.max_tokens,
            composed_at=datetime.now(timezone.utc).isoformat(),
        )
