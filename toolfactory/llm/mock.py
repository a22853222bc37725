"""Offline completion backend.

Returns canned, well-formed replies keyed on the stage title heading at the
top of the system prompt, so the whole pipeline can run without API keys
(`toolfactory --mock`). Replies are deterministic.
"""

import html
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from toolfactory.llm.backends import DEFAULT_MAX_TOKENS, CompletionResponse, TokenUsage

logger = logging.getLogger(__name__)

MOCK_MODEL = "mock-1"

_HTML_BLOCK = re.compile(r"```html\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip().lstrip("#").strip()
    return ""


def _render_tool(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        f"<title>{html.escape(title)}</title>\n"
        "<style>body{background:#000000;color:#FFFFFF}.verdict{background:#FFF469;color:#000000}</style>\n"
        "</head>\n<body>\n"
        f"<h1>{html.escape(title)}</h1>\n"
        '<form id="tool"><label for="value">Value</label>'
        '<input id="value" type="number" placeholder="e.g., 1000" required></form>\n'
        '<section class="verdict" id="result">GO / NO-GO</section>\n'
        '<section id="commitment">WHO will do WHAT by WHEN</section>\n'
        f"<pre>{html.escape(body, quote=False)}</pre>\n"
        "</body>\n</html>"
    )


@dataclass
class MockBackend:
    """Deterministic CompletionPort for offline runs and demos."""

    calls: list[str] = field(default_factory=list)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        model: Optional[str] = None,
    ) -> CompletionResponse:
        title = _first_line(system_prompt).lower()
        self.calls.append(title)
        content = self._reply(title, user_prompt)
        logger.debug(f"[{MOCK_MODEL}] {title}: {len(content)} chars")
        return CompletionResponse(
            content=content,
            model=MOCK_MODEL,
            usage=TokenUsage(
                input_tokens=(len(system_prompt) + len(user_prompt)) // 4,
                output_tokens=len(content) // 4,
            ),
        )

    def _reply(self, title: str, user_prompt: str) -> str:
        if "tool building" in title:
            return _render_tool("Decision Tool", user_prompt)
        if "feedback revision" in title:
            match = _HTML_BLOCK.search(user_prompt)
            return match.group(1) if match else _render_tool("Decision Tool", user_prompt)
        if "summarization" in title:
            return user_prompt[:2000]
        return json.dumps(self._payload(title, user_prompt))

    def _payload(self, title: str, user_prompt: str) -> dict[str, Any]:
        if "specification extraction" in title:
            purpose = _first_line(user_prompt)[:200] or "Make a decision"
            return {
                "name": "Decision Tool",
                "purpose": purpose,
                "inputs": [
                    {"name": "value", "type": "number", "label": "Value", "required": True}
                ],
                "output_type": "text",
                "processing_logic": "Compare the value against a threshold",
            }
        if "course knowledge analysis" in title:
            return {
                "module_title": _first_line(user_prompt.replace("## Course Content", ""))[:120],
                "core_concept": "Apply the module framework to a real decision",
                "key_terminology": [],
                "expert_wisdom": [],
                "decision_criteria": {
                    "go_condition": "Score above threshold",
                    "no_go_condition": "Score below threshold",
                },
            }
        if "decision tool design" in title:
            return {
                "name": "Decision Tool",
                "tagline": "Make informed decisions",
                "inputs": [{"name": "value", "type": "number", "label": "Value"}],
                "processing_logic": "Compare the value against a threshold",
                "go_threshold": "Value >= 1000",
                "no_go_threshold": "Value < 1000",
            }
        if "template selection" in title:
            return {"template": "CALCULATOR", "reasoning": "Numeric inputs", "adaptations": []}
        if "compliance" in title:
            return {"overall_compliance": "PASS", "score": 100, "violations": [], "strengths": []}
        if "quality grading" in title:
            return {
                "passed": True,
                "score": 8,
                "summary": "Mock grade",
                "must_fix": [],
            }
        # Enrichment stages accept any object
        return {}
