"""Parsing helpers for raw LLM replies.

Used by every stage that expects JSON or HTML back from the model:
- parse_llm_json_response: strict, fence-tolerant JSON parse
- extract_json: lenient, tries several strategies and returns None on failure
- extract_html: pulls a complete HTML document out of a reply
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```\s*([\s\S]*?)\s*```")
_HTML_FENCE = re.compile(r"```html\s*([\s\S]*?)\s*```", re.IGNORECASE)
_DOCTYPE_DOC = re.compile(r"(<!DOCTYPE[\s\S]*</html>)", re.IGNORECASE)
_HTML_DOC = re.compile(r"(<html[\s\S]*</html>)", re.IGNORECASE)


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    # Strip leading markdown fence (```json or ```)
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    # Strip trailing fence
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    return json.loads(content.strip())


def _try_parse(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_json(raw_text: Optional[str]) -> Optional[Any]:
    """Best-effort JSON extraction. Returns None if nothing parses.

    Strategies, in order: whole reply, ```json fence, any fence,
    first '{' to last '}', first '[' to last ']'.
    """
    if not raw_text or not isinstance(raw_text, str):
        return None

    trimmed = raw_text.strip()

    parsed = _try_parse(trimmed)
    if parsed is not None:
        return parsed

    for pattern in (_JSON_FENCE, _ANY_FENCE):
        match = pattern.search(trimmed)
        if match and match.group(1):
            parsed = _try_parse(match.group(1).strip())
            if parsed is not None:
                return parsed

    for open_char, close_char in (("{", "}"), ("[", "]")):
        first = trimmed.find(open_char)
        last = trimmed.rfind(close_char)
        if first != -1 and last > first:
            parsed = _try_parse(trimmed[first:last + 1])
            if parsed is not None:
                return parsed

    return None


def _is_complete_html(html: str) -> bool:
    return all(
        re.search(pattern, html, re.IGNORECASE)
        for pattern in (r"<html[\s>]", r"</html>", r"<body[\s>]", r"</body>")
    )


def extract_html(raw_text: Optional[str]) -> str:
    """Extract an HTML document from an LLM reply.

    Raises:
        ValueError: If no complete document can be found
    """
    if not raw_text or not isinstance(raw_text, str):
        raise ValueError("Empty or invalid response for HTML extraction")

    trimmed = raw_text.strip()

    for pattern in (_HTML_FENCE, _ANY_FENCE):
        match = pattern.search(trimmed)
        if match and match.group(1):
            html = match.group(1).strip()
            if _is_complete_html(html):
                return html

    for pattern in (_DOCTYPE_DOC, _HTML_DOC):
        match = pattern.search(trimmed)
        if match:
            return match.group(1).strip()

    if _is_complete_html(trimmed):
        return trimmed

    raise ValueError("Failed to extract valid HTML from response")


def validate_html_structure(html: Optional[str]) -> bool:
    """True if the document has html, head and body tags."""
    if not html or not isinstance(html, str):
        return False
    return all(
        re.search(pattern, html, re.IGNORECASE)
        for pattern in (r"<html[\s>]", r"<head[\s>]", r"<body[\s>]")
    )


def snippet(raw_text: str, limit: int = 200) -> str:
    """One-line preview of a reply for error messages."""
    flat = raw_text.strip().replace("\n", " ")
    return (flat[:limit] + "...") if len(flat) > limit else flat
