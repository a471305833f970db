"""Best-effort JSON recovery from model output."""

import json
import re

import structlog

from threadsense.core.errors import ParseError

logger = structlog.get_logger(__name__)

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def load_json(text: str) -> object:
    """Parse fence-stripped text, falling back to the widest ``{...}`` span.

    Raises ``ParseError`` when neither parses.
    """
    cleaned = _strip_fences(text)
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    match = _OBJECT_RE.search(cleaned)
    if not match:
        raise ParseError("Model output contains no JSON object")
    try:
        return json.loads(match.group(0))
    except ValueError as exc:
        raise ParseError(f"Embedded JSON object is invalid: {exc}") from exc


def parse_json(raw_text: object) -> object | None:
    """Parse model output as JSON, tolerating code fences and surrounding prose.

    Returns ``None`` for non-string input or unparseable text so callers can
    fall back to treating the output as prose.
    """
    if not isinstance(raw_text, str):
        return None
    try:
        return load_json(raw_text)
    except ParseError as exc:
        logger.warning("response_parser.unparseable", error=exc.message, preview=raw_text[:200])
        return None
