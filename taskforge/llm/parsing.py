"""Extraction of JSON payloads from generative-text responses."""

import json
import re
from typing import Any

from taskforge.core.errors import LLMResponseError

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json(text: str) -> dict[str, Any]:
    """
    Parse a JSON object out of a model response.

    Handles bare JSON, JSON wrapped in markdown code fences, and JSON
    surrounded by prose.

    Args:
        text: Raw response text.

    Returns:
        Parsed JSON object.

    Raises:
        LLMResponseError: If no JSON object can be parsed.

    Example:
        >>> extract_json('```json\\n{"isAtomic": true}\\n```')
        {'isAtomic': True}
    """
    response_text = text.strip()

    if response_text.startswith("```"):
        response_text = _FENCE_RE.sub("", response_text)
        response_text = response_text.rstrip("`").strip()

    try:
        parsed = json.loads(response_text)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(response_text)
        if match is None:
            raise LLMResponseError(
                "No JSON object found in response", preview=response_text[:200]
            ) from None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise LLMResponseError(
                f"Invalid JSON in response: {e}", preview=response_text[:200]
            ) from e

    if not isinstance(parsed, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(parsed).__name__}")

    return parsed
