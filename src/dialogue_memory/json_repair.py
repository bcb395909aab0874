"""Best-effort cleanup of JSON emitted by language models.

Models wrap JSON in code fences, add prose around it, glue arrays
together, or stop mid-element when they hit a token limit. The helpers
here recover as much well-formed structure as possible; they never raise.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger


def trim_broken_array_tail(text: str) -> str:
    """Keep only the complete top-level elements of a truncated array.

    Returns the input unchanged if the array closes properly, ``"[]"`` if no
    element is complete.
    """
    first = text.find("[")
    if first < 0:
        return text

    in_string = False
    escaped = False
    depth = 0
    last_complete = -1
    for i in range(first, len(text)):
        char = text[i]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            if in_string:
                escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 1 and char == "}":
                last_complete = i
            elif depth == 0 and char == "]":
                return text

    if last_complete < 0:
        return "[]"

    elements = text[first + 1 : last_complete + 1].rstrip().rstrip(",")
    return f"[{elements}]"


def sanitize_json(text: str, expect_list: bool = False) -> str:
    """Cut model output down to a JSON document.

    Args:
        text: Raw model output
        expect_list: The caller wants an array; a lone object is wrapped
            and a truncated array is trimmed to its complete elements

    Returns:
        Sanitized JSON text, or an empty string if no bracket pair exists
    """
    if not text or not text.strip():
        return ""

    cleaned = text.replace("```json", "").replace("```", "").strip()

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    end = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if not starts or end <= min(starts):
        if expect_list and starts:
            cleaned = cleaned[min(starts):]
        else:
            return ""
    else:
        cleaned = cleaned[min(starts) : end + 1].strip()

    if "][" in cleaned:
        cleaned = cleaned.replace("][", ",")
    if "}{" in cleaned:
        cleaned = cleaned.replace("}{", "},{")

    if cleaned.startswith("{") and cleaned.endswith("}"):
        inner = cleaned[1:-1].strip()
        if inner.startswith("[") and inner.endswith("]"):
            cleaned = inner

    if expect_list and cleaned.startswith("{"):
        cleaned = f"[{cleaned}]"
    if expect_list and cleaned.startswith("["):
        cleaned = trim_broken_array_tail(cleaned)
    return cleaned


def parse_json(text: str, expect_list: bool = False) -> Any | None:
    """Sanitize and parse; returns None when nothing parseable remains."""
    sanitized = sanitize_json(text, expect_list=expect_list)
    if not sanitized:
        return None
    try:
        return json.loads(sanitized)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse model JSON: {e}")
        logger.debug(f"Raw response: {text[:500]}")
        return None
