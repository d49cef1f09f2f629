from __future__ import annotations

import json
import re
from typing import Any

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _balanced_object(text: str, start: int) -> str | None:
    """Return the `{...}` slice opening at `start`, closing any braces left open."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    if in_string or depth <= 0:
        return None
    # truncated output (token limit hit): close what was opened
    return text[start:].rstrip().rstrip(",") + "}" * depth


def extract_json_dict(raw: str) -> dict[str, Any]:
    """Extract the first JSON object from LLM output that may contain prose or code fences."""

    if not isinstance(raw, str):
        raise ValueError("payload must be a string")
    text = raw.strip()
    if not text:
        raise ValueError("payload is empty")

    fence_match = _CODE_FENCE_RE.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        if isinstance(obj, dict):
            return obj
        raise ValueError("JSON root must be an object")

    for index, char in enumerate(text):
        if char != "{":
            continue
        candidate = _balanced_object(text, index)
        if candidate is None:
            continue
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj

    raise ValueError("No JSON object found in payload")
