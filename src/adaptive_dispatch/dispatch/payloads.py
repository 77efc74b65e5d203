"""Best-effort JSON object extraction from free-form model replies."""

from __future__ import annotations

import json
import re

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def parse_json_object(text: str) -> dict[str, object] | None:
    """Return the first JSON object found in `text`, or ``None``.

    Tries the whole reply, then a fenced block, then the outermost braces.
    """

    stripped = text.strip()
    if not stripped:
        return None

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end <= start:
        return None
    return _try_load_dict(stripped[start : end + 1])


def strip_code_fence(text: str) -> str:
    """Drop a surrounding Markdown code fence and whitespace."""

    return _FENCE.sub("", text.strip()).strip()


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
