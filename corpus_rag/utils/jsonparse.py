"""
Tolerant parsing of JSON emitted by a language model.

Models wrap JSON in markdown fences, prefix it with chatter or append
trailing notes. These helpers strip the wrappers and locate the first
balanced top-level value.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE | re.MULTILINE)
_BOM_RE = re.compile(r"^\ufeff")

_CLOSERS = {"{": "}", "[": "]"}


def _clean(text: str) -> str:
    return _CODE_FENCE_RE.sub("", _BOM_RE.sub("", text)).strip()


def _extract_first(text: str, opener: str) -> Any:
    start = text.find(opener)
    if start == -1:
        raise ValueError(f"No '{opener}' found in model output.")
    closer = _CLOSERS[opener]

    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return json.loads(text[start : i + 1])
    raise ValueError("Unbalanced JSON brackets in model output.")


def loads_lenient(text: str) -> Any:
    if not isinstance(text, str):
        raise ValueError("Model output is not a string")
    cleaned = _clean(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    # whichever bracket comes first decides the shape
    positions = [(cleaned.find(o), o) for o in _CLOSERS if cleaned.find(o) != -1]
    if not positions:
        raise ValueError("No JSON value found in model output.")
    _, opener = min(positions)
    return _extract_first(cleaned, opener)


def parse_json_object(text: str) -> Dict[str, Any]:
    cleaned = _clean(text) if isinstance(text, str) else text
    value = loads_lenient(cleaned)
    if not isinstance(value, dict):
        value = _extract_first(cleaned, "{")
    return value


def parse_json_array(text: str) -> List[Any]:
    cleaned = _clean(text) if isinstance(text, str) else text
    value = loads_lenient(cleaned)
    if isinstance(value, dict):
        # {"refIds": [...]} style wrappers
        for v in value.values():
            if isinstance(v, list):
                return v
        raise ValueError("JSON object does not wrap a list.")
    if not isinstance(value, list):
        raise ValueError("Model output is not a JSON array.")
    return value


def parse_string_list(text: str) -> List[str]:
    """Parse a JSON array and require every element to be a string."""
    arr = parse_json_array(text)
    if not all(isinstance(x, str) for x in arr):
        raise ValueError("JSON array contains non-string items.")
    return [x.strip() for x in arr if x.strip()]
