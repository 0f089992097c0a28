"""Utilities for pulling JSON objects out of LLM responses."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def coerce_json_payload(text: Optional[str]) -> Dict[str, Any]:
    """
    Extract and parse a JSON object from an LLM response.

    Handles ```json fences, leading/trailing prose and a single trailing comma
    before a closing brace. Raises ValueError when nothing parseable is found.
    """
    if not text or not text.strip():
        raise ValueError("Empty payload")

    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    for attempt in (candidate, _outermost_object(candidate)):
        if not attempt:
            continue
        for variant in (attempt, re.sub(r",\s*([}\]])", r"\1", attempt)):
            try:
                payload = json.loads(variant)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                return payload
    raise ValueError("Could not extract JSON object from payload")


def _outermost_object(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]
