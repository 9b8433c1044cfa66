"""Helpers for pulling a JSON object out of an LLM reply.

Models occasionally wrap their answer in Markdown fences or prefix it with a
``json`` label.  These helpers strip that decoration before decoding and
return ``None`` rather than raising when no object can be recovered.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_markdown_json(text: str) -> str:
    """Remove Markdown fences and leading ``json`` labels from *text*."""

    cleaned = str(text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    if cleaned.lower().startswith("json"):
        cleaned = cleaned[4:].strip().lstrip(":").strip()
    return cleaned


def extract_json_object(raw_text: str, *, logger: logging.Logger | None = None) -> Optional[dict[str, Any]]:
    """Return the first JSON object found in ``raw_text`` or ``None``.

    The stripped text is decoded first; failing that, the outermost
    ``{...}`` slice is tried.  Arrays and scalars are not accepted.
    """

    text = strip_markdown_json(raw_text)
    if not text:
        return None

    candidates = [text]
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        snippet = text[first : last + 1]
        if snippet != text:
            candidates.append(snippet)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            if logger:
                logger.debug("Failed to parse JSON candidate: %s", exc)
            continue
        if isinstance(data, dict):
            return data
    return None


__all__ = ["extract_json_object", "strip_markdown_json"]
