"""
Helpers for pulling JSON out of free-text model completions.

Models wrap JSON in ```json fences or surround it with prose, and the prose
itself may contain brackets ("see section [2]"). These helpers strip that
packaging and decode strictly; they never repair malformed JSON.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..core.errors import ModelOutputError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_OPENER_RE = re.compile(r"[\[{]")


def _unfence(text: str) -> str:
    cleaned = text.strip()
    fence = _FENCE_RE.search(cleaned)
    if fence:
        cleaned = fence.group(1).strip()
    return cleaned


def extract_json(text: str) -> str:
    """Return the JSON-looking span of ``text``.

    Code fences are unwrapped first; then the outermost ``[...]`` or ``{...}``
    span (whichever opens first) is returned. Text with no bracket at all is
    returned stripped, so the decoder reports the failure.
    """
    cleaned = _unfence(text)
    starts = [i for i in (cleaned.find("["), cleaned.find("{")) if i != -1]
    if not starts:
        return cleaned
    start = min(starts)
    closer = "]" if cleaned[start] == "[" else "}"
    end = cleaned.rfind(closer)
    if end <= start:
        return cleaned[start:]
    return cleaned[start:end + 1]


def decode_json(text: str) -> Any:
    """Decode the largest JSON value embedded in ``text``.

    Every ``[`` or ``{`` outside an already decoded value is tried as the
    start of a value; the one that decodes over the longest span wins (the
    earliest on a tie), so bracketed prose before the payload is skipped.

    Raises:
        json.JSONDecodeError: No embedded value decodes.
    """
    cleaned = _unfence(text)
    decoder = json.JSONDecoder()
    best: Any = None
    best_span = -1
    position = 0
    while True:
        opener = _OPENER_RE.search(cleaned, position)
        if opener is None:
            break
        start = opener.start()
        try:
            value, end = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            position = start + 1
            continue
        if end - start > best_span:
            best, best_span = value, end - start
        position = end

    if best_span < 0:
        # Nothing decoded from a bracket; report the error for the likeliest span.
        return json.loads(extract_json(text))
    return best


def parse_json_payload(text: str, error_cls: type[ModelOutputError]) -> Any:
    """Decode the JSON payload of a completion.

    Raises:
        error_cls: The completion is empty or not decodable JSON. The raw
            completion is attached for diagnosis.
    """
    if not text or not text.strip():
        raise error_cls("LLM returned an empty response", raw_text=text or "")
    try:
        return decode_json(text)
    except json.JSONDecodeError as exc:
        raise error_cls(f"LLM response is not valid JSON: {exc}", raw_text=text) from exc
