"""Extraction and best-effort repair of quasi-JSON model output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List

from .errors import PipelineError, ResponseParseError

logger = logging.getLogger("uvicorn.error")

_FENCED_OBJECT = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")

# Each patch inserts one missing separator and is applied at most once.
_SEPARATOR_PATCHES = (
    (re.compile(r"\}\s*\""), '},\n"'),
    (re.compile(r"\"\s*\""), '",\n"'),
    (re.compile(r"\]\s*\""), '],\n"'),
)


def extract_json_text(text: str) -> str:
    """Return the interior of a fenced block, or the text unchanged."""
    match = _FENCED_OBJECT.search(text)
    if match:
        return match.group(1)
    return text


def repair_json_text(text: str) -> str:
    repaired = text
    for pattern, replacement in _SEPARATOR_PATCHES:
        repaired = pattern.sub(replacement, repaired, count=1)
    return repaired


def _brace_slice(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _candidates(raw: str) -> List[str]:
    extracted = extract_json_text(raw).strip()
    candidates = [extracted]
    sliced = _brace_slice(extracted)
    if sliced and sliced != extracted:
        candidates.append(sliced)
    return candidates


def loads_lenient(raw: str, *, error_cls: type[PipelineError] = ResponseParseError) -> Any:
    """Parse model output, trying strict JSON before the separator patches."""
    last_error: json.JSONDecodeError | None = None
    for candidate in _candidates(raw):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
        repaired = repair_json_text(candidate)
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        logger.warning("Recovered model output with separator repair")
        return value
    sample = raw[:200]
    raise error_cls(
        "Could not parse the response from the model",
        details=f"{last_error}; raw={sample!r}",
    )


def parse_structured_payload(raw: str) -> Dict[str, Any]:
    """Parse model output and reject anything that is not a non-empty object."""
    value = loads_lenient(raw)
    if not isinstance(value, dict):
        raise ResponseParseError(
            "The response was not in the expected format",
            details=f"expected a JSON object, got {type(value).__name__}",
        )
    if not value:
        raise ResponseParseError("The response was empty")
    return value
