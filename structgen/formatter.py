"""Render validated structured output into user-facing text."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping, Union

from pydantic import BaseModel

from .schemas import (
    CodeOutput,
    CreativeOutput,
    DataOutput,
    GeneralOutput,
    ProcessingMode,
    StructuredOutput,
    coerce_structured_output,
)

BULLET = "• "
_FENCE_LANGUAGE = re.compile(r"^```(\w+)?\n", re.MULTILINE)


def bullets(items: Iterable[str] | None) -> str:
    return "\n".join(f"{BULLET}{item}" for item in items or [])


def _general(output: GeneralOutput) -> str:
    return f"{output.summary}\n\nKey points:\n{bullets(output.keyPoints)}"


def _code(output: CodeOutput) -> str:
    return (
        f"Explanation: {output.explanation}\n\n"
        f"```\n{output.code}\n```\n\n"
        f"Suggestions:\n{bullets(output.suggestions)}"
    )


def _data(output: DataOutput) -> str:
    return (
        f"Analysis: {output.analysis}\n\n"
        f"Insights:\n{bullets(output.insights)}\n\n"
        f"Recommendations:\n{bullets(output.recommendations)}"
    )


def _creative(output: CreativeOutput) -> str:
    return f"{output.content}\n\nStyle: {output.style}\n\nVariations:\n{bullets(output.variations)}"


_RENDERERS = {
    ProcessingMode.GENERAL: _general,
    ProcessingMode.CODE: _code,
    ProcessingMode.DATA: _data,
    ProcessingMode.CREATIVE: _creative,
}


def _as_json(payload: Any) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", exclude_none=True)
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def format_response(mode: ProcessingMode | str, payload: Union[StructuredOutput, Mapping[str, Any]]) -> str:
    try:
        resolved = ProcessingMode.from_value(mode)
    except ValueError:
        return _as_json(payload)
    output = payload if isinstance(payload, BaseModel) else coerce_structured_output(resolved, payload)
    return _RENDERERS[resolved](output)  # type: ignore[arg-type]


def format_slack_response(text: str) -> str:
    """Drop fence language tags and surrounding whitespace for Slack mrkdwn."""
    return _FENCE_LANGUAGE.sub("```\n", text).strip()
