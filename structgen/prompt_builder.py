"""Prompt composition for the structured generation call."""

from __future__ import annotations

import json
from typing import Any, Dict

from .schemas import InputAnalysis, ProcessingMode

CONTEXT_REQUIRED = (
    "type",
    "keywords",
    "complexity",
    "inputType",
    "technicalLevel",
    "expectedOutput",
    "constraints",
)

ENVELOPE_PROPERTIES: Dict[str, Any] = {
    "mode": {"type": "string", "enum": [mode.value for mode in ProcessingMode]},
    "context": {
        "type": "object",
        "properties": {
            "type": {"type": "string"},
            "keywords": {"type": "array", "items": {"type": "string"}},
            "complexity": {"type": "number"},
            "inputType": {"type": "string", "enum": ["question", "command", "description", "other"]},
            "technicalLevel": {"type": "string", "enum": ["basic", "intermediate", "advanced"]},
            "expectedOutput": {"type": "string", "enum": ["text", "code", "analysis", "mixed"]},
            "constraints": {"type": "array", "items": {"type": "string"}},
        },
        "required": list(CONTEXT_REQUIRED),
    },
}


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def build_response_schema(analysis: InputAnalysis) -> Dict[str, Any]:
    """Union of the mode schema and the envelope requiring ``mode`` and ``context``."""
    mode_schema = analysis.structuredOutputSchema.to_json_schema()
    properties: Dict[str, Any] = json.loads(json.dumps(ENVELOPE_PROPERTIES))
    properties.update(mode_schema["properties"])
    required = ["mode", "context"]
    required.extend(field for field in mode_schema["required"] if field not in required)
    return {"type": mode_schema["type"], "properties": properties, "required": required}


def build_prompt(text: str, analysis: InputAnalysis) -> str:
    mode = analysis.mode.value
    return (
        f"Generate a response to the following input in {mode} mode.\n"
        "Return the response strictly as structured output: a single JSON object that matches the "
        "response schema below, with no commentary before or after it.\n"
        'Always include the "mode" and "context" properties.\n'
        "Write all human-readable values in the same language as the input.\n\n"
        f"Input:\n{text}\n\n"
        f"Context:\n{_dump(analysis.context.as_prompt_dict())}\n\n"
        f"Response schema:\n{_dump(build_response_schema(analysis))}\n"
    )
