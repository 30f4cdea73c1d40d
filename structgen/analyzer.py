"""Two-stage LLM classification of the raw input into a processing mode and context."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from pydantic import ValidationError

from .errors import AnalysisParseError
from .model import ModelHandle
from .repair import loads_lenient
from .schemas import AnalysisContext, InputAnalysis, ProcessingMode, get_schema_for_mode

logger = logging.getLogger("uvicorn.error")

REFINEMENT_DIMENSIONS = (
    "intent: the underlying purpose of the request",
    "dependencies: resources, tools or prior knowledge the answer depends on",
    "steps: the breakdown of steps needed to produce the answer",
    "edgeCases: edge cases or pitfalls the answer should address",
    "outputFormat: the optimal format for presenting the answer",
)
# The refined context must carry these; constraints must be non-empty.
REFINED_FIELDS = ("inputType", "technicalLevel", "expectedOutput", "constraints")


def _analysis_prompt(text: str) -> str:
    return (
        "Analyze the following text and decide the most suitable processing mode and approach.\n\n"
        "Consider:\n"
        "1. The kind of input (question, command, description, ...)\n"
        "2. Its technical complexity\n"
        "3. The background knowledge it requires\n"
        "4. The expected output format\n"
        "5. Constraints that apply when answering\n\n"
        "Respond with JSON only, in exactly this shape:\n"
        "{\n"
        '  "mode": "general" | "code" | "data" | "creative",\n'
        '  "context": {\n'
        '    "type": string,\n'
        '    "keywords": string[],\n'
        '    "complexity": number,\n'
        '    "inputType": "question" | "command" | "description" | "other",\n'
        '    "technicalLevel": "basic" | "intermediate" | "advanced",\n'
        '    "expectedOutput": "text" | "code" | "analysis" | "mixed",\n'
        '    "constraints": string[]\n'
        "  }\n"
        "}\n"
        "Judge every field carefully and include as much detail as possible.\n\n"
        f"Input text:\n{text}"
    )


def _refinement_prompt(initial: InputAnalysis) -> str:
    dimensions = "\n".join(f"{index}. {item}" for index, item in enumerate(REFINEMENT_DIMENSIONS, start=1))
    snapshot = {"mode": initial.mode.value, "context": initial.context.as_prompt_dict()}
    return (
        "You previously analyzed a request as follows:\n"
        f"{json.dumps(snapshot, indent=2, ensure_ascii=False)}\n\n"
        "Refine this analysis along these dimensions:\n"
        f"{dimensions}\n\n"
        'Respond with JSON only: a single "context" object that keeps every field above '
        "(type, keywords, complexity, inputType, technicalLevel, expectedOutput, constraints) "
        "with improved values, adds the five dimensions as fields, and lists at least one constraint."
    )


def _response_text(result: Any, stage: str) -> str:
    response = getattr(result, "response", None)
    if response is None:
        raise AnalysisParseError(f"No {stage} response was returned by the model")
    return str(response.text or "")


async def analyze_initial(handle: ModelHandle, text: str) -> InputAnalysis:
    """Infer ``{mode, context}`` from the raw input with a single model call."""
    logger.info("Analyzing input (%d chars)", len(text))
    result = await handle.generate(_analysis_prompt(text))
    raw_text = _response_text(result, "analysis")
    logger.info("Received analysis response (%d chars)", len(raw_text))

    parsed = loads_lenient(raw_text, error_cls=AnalysisParseError)
    if not isinstance(parsed, dict):
        raise AnalysisParseError("Could not interpret the analysis of your request", details=repr(parsed)[:200])
    try:
        mode = ProcessingMode.from_value(parsed.get("mode"))
        context = AnalysisContext.model_validate(parsed.get("context") or {})
    except (ValueError, ValidationError) as exc:
        raise AnalysisParseError("Could not interpret the analysis of your request", details=str(exc)) from exc
    return InputAnalysis(mode=mode, context=context, structuredOutputSchema=get_schema_for_mode(mode))


def _refinement_fields(parsed: Dict[str, Any]) -> Dict[str, Any]:
    nested = parsed.get("context")
    if isinstance(nested, dict):
        return nested
    return {key: value for key, value in parsed.items() if key != "mode"}


async def analyze_detailed(handle: ModelHandle, initial: InputAnalysis) -> AnalysisContext:
    """Re-prompt with the initial analysis and merge the refined context over it."""
    result = await handle.generate(_refinement_prompt(initial))
    raw_text = _response_text(result, "refinement")
    parsed = loads_lenient(raw_text, error_cls=AnalysisParseError)
    if not isinstance(parsed, dict) or not parsed:
        raise AnalysisParseError("Could not interpret the refined analysis", details=repr(parsed)[:200])
    refinement = _refinement_fields(parsed)
    try:
        merged = initial.context.merged_with(refinement)
    except ValidationError as exc:
        raise AnalysisParseError("Could not interpret the refined analysis", details=str(exc)) from exc
    missing = [name for name in REFINED_FIELDS if not getattr(merged, name)]
    if missing:
        raise AnalysisParseError(
            "The refined analysis is incomplete",
            details=f"missing or empty: {', '.join(missing)}",
        )
    logger.info("Refined analysis with %d field(s)", len(refinement))
    return merged


async def analyze(handle: ModelHandle, text: str) -> InputAnalysis:
    """Initial pass then detailed pass; both complete before generation starts."""
    initial = await analyze_initial(handle, text)
    context = await analyze_detailed(handle, initial)
    return initial.model_copy(update={"context": context})
