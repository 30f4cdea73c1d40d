"""Shared data models for the structured-generation pipeline."""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ResponseValidationError


class ProcessingMode(str, Enum):
    """Response shape selected by the analyzer."""

    GENERAL = "general"
    CODE = "code"
    DATA = "data"
    CREATIVE = "creative"

    @classmethod
    def from_value(cls, value: Any) -> "ProcessingMode":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Unsupported processing mode: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported processing mode: {value!r}") from exc


class ProcessingPhase(str, Enum):
    INITIALIZATION = "initialization"
    INPUT_ANALYSIS = "input_analysis"
    API_CALL = "api_call"
    RESPONSE_PARSING = "response_parsing"
    FORMATTING = "formatting"
    COMPLETION = "completion"

    @property
    def order(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: Tuple[ProcessingPhase, ...] = tuple(ProcessingPhase)


# --------------- Output schema catalog ---------------


class OutputSchema(BaseModel):
    """JSON schema describing the structured fields for one processing mode."""

    model_config = ConfigDict(frozen=True)

    type: Literal["object"] = "object"
    properties: Mapping[str, Mapping[str, Any]]
    required: Tuple[str, ...]

    def to_json_schema(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "properties": copy.deepcopy({key: dict(value) for key, value in self.properties.items()}),
            "required": list(self.required),
        }


_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

SCHEMAS: Dict[ProcessingMode, OutputSchema] = {
    ProcessingMode.GENERAL: OutputSchema(
        properties={
            "summary": _STRING,
            "keyPoints": _STRING_LIST,
            "sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"]},
        },
        required=("summary", "keyPoints"),
    ),
    ProcessingMode.CODE: OutputSchema(
        properties={
            "language": _STRING,
            "explanation": _STRING,
            "code": _STRING,
            "suggestions": _STRING_LIST,
        },
        required=("language", "explanation", "code"),
    ),
    ProcessingMode.DATA: OutputSchema(
        properties={
            "analysis": _STRING,
            "insights": _STRING_LIST,
            "recommendations": _STRING_LIST,
        },
        required=("analysis", "insights"),
    ),
    ProcessingMode.CREATIVE: OutputSchema(
        properties={
            "content": _STRING,
            "style": _STRING,
            "variations": _STRING_LIST,
        },
        required=("content", "style"),
    ),
}


def get_schema_for_mode(mode: ProcessingMode | str) -> OutputSchema:
    return SCHEMAS[ProcessingMode.from_value(mode)]


# --------------- Analysis ---------------

InputType = Literal["question", "command", "description", "other"]
TechnicalLevel = Literal["basic", "intermediate", "advanced"]
ExpectedOutput = Literal["text", "code", "analysis", "mixed"]


class AnalysisContext(BaseModel):
    """Metadata about the input; refined fields arrive with the detailed pass."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    keywords: List[str] = Field(default_factory=list)
    complexity: float = 0.0
    inputType: Optional[InputType] = None
    technicalLevel: Optional[TechnicalLevel] = None
    expectedOutput: Optional[ExpectedOutput] = None
    constraints: Optional[List[str]] = None

    @field_validator("inputType", mode="before")
    @classmethod
    def _normalize_input_type(cls, value: Any) -> Any:
        if value is None:
            return None
        lowered = str(value).strip().lower()
        return lowered if lowered in {"question", "command", "description"} else "other"

    @field_validator("technicalLevel", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        lowered = str(value).strip().lower() if value is not None else None
        return lowered if lowered in {"basic", "intermediate", "advanced"} else None

    @field_validator("expectedOutput", mode="before")
    @classmethod
    def _normalize_expected(cls, value: Any) -> Any:
        lowered = str(value).strip().lower() if value is not None else None
        return lowered if lowered in {"text", "code", "analysis", "mixed"} else None

    @field_validator("keywords", "constraints", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    def merged_with(self, refinement: Mapping[str, Any]) -> "AnalysisContext":
        """Shallow merge; refinement keys win and initial-only keys are kept."""
        merged = self.model_dump(exclude_none=True)
        merged.update(refinement)
        return AnalysisContext.model_validate(merged)

    def as_prompt_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class InputAnalysis(BaseModel):
    mode: ProcessingMode
    context: AnalysisContext
    structuredOutputSchema: OutputSchema


# --------------- Structured output variants ---------------


class _StructuredOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    mode: ProcessingMode
    context: Optional[Dict[str, Any]] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _coerce_mode(cls, value: Any) -> Any:
        return ProcessingMode.from_value(value)


class GeneralOutput(_StructuredOutput):
    summary: str
    keyPoints: List[str]
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None


class CodeOutput(_StructuredOutput):
    language: str = ""
    explanation: str
    code: str
    suggestions: List[str] = Field(default_factory=list)


class DataOutput(_StructuredOutput):
    analysis: str
    insights: List[str]
    recommendations: List[str] = Field(default_factory=list)


class CreativeOutput(_StructuredOutput):
    content: str
    style: str = ""
    variations: List[str] = Field(default_factory=list)


StructuredOutput = Union[GeneralOutput, CodeOutput, DataOutput, CreativeOutput]

OUTPUT_MODELS: Dict[ProcessingMode, Type[_StructuredOutput]] = {
    ProcessingMode.GENERAL: GeneralOutput,
    ProcessingMode.CODE: CodeOutput,
    ProcessingMode.DATA: DataOutput,
    ProcessingMode.CREATIVE: CreativeOutput,
}


def coerce_structured_output(mode: ProcessingMode | str, payload: Mapping[str, Any]) -> StructuredOutput:
    """Validate an untyped parsed payload into the variant for ``mode``."""
    resolved = ProcessingMode.from_value(mode)
    data = dict(payload)
    data.setdefault("mode", resolved.value)
    try:
        return OUTPUT_MODELS[resolved].model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise ResponseValidationError(
            f"Structured output does not match the {resolved.value} schema",
            details=f"invalid fields: {', '.join(missing) or 'unknown'}",
        ) from exc


# --------------- Request / response envelope ---------------


class ProcessRequest(BaseModel):
    text: Any = None
    response_url: Optional[str] = None


class ProcessingError(BaseModel):
    phase: ProcessingPhase
    message: str
    kind: Optional[str] = None
    details: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    userGuidance: Optional[str] = None


class PipelineResponse(BaseModel):
    """Envelope returned by the pipeline; failures populate ``error`` instead of raising."""

    text: str
    structuredOutput: Optional[Dict[str, Any]] = None
    error: Optional[ProcessingError] = None
    processingPhase: ProcessingPhase
