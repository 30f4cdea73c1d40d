"""Error taxonomy for the structured-generation pipeline.

Every component raises a :class:`PipelineError` tagged with an :class:`ErrorKind`.
The orchestrator classifies failures exactly once, at its outer boundary, by a
table lookup over the kind.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Dict, Optional, Tuple

import httpx
from pydantic import ValidationError


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    NOT_INITIALIZED = "not_initialized"
    INVALID_INPUT = "invalid_input"
    INPUT_TOO_LARGE = "input_too_large"
    ANALYSIS_PARSE = "analysis_parse"
    NO_RESPONSE = "no_response"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    MODEL_ERROR = "model_error"
    RESPONSE_PARSE = "response_parse"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNEXPECTED = "unexpected"


TRANSIENT_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.CANCELLED})


class PipelineError(Exception):
    """Base error carrying a closed :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class InvalidCredential(PipelineError):
    kind = ErrorKind.INVALID_CREDENTIAL


class NotInitialized(PipelineError):
    kind = ErrorKind.NOT_INITIALIZED


class InvalidInput(PipelineError):
    kind = ErrorKind.INVALID_INPUT


class InputTooLarge(PipelineError):
    kind = ErrorKind.INPUT_TOO_LARGE


class AnalysisParseError(PipelineError):
    kind = ErrorKind.ANALYSIS_PARSE


class NoResponse(PipelineError):
    kind = ErrorKind.NO_RESPONSE


class ModelCallError(PipelineError):
    """Failure talking to the generative model; ``kind`` tells whether it is transient."""

    kind = ErrorKind.MODEL_ERROR


class ResponseParseError(PipelineError):
    kind = ErrorKind.RESPONSE_PARSE


class ResponseValidationError(PipelineError):
    kind = ErrorKind.MALFORMED_PAYLOAD


UNEXPECTED_MESSAGE = "An unexpected error occurred"
UNEXPECTED_GUIDANCE = "Please try again later. If the problem persists, contact the administrator."

# Message is None where the raising component's own message is more precise.
_CLASSIFICATION: Dict[ErrorKind, Tuple[Optional[str], str]] = {
    ErrorKind.MISSING_CREDENTIAL: (
        None,
        "The API key is not configured. Ask the administrator to set GEMINI_API_KEY.",
    ),
    ErrorKind.INVALID_CREDENTIAL: (
        None,
        "The API key was rejected. Ask the administrator to check the configured key.",
    ),
    ErrorKind.NOT_INITIALIZED: (
        "The generative model is not initialized",
        "The service is still starting up. Please retry in a moment.",
    ),
    ErrorKind.INVALID_INPUT: (
        "The input data is not in a valid format",
        "Send your request as plain text and try again.",
    ),
    ErrorKind.INPUT_TOO_LARGE: (
        "The input data exceeds the range that can be processed",
        "Shorten your request or split it into several smaller ones.",
    ),
    ErrorKind.ANALYSIS_PARSE: (
        "Could not interpret the analysis of your request",
        "Try rephrasing your request more concretely.",
    ),
    ErrorKind.NO_RESPONSE: (
        "No response was returned by the model",
        "The model may be busy. Please wait a little and try again.",
    ),
    ErrorKind.TIMEOUT: (
        "The model did not respond in time",
        "The model may be busy. Please wait a little and try again.",
    ),
    ErrorKind.CANCELLED: (
        "The model request was cancelled",
        "The model may be busy. Please wait a little and try again.",
    ),
    ErrorKind.MODEL_ERROR: (
        None,
        "The model service reported an error. Please try again later.",
    ),
    ErrorKind.RESPONSE_PARSE: (
        "Could not parse the response from the model",
        "Try rephrasing your request; a simpler question often helps.",
    ),
    ErrorKind.MALFORMED_PAYLOAD: (
        "The response from the model was not in the expected format",
        "Try rephrasing your request; a simpler question often helps.",
    ),
    ErrorKind.UNEXPECTED: (UNEXPECTED_MESSAGE, UNEXPECTED_GUIDANCE),
}


def kind_of(exc: BaseException) -> ErrorKind:
    """Resolve the error kind for any exception reaching the pipeline boundary."""
    if isinstance(exc, PipelineError):
        return exc.kind
    if isinstance(exc, (TypeError, ValidationError)):
        return ErrorKind.INVALID_INPUT
    if isinstance(exc, (OverflowError, RecursionError)):
        return ErrorKind.INPUT_TOO_LARGE
    if isinstance(exc, json.JSONDecodeError):
        return ErrorKind.RESPONSE_PARSE
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNEXPECTED


def classify_error(exc: BaseException) -> Tuple[ErrorKind, str, str]:
    """Return ``(kind, message, user_guidance)`` for a failure."""
    kind = kind_of(exc)
    message, guidance = _CLASSIFICATION[kind]
    if message is None:
        message = getattr(exc, "message", None) or str(exc) or UNEXPECTED_MESSAGE
    return kind, message, guidance


def error_details(exc: BaseException) -> Optional[str]:
    if isinstance(exc, PipelineError) and exc.details:
        return exc.details
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
