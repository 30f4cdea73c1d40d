"""Structured generation pipeline: analyze, prompt, generate, repair and format."""

from .errors import ErrorKind, PipelineError
from .formatter import format_response
from .model import ModelHandle, get_model, initialize_model, reset_model
from .pipeline import Pipeline, process_request
from .schemas import PipelineResponse, ProcessingMode, ProcessingPhase, ProcessRequest

__all__ = [
    "ErrorKind",
    "ModelHandle",
    "Pipeline",
    "PipelineError",
    "PipelineResponse",
    "ProcessRequest",
    "ProcessingMode",
    "ProcessingPhase",
    "format_response",
    "get_model",
    "initialize_model",
    "process_request",
    "reset_model",
]
