"""End-to-end structured generation: analysis, prompt, model call, repair, formatting."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Union

from .analyzer import analyze
from .errors import (
    ErrorKind,
    InputTooLarge,
    InvalidCredential,
    InvalidInput,
    NoResponse,
    classify_error,
    error_details,
)
from .formatter import format_response
from .metrics import record_phase
from .model import ModelHandle, initialize_model
from .notifier import Notifier, NotifyStatus, ProgressEmitter, SlackNotifier
from .prompt_builder import build_prompt
from .repair import parse_structured_payload
from .retry import generate_with_retry
from .schemas import (
    PipelineResponse,
    ProcessingError,
    ProcessingPhase,
    ProcessRequest,
    coerce_structured_output,
)
from .settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

ERROR_PREFIX = "An error occurred: "


def _field_of(request: Any, name: str) -> Any:
    if isinstance(request, ProcessRequest):
        return getattr(request, name)
    if isinstance(request, Mapping):
        return request.get(name)
    return None


def _destination_of(request: Any) -> Optional[str]:
    """Read ``response_url`` without validating the rest of the request."""
    url = _field_of(request, "response_url")
    return url if isinstance(url, str) and url else None


def _text_of(request: Any) -> Any:
    return _field_of(request, "text")


class PhaseTracker:
    """Forward-only phase cursor that reports each transition."""

    def __init__(self, emitter: ProgressEmitter, destination_url: Optional[str]) -> None:
        self._emitter = emitter
        self.destination_url = destination_url
        self.current = ProcessingPhase.INITIALIZATION
        self.history: List[ProcessingPhase] = [self.current]
        self._announce(self.current, "start")

    def _announce(self, phase: ProcessingPhase, status: NotifyStatus) -> None:
        record_phase(phase.value, status)
        self._emitter.emit(self.destination_url, phase, status)

    def advance(self, phase: ProcessingPhase) -> None:
        if phase.order <= self.current.order:
            raise RuntimeError(f"Phase cannot move from {self.current.value} to {phase.value}")
        self._announce(self.current, "complete")
        self.current = phase
        self.history.append(phase)
        logger.info("Pipeline phase -> %s", phase.value)
        if phase is ProcessingPhase.COMPLETION:
            self._announce(phase, "complete")
        else:
            self._announce(phase, "start")

    def fail(self, message: str) -> None:
        record_phase(self.current.value, "error")
        self._emitter.emit(self.destination_url, self.current, "error", message)


class Pipeline:
    """Runs one request through the structured generation phases.

    The model handle is injected at startup; when it is absent the process-wide
    handle is created from the first credential presented.
    """

    def __init__(
        self,
        handle: Optional[ModelHandle] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.handle = handle
        self.emitter = ProgressEmitter(notifier, progress=self.settings.progress_notifications)

    def _validate_credential(self, credential: Optional[str]) -> None:
        if not credential:
            raise InvalidCredential("API key is not specified", kind=ErrorKind.MISSING_CREDENTIAL)
        if credential == self.settings.invalid_api_key_sentinel:
            raise InvalidCredential("Invalid API key")

    def _validate_text(self, text: Any) -> str:
        if not isinstance(text, str):
            raise InvalidInput("The input data is not in a valid format", details=f"text is {type(text).__name__}")
        if not text.strip():
            raise InvalidInput("The input text is empty")
        if len(text) > self.settings.max_input_chars:
            raise InputTooLarge(
                "The input data exceeds the range that can be processed",
                details=f"{len(text)} chars > {self.settings.max_input_chars}",
            )
        return text

    def _resolve_handle(self, credential: str) -> ModelHandle:
        if self.handle is not None:
            return self.handle
        return initialize_model(credential, self.settings)

    async def process(
        self,
        request: Union[ProcessRequest, Mapping[str, Any]],
        credential: Optional[str],
    ) -> PipelineResponse:
        """Never raises for request failures; ``error`` is populated instead.

        The final text is also posted to the request's ``response_url`` when one is given.
        """
        tracker = PhaseTracker(self.emitter, _destination_of(request))
        response = await self._run(request, credential, tracker)
        self.emitter.emit_result(tracker.destination_url, response.text)
        return response

    async def _run(
        self,
        request: Union[ProcessRequest, Mapping[str, Any]],
        credential: Optional[str],
        tracker: PhaseTracker,
    ) -> PipelineResponse:
        started = time.perf_counter()
        try:
            req = request if isinstance(request, ProcessRequest) else ProcessRequest.model_validate(request)
            self._validate_credential(credential)
            text = self._validate_text(req.text)
            handle = self._resolve_handle(credential or "")

            tracker.advance(ProcessingPhase.INPUT_ANALYSIS)
            analysis = await analyze(handle, text)
            logger.info("Resolved mode=%s", analysis.mode.value)

            tracker.advance(ProcessingPhase.API_CALL)
            prompt = build_prompt(text, analysis)
            result = await generate_with_retry(
                handle,
                prompt,
                max_retries=self.settings.max_retries,
                base_delay_ms=self.settings.retry_base_delay_ms,
            )
            if result is None or result.response is None:
                raise NoResponse("No response was returned by the model")
            raw_text = result.response.text or ""
            logger.info("Received model response (%d chars)", len(raw_text))

            tracker.advance(ProcessingPhase.RESPONSE_PARSING)
            payload = parse_structured_payload(raw_text)
            if not payload.get("mode"):
                payload["mode"] = analysis.mode.value
            if not payload.get("context"):
                payload["context"] = analysis.context.as_prompt_dict()
            output = coerce_structured_output(analysis.mode, payload)

            tracker.advance(ProcessingPhase.FORMATTING)
            formatted = format_response(analysis.mode, output)

            tracker.advance(ProcessingPhase.COMPLETION)
            logger.info("Processing completed in %.1fms", (time.perf_counter() - started) * 1000)
            return PipelineResponse(
                text=formatted,
                structuredOutput=output.model_dump(mode="json", exclude_none=True),
                processingPhase=tracker.current,
            )
        except Exception as exc:
            error = self._handle_error(exc, tracker, _text_of(request))
            return PipelineResponse(
                text=f"{ERROR_PREFIX}{error.message}\n{error.userGuidance}",
                error=error,
                processingPhase=tracker.current,
            )

    def _handle_error(self, exc: Exception, tracker: PhaseTracker, text: Any) -> ProcessingError:
        kind, message, guidance = classify_error(exc)
        timestamp = datetime.now(timezone.utc).isoformat()
        context: Dict[str, Any] = {
            "phase": tracker.current.value,
            "inputLength": len(text) if isinstance(text, str) else None,
            "timestamp": timestamp,
        }
        error = ProcessingError(
            phase=tracker.current,
            message=message,
            kind=kind.value,
            details=error_details(exc),
            context=context,
            userGuidance=guidance,
        )
        if kind is ErrorKind.UNEXPECTED:
            logger.exception("Pipeline failed in phase %s: %s", error.phase.value, exc)
        else:
            logger.error("Pipeline failed in phase %s (%s): %s", error.phase.value, kind.value, error.details)
        tracker.fail(message)
        self.emitter.emit_error(
            tracker.destination_url,
            {
                "error": error.message,
                "phase": error.phase.value,
                "details": error.details,
                "timestamp": timestamp,
            },
        )
        return error


    async def aclose(self) -> None:
        await self.emitter.drain()


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    return Pipeline(notifier=SlackNotifier())


async def process_request(request: Union[ProcessRequest, Mapping[str, Any]], credential: Optional[str]) -> PipelineResponse:
    return await get_pipeline().process(request, credential)
