"""Gemini model handle and the process-wide registry that owns it."""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import ErrorKind, InvalidCredential, ModelCallError, NotInitialized
from .settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_SETTINGS: tuple[Dict[str, str], ...] = tuple(
    {"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES
)

_CANCELLED_STATUSES = {"CANCELLED"}
_TIMEOUT_STATUSES = {"DEADLINE_EXCEEDED"}
_CREDENTIAL_REASONS = {"API_KEY_INVALID", "API_KEY_SERVICE_BLOCKED"}


@dataclass(frozen=True)
class ModelResponse:
    text: str


@dataclass(frozen=True)
class GenerationResult:
    response: Optional[ModelResponse]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class GenerativeModel(Protocol):
    async def generate_content(self, parts: Sequence[Dict[str, str]]) -> GenerationResult:
        ...


def key_fingerprint(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:12]


class GeminiModel:
    """Calls the Gemini ``generateContent`` REST endpoint."""

    def __init__(self, api_key: str, settings: Optional[Settings] = None) -> None:
        self._api_key = api_key
        self._settings = settings or get_settings()
        self.model_name = self._settings.model_name

    @property
    def url(self) -> str:
        base = self._settings.gemini_base_url.rstrip("/")
        return f"{base}/models/{self.model_name}:generateContent"

    async def generate_content(self, parts: Sequence[Dict[str, str]]) -> GenerationResult:
        payload = {
            "contents": [{"role": "user", "parts": list(parts)}],
            "safetySettings": [dict(setting) for setting in SAFETY_SETTINGS],
        }
        headers = {"x-goog-api-key": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._settings.model_request_timeout_s) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise ModelCallError(f"Gemini request timed out: {exc}", kind=ErrorKind.TIMEOUT) from exc
        except httpx.HTTPStatusError as exc:
            raise _map_status_error(exc) from exc
        except httpx.HTTPError as exc:
            raise ModelCallError(f"Gemini request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise ModelCallError("Gemini returned malformed payload")
        return GenerationResult(response=_first_candidate(data), raw=data)


def _first_candidate(data: Dict[str, Any]) -> Optional[ModelResponse]:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            logger.warning("Gemini blocked the prompt: %s", feedback.get("blockReason"))
        return None
    content = candidates[0].get("content") or {}
    parts: List[Dict[str, Any]] = content.get("parts") or []
    text = "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))
    return ModelResponse(text=text)


def _map_status_error(exc: httpx.HTTPStatusError) -> Exception:
    status_code = exc.response.status_code
    try:
        body = exc.response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    error = error if isinstance(error, dict) else {}
    status = str(error.get("status") or "")
    message = str(error.get("message") or exc)
    reasons = {
        str(detail.get("reason"))
        for detail in error.get("details") or []
        if isinstance(detail, dict) and detail.get("reason")
    }
    if status_code == 499 or status in _CANCELLED_STATUSES:
        return ModelCallError(f"Gemini request cancelled: {message}", kind=ErrorKind.CANCELLED)
    if status_code == 504 or status in _TIMEOUT_STATUSES:
        return ModelCallError(f"Gemini request timed out: {message}", kind=ErrorKind.TIMEOUT)
    if status_code in {401, 403} or reasons & _CREDENTIAL_REASONS:
        return InvalidCredential("Invalid API key", details=message)
    return ModelCallError(f"Gemini API error (status={status_code}): {message}")


@dataclass(frozen=True)
class ModelHandle:
    """Read-only handle shared by every pipeline run."""

    model: GenerativeModel
    model_name: str
    key_fingerprint: str
    safety_settings: tuple[Dict[str, str], ...] = SAFETY_SETTINGS

    async def generate(self, prompt: str) -> GenerationResult:
        return await self.model.generate_content([{"text": prompt}])


def create_handle(api_key: str, settings: Optional[Settings] = None) -> ModelHandle:
    if not api_key:
        raise InvalidCredential("API key is not specified", kind=ErrorKind.MISSING_CREDENTIAL)
    model = GeminiModel(api_key, settings)
    return ModelHandle(model=model, model_name=model.model_name, key_fingerprint=key_fingerprint(api_key))


_handle: Optional[ModelHandle] = None
_lock = threading.Lock()


def initialize_model(api_key: str, settings: Optional[Settings] = None) -> ModelHandle:
    """Create the process-wide handle once; later calls return the same handle."""
    global _handle
    if not api_key:
        raise InvalidCredential("API key is not specified", kind=ErrorKind.MISSING_CREDENTIAL)
    with _lock:
        if _handle is None:
            _handle = create_handle(api_key, settings)
            logger.info("Initialized model %s (key=%s)", _handle.model_name, _handle.key_fingerprint)
        elif _handle.key_fingerprint != key_fingerprint(api_key):
            logger.warning(
                "Ignoring re-initialization with a different API key (active=%s)",
                _handle.key_fingerprint,
            )
        return _handle


def get_model() -> ModelHandle:
    if _handle is None:
        raise NotInitialized("The generative model is not initialized")
    return _handle


def reset_model() -> None:
    global _handle
    with _lock:
        _handle = None
