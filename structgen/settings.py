"""Configuration helpers for the structured-generation service."""

from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv()


DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class Settings(BaseSettings):
    model_config = {"protected_namespaces": ()}
    app_name: str = Field(default="Structured Generation Service")
    gemini_api_key: str | None = None
    model_name: str = Field(default=DEFAULT_MODEL)
    gemini_base_url: str = Field(default=DEFAULT_GEMINI_BASE_URL)
    model_request_timeout_s: float = Field(default=30.0, gt=0.0)
    notify_timeout_s: float = Field(default=10.0, gt=0.0)
    max_retries: int = Field(default=3, gt=0)
    retry_base_delay_ms: int = Field(default=1_000, ge=0)
    max_input_chars: int = Field(default=8_000, gt=0)
    invalid_api_key_sentinel: str = Field(default="invalid_key")
    progress_notifications: bool = Field(default=True)


def _coerce_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:  # pragma: no cover - defensive guard
        raise RuntimeError(f"Invalid float for {env_name}: {raw}") from exc


def _coerce_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:  # pragma: no cover - defensive guard
        raise RuntimeError(f"Invalid integer for {env_name}: {raw}") from exc


def _coerce_optional(env_name: str) -> str | None:
    raw = os.getenv(env_name)
    return raw if raw else None


def _coerce_bool(env_name: str, default: bool) -> bool:
    raw = os.getenv(env_name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean for {env_name}: {raw}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "Structured Generation Service"),
        gemini_api_key=_coerce_optional("GEMINI_API_KEY"),
        model_name=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
        gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
        model_request_timeout_s=_coerce_float("MODEL_REQUEST_TIMEOUT_S", 30.0),
        notify_timeout_s=_coerce_float("NOTIFY_TIMEOUT_S", 10.0),
        max_retries=_coerce_int("MODEL_MAX_RETRIES", 3),
        retry_base_delay_ms=_coerce_int("MODEL_RETRY_BASE_DELAY_MS", 1_000),
        max_input_chars=_coerce_int("MAX_INPUT_CHARS", 8_000),
        invalid_api_key_sentinel=os.getenv("INVALID_API_KEY_SENTINEL", "invalid_key"),
        progress_notifications=_coerce_bool("PROGRESS_NOTIFICATIONS", True),
    )
