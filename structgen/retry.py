"""Bounded exponential-backoff retry around a single model call."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .errors import ErrorKind, PipelineError
from .metrics import record_retry
from .model import GenerationResult, ModelHandle

logger = logging.getLogger("uvicorn.error")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1_000


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, PipelineError):
        return exc.transient
    return isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError))


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Delay before retry ``attempt`` (0-based): ``base * 2**attempt``, no jitter."""
    return base_delay_ms * (2**attempt)


async def _backoff_sleep(delay_s: float) -> None:
    await asyncio.sleep(delay_s)


async def generate_with_retry(
    handle: ModelHandle,
    prompt: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
) -> GenerationResult:
    """Invoke the model, retrying transient failures up to ``max_retries`` attempts.

    Non-transient errors propagate immediately. After the last attempt the last
    error propagates unchanged; classification happens in the orchestrator.
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await handle.generate(prompt)
        except Exception as exc:
            if not is_transient(exc) or attempt >= attempts - 1:
                raise
            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            kind = exc.kind.value if isinstance(exc, PipelineError) else ErrorKind.TIMEOUT.value
            record_retry(kind)
            logger.warning(
                "Transient model failure (attempt %d/%d, kind=%s): %s; retrying in %dms",
                attempt + 1,
                attempts,
                kind,
                exc,
                delay_ms,
            )
            await _backoff_sleep(delay_ms / 1000)
    raise RuntimeError("unreachable")  # pragma: no cover
