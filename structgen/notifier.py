"""Progress and error notifications posted back to the chat platform."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Protocol, Set

import httpx

from .formatter import format_slack_response
from .schemas import ProcessingPhase
from .settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

NotifyStatus = Literal["start", "complete", "error"]

PHASE_LABELS: Dict[ProcessingPhase, str] = {
    ProcessingPhase.INITIALIZATION: "Initializing",
    ProcessingPhase.INPUT_ANALYSIS: "Analyzing input",
    ProcessingPhase.API_CALL: "Generating response",
    ProcessingPhase.RESPONSE_PARSING: "Parsing response",
    ProcessingPhase.FORMATTING: "Formatting response",
    ProcessingPhase.COMPLETION: "Done",
}
STATUS_LABELS: Dict[str, str] = {"start": "started", "complete": "completed", "error": "failed"}


class Notifier(Protocol):
    async def notify(
        self,
        destination_url: str,
        phase: ProcessingPhase,
        status: NotifyStatus,
        details: Optional[str] = None,
    ) -> None:
        ...

    async def notify_error(self, destination_url: str, payload: Dict[str, Any]) -> None:
        ...

    async def deliver_result(self, destination_url: str, text: str) -> None:
        ...


class SlackNotifier:
    """Posts messages to a Slack ``response_url``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    async def _post(self, destination_url: str, body: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._settings.notify_timeout_s) as client:
            response = await client.post(destination_url, json=body)
            response.raise_for_status()

    async def notify(
        self,
        destination_url: str,
        phase: ProcessingPhase,
        status: NotifyStatus,
        details: Optional[str] = None,
    ) -> None:
        text = f"{PHASE_LABELS[phase]} {STATUS_LABELS.get(status, status)}"
        if details:
            text = f"{text}: {details}"
        await self._post(destination_url, {"response_type": "ephemeral", "replace_original": False, "text": text})

    async def notify_error(self, destination_url: str, payload: Dict[str, Any]) -> None:
        lines = [f"An error occurred: {payload.get('error')}", f"Phase: {payload.get('phase')}"]
        if payload.get("details"):
            lines.append(f"Details: {payload['details']}")
        lines.append(f"Time: {payload.get('timestamp')}")
        await self._post(
            destination_url,
            {"response_type": "ephemeral", "replace_original": False, "text": "\n".join(lines)},
        )

    async def deliver_result(self, destination_url: str, text: str) -> None:
        """Replace the placeholder message with the final answer, visible to the channel."""
        await self._post(
            destination_url,
            {"response_type": "in_channel", "replace_original": True, "text": format_slack_response(text)},
        )


class ProgressEmitter:
    """Best-effort, at-most-once event delivery that never blocks the pipeline.

    Events for one destination are delivered in emission order: each delivery
    task waits for the previous one to the same destination before sending.
    Failures are logged and dropped.
    """

    def __init__(self, notifier: Optional[Notifier], *, progress: bool = True) -> None:
        self._notifier = notifier
        self._progress = progress
        self._pending: Set[asyncio.Task[None]] = set()
        self._tails: Dict[str, asyncio.Task[None]] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(
        self,
        destination_url: Optional[str],
        phase: ProcessingPhase,
        status: NotifyStatus,
        details: Optional[str] = None,
    ) -> None:
        if self._notifier is None or not destination_url or not self._progress:
            return
        self._schedule(
            destination_url,
            partial(self._notifier.notify, destination_url, phase, status, details),
            f"{phase.value}:{status}",
        )

    def emit_error(self, destination_url: Optional[str], payload: Dict[str, Any]) -> None:
        if self._notifier is None or not destination_url:
            return
        self._schedule(destination_url, partial(self._notifier.notify_error, destination_url, payload), "error")

    def emit_result(self, destination_url: Optional[str], text: str) -> None:
        if self._notifier is None or not destination_url:
            return
        self._schedule(destination_url, partial(self._notifier.deliver_result, destination_url, text), "result")

    def _schedule(self, destination_url: str, send: Callable[[], Awaitable[None]], label: str) -> None:
        previous = self._tails.get(destination_url)
        task = asyncio.get_running_loop().create_task(self._deliver(previous, send, label))
        self._tails[destination_url] = task
        self._pending.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._pending.discard(finished)
            if self._tails.get(destination_url) is finished:
                del self._tails[destination_url]

        task.add_done_callback(_done)

    async def _deliver(
        self,
        previous: Optional[asyncio.Task[None]],
        send: Callable[[], Awaitable[None]],
        label: str,
    ) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        try:
            await send()
        except Exception as exc:
            logger.warning("Notification %s failed: %s", label, exc)

    async def drain(self) -> None:
        """Wait for outstanding deliveries; used at shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
