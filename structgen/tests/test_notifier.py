import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from structgen.notifier import ProgressEmitter, SlackNotifier
from structgen.schemas import ProcessingPhase
from structgen.settings import Settings
from structgen.tests.fakes import RecordingNotifier

HOOK = "https://hooks.example.test/response"
OTHER_HOOK = "https://hooks.example.test/other"


class LaggingNotifier(RecordingNotifier):
    """Each successive call takes the next latency before it is recorded."""

    def __init__(self, latencies: Sequence[float]) -> None:
        super().__init__()
        self.latencies = list(latencies)

    async def notify(
        self,
        destination_url: str,
        phase: ProcessingPhase,
        status: str,
        details: Optional[str] = None,
    ) -> None:
        await asyncio.sleep(self.latencies.pop(0))
        await super().notify(destination_url, phase, status, details)


def test_slow_early_deliveries_do_not_reorder_events() -> None:
    notifier = LaggingNotifier([0.05, 0.03, 0.01])
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "start")
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "complete")
        emitter.emit(HOOK, ProcessingPhase.INPUT_ANALYSIS, "start")
        await emitter.drain()

    asyncio.run(_run())
    assert [(phase, status) for phase, status, _ in notifier.events] == [
        (ProcessingPhase.INITIALIZATION, "start"),
        (ProcessingPhase.INITIALIZATION, "complete"),
        (ProcessingPhase.INPUT_ANALYSIS, "start"),
    ]
    assert emitter.pending == 0


def test_destinations_do_not_wait_on_each_other() -> None:
    notifier = LaggingNotifier([0.05, 0.0])
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "start", "slow")
        emitter.emit(OTHER_HOOK, ProcessingPhase.INITIALIZATION, "start", "fast")
        await emitter.drain()

    asyncio.run(_run())
    assert [details for _, _, details in notifier.events] == ["fast", "slow"]


def test_failed_delivery_does_not_block_the_next_one() -> None:
    notifier = RecordingNotifier(fail=True)
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "start")
        emitter.emit_result(HOOK, "done")
        await emitter.drain()

    asyncio.run(_run())
    assert len(notifier.events) == 1
    assert notifier.results == ["done"]


def test_slack_result_body_strips_fence_language(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: List[Tuple[str, Dict[str, Any]]] = []

    async def fake_post(self: SlackNotifier, destination_url: str, body: Dict[str, Any]) -> None:
        posted.append((destination_url, body))

    monkeypatch.setattr(SlackNotifier, "_post", fake_post)
    notifier = SlackNotifier(Settings(gemini_api_key=None))
    asyncio.run(notifier.deliver_result(HOOK, "Explanation: x\n\n```python\nprint(1)\n```\n"))
    assert posted == [
        (
            HOOK,
            {
                "response_type": "in_channel",
                "replace_original": True,
                "text": "Explanation: x\n\n```\nprint(1)\n```",
            },
        )
    ]


def test_events_are_delivered_in_emission_order() -> None:
    notifier = RecordingNotifier()
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "start")
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "complete")
        emitter.emit(HOOK, ProcessingPhase.INPUT_ANALYSIS, "start", "analyzing")
        assert emitter.pending == 3
        await emitter.drain()

    asyncio.run(_run())
    assert notifier.events == [
        (ProcessingPhase.INITIALIZATION, "start", None),
        (ProcessingPhase.INITIALIZATION, "complete", None),
        (ProcessingPhase.INPUT_ANALYSIS, "start", "analyzing"),
    ]
    assert emitter.pending == 0


def test_delivery_failures_are_swallowed() -> None:
    notifier = RecordingNotifier(fail=True)
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.API_CALL, "error", "boom")
        emitter.emit_error(HOOK, {"error": "boom", "phase": "api_call"})
        await emitter.drain()

    asyncio.run(_run())
    assert len(notifier.events) == 1
    assert len(notifier.errors) == 1


def test_nothing_is_scheduled_without_destination() -> None:
    notifier = RecordingNotifier()
    emitter = ProgressEmitter(notifier)

    async def _run() -> None:
        emitter.emit(None, ProcessingPhase.INITIALIZATION, "start")
        emitter.emit_error("", {"error": "x"})
        assert emitter.pending == 0
        await emitter.drain()

    asyncio.run(_run())
    assert notifier.events == [] and notifier.errors == []


def test_progress_can_be_disabled_without_silencing_errors() -> None:
    notifier = RecordingNotifier()
    emitter = ProgressEmitter(notifier, progress=False)

    async def _run() -> None:
        emitter.emit(HOOK, ProcessingPhase.INITIALIZATION, "start")
        emitter.emit_error(HOOK, {"error": "x", "phase": "initialization"})
        await emitter.drain()

    asyncio.run(_run())
    assert notifier.events == []
    assert notifier.errors == [{"error": "x", "phase": "initialization"}]
