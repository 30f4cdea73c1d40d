from typing import Iterator, List

import pytest

from structgen import model as model_module
from structgen import retry
from structgen.settings import Settings


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        gemini_api_key=None,
        max_retries=3,
        retry_base_delay_ms=1_000,
        max_input_chars=200,
        progress_notifications=True,
    )


@pytest.fixture(autouse=True)
def _reset_model() -> Iterator[None]:
    model_module.reset_model()
    yield
    model_module.reset_model()


@pytest.fixture(autouse=True)
def backoff_delays(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """Record backoff waits instead of sleeping."""
    delays: List[float] = []

    async def fake_sleep(delay_s: float) -> None:
        delays.append(delay_s)

    monkeypatch.setattr(retry, "_backoff_sleep", fake_sleep)
    return delays
