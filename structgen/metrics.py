"""Prometheus counters for pipeline phases and model retries."""
from prometheus_client import Counter

phase_counter = Counter(
    "structgen_phase_total",
    "Pipeline phase events",
    labelnames=("phase", "status"),
)
retry_counter = Counter(
    "structgen_model_retry_total",
    "Model calls retried after a transient failure",
    labelnames=("kind",),
)


def record_phase(phase: str, status: str) -> None:
    """Increment the phase counter for a start/complete/error event."""
    phase_counter.labels(phase=phase, status=status).inc()


def record_retry(kind: str) -> None:
    retry_counter.labels(kind=kind).inc()
