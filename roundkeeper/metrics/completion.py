from __future__ import annotations

from prometheus_client import Counter, Histogram

from . import REGISTRY

COMPLETION_STEPS = Counter(
    "roundkeeper_completion_steps_total",
    "Completion pipeline step transitions",
    ["step", "status"],
    registry=REGISTRY,
)
COMPLETION_STEP_LATENCY_MS = Histogram(
    "roundkeeper_completion_step_latency_ms",
    "Latency per completion step (milliseconds)",
    ["step"],
    registry=REGISTRY,
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 15000, 30000),
)
COMPLETION_RUNS = Counter(
    "roundkeeper_completion_runs_total",
    "Completion pipeline runs by outcome",
    ["outcome"],
    registry=REGISTRY,
)


def observe_step(step: str, status: str, duration_ms: float | None = None) -> None:
    """Record a step transition and, when known, how long the step took."""

    COMPLETION_STEPS.labels(step=step, status=status).inc()
    if duration_ms is None or duration_ms < 0:
        return
    COMPLETION_STEP_LATENCY_MS.labels(step=step).observe(duration_ms)


def observe_run(outcome: str) -> None:
    COMPLETION_RUNS.labels(outcome=outcome).inc()


__all__ = [
    "COMPLETION_RUNS",
    "COMPLETION_STEPS",
    "COMPLETION_STEP_LATENCY_MS",
    "observe_run",
    "observe_step",
]
