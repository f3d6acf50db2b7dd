"""Prometheus metrics for chain runs.

All metric objects are module-level singletons registered on the default
``prometheus_client`` registry.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, generate_latest

CHAIN_RUNS_TOTAL = Counter(
    "taintchain_chain_runs_total",
    "Chain runs by terminal state",
    ["expected_category", "state"],
)
STEP_DURATION_SECONDS = Histogram(
    "taintchain_step_duration_seconds", "Chain step duration in seconds", ["kind"]
)
TAINT_LOSS_TOTAL = Counter(
    "taintchain_taint_loss_total",
    "Preserving relay operators caught dropping labels",
    ["operator"],
)
SINK_INVOCATIONS_TOTAL = Counter(
    "taintchain_sink_invocations_total",
    "Sink capability invocations",
    ["sink_id", "outcome"],
)
SOURCE_INVOCATIONS_TOTAL = Counter(
    "taintchain_source_invocations_total",
    "Source capability invocations",
    ["source_id", "outcome"],
)

metrics_generate_latest = generate_latest


@contextmanager
def observe_step_duration(kind: str) -> Iterator[None]:
    start = time.monotonic()
    try:
        yield
    finally:
        STEP_DURATION_SECONDS.labels(kind=kind).observe(time.monotonic() - start)


__all__ = [
    "CHAIN_RUNS_TOTAL",
    "SINK_INVOCATIONS_TOTAL",
    "SOURCE_INVOCATIONS_TOTAL",
    "STEP_DURATION_SECONDS",
    "TAINT_LOSS_TOTAL",
    "metrics_generate_latest",
    "observe_step_duration",
]
