"""Tests for taintchain.core.metrics: Prometheus metric singletons."""

from __future__ import annotations

import time

import pytest
from taintchain.core.metrics import (
    CHAIN_RUNS_TOTAL,
    SINK_INVOCATIONS_TOTAL,
    SOURCE_INVOCATIONS_TOTAL,
    TAINT_LOSS_TOTAL,
    metrics_generate_latest,
    observe_step_duration,
)

from tests.helpers import metric_value


class TestObserveStepDuration:
    def test_records_one_observation(self) -> None:
        before = metric_value("taintchain_step_duration_seconds_count", kind="relay")
        with observe_step_duration("relay"):
            time.sleep(0.01)
        assert metric_value("taintchain_step_duration_seconds_count", kind="relay") == before + 1
        assert metric_value("taintchain_step_duration_seconds_sum", kind="relay") >= 0.01

    def test_observed_even_if_body_raises(self) -> None:
        before = metric_value("taintchain_step_duration_seconds_count", kind="sink")
        with pytest.raises(ValueError, match="boom"), observe_step_duration("sink"):
            raise ValueError("boom")
        assert metric_value("taintchain_step_duration_seconds_count", kind="sink") == before + 1


class TestMetricSingletons:
    def test_chain_runs(self) -> None:
        CHAIN_RUNS_TOTAL.labels(expected_category="sql", state="completed").inc()

    def test_taint_loss(self) -> None:
        TAINT_LOSS_TOTAL.labels(operator="test-op").inc()

    def test_capability_invocations(self) -> None:
        SINK_INVOCATIONS_TOTAL.labels(sink_id="test", outcome="accepted").inc()
        SOURCE_INVOCATIONS_TOTAL.labels(source_id="test", outcome="ok").inc()


def test_generate_latest_exposes_taintchain_metrics() -> None:
    CHAIN_RUNS_TOTAL.labels(expected_category="xss", state="broken").inc()
    output = metrics_generate_latest().decode()
    assert "taintchain_chain_runs_total" in output
    assert "taintchain_step_duration_seconds" in output
