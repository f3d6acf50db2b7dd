"""Shared test helpers."""

from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import REGISTRY

from taintchain.harness import TaintHarness
from taintchain.models.provenance import ProvenanceLabel, SourceCategory, TaintedValue
from taintchain.stubs import RecordingSink


@dataclass
class Rig:
    harness: TaintHarness
    sinks: dict[str, RecordingSink]


def label(origin_id: str, category: SourceCategory = SourceCategory.http_body) -> ProvenanceLabel:
    return ProvenanceLabel(origin_id=origin_id, category=category)


def tainted(payload: object, origin_id: str = "body", hop_count: int = 0) -> TaintedValue:
    return TaintedValue(payload=payload, labels=frozenset({label(origin_id)}), hop_count=hop_count)


def metric_value(name: str, **labels: str) -> float:
    """Current value of one labelled sample on the default registry (0 if unseen)."""
    return REGISTRY.get_sample_value(name, labels) or 0.0
