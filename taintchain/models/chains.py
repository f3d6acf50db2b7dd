"""Chain declarations, run traces and run results.

A chain is a closed tagged union of steps discriminated by ``kind``. The
same models are used for YAML catalogs, so every step round-trips through
``model_dump``/``model_validate`` without custom code.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taintchain.models.provenance import ProvenanceLabel
from taintchain.models.registry import SinkCategory, SinkResult
from taintchain.models.store import StoreScope


def utc_now() -> datetime:
    return datetime.now(UTC)


class StoreRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: StoreScope
    key: str = Field(min_length=1)


class SourceStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["source"] = "source"
    source_id: str


class RelayStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["relay"] = "relay"
    operator_id: str
    params: dict[str, Any] = Field(default_factory=dict)


class StoreStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["store"] = "store"
    scope: StoreScope
    key: str = Field(min_length=1)


class LoadStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["load"] = "load"
    scope: StoreScope
    key: str = Field(min_length=1)


class FanoutStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["fanout"] = "fanout"
    sink_ids: list[str] = Field(min_length=1)


class MergeStep(BaseModel):
    """Fan-in: several sources (and/or stored values) combined into one value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["merge"] = "merge"
    source_ids: list[str] = Field(default_factory=list)
    loads: list[StoreRef] = Field(default_factory=list)
    operator_id: str = "concat_merge"
    params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_inputs(self) -> MergeStep:
        if len(self.source_ids) + len(self.loads) < 2:
            raise ValueError("merge needs at least two inputs")
        return self


class SinkStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["sink"] = "sink"
    sink_id: str


Step = Annotated[
    SourceStep | RelayStep | StoreStep | LoadStep | FanoutStep | MergeStep | SinkStep,
    Field(discriminator="kind"),
]

StepKind = Literal["source", "relay", "store", "load", "fanout", "merge", "sink"]

STEP_KINDS: frozenset[str] = frozenset(
    {"source", "relay", "store", "load", "fanout", "merge", "sink"}
)
TERMINAL_KINDS: frozenset[str] = frozenset({"sink", "fanout"})
PRODUCING_KINDS: frozenset[str] = frozenset({"source", "load", "merge"})


def source(source_id: str) -> SourceStep:
    return SourceStep(source_id=source_id)


def relay(operator_id: str, **params: Any) -> RelayStep:
    return RelayStep(operator_id=operator_id, params=params)


def store(scope: StoreScope | str, key: str) -> StoreStep:
    return StoreStep(scope=StoreScope(scope), key=key)


def load(scope: StoreScope | str, key: str) -> LoadStep:
    return LoadStep(scope=StoreScope(scope), key=key)


def fanout(*sink_ids: str) -> FanoutStep:
    return FanoutStep(sink_ids=list(sink_ids))


def merge(
    source_ids: list[str],
    operator_id: str = "concat_merge",
    *,
    loads: list[StoreRef] | None = None,
    **params: Any,
) -> MergeStep:
    return MergeStep(
        source_ids=source_ids,
        loads=loads or [],
        operator_id=operator_id,
        params=params,
    )


def sink(sink_id: str) -> SinkStep:
    return SinkStep(sink_id=sink_id)


class Chain(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: str = Field(min_length=1)
    expected_category: SinkCategory
    steps: list[Step] = Field(min_length=1)
    name: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)

    def handle(self) -> ChainHandle:
        return ChainHandle(
            chain_id=self.chain_id,
            expected_category=self.expected_category,
            name=self.name or self.chain_id,
            tags=tuple(self.tags),
        )

    def source_ids(self) -> list[str]:
        ids: list[str] = []
        for step in self.steps:
            if isinstance(step, SourceStep):
                ids.append(step.source_id)
            elif isinstance(step, MergeStep):
                ids.extend(step.source_ids)
        return ids

    def sink_ids(self) -> list[str]:
        ids: list[str] = []
        for step in self.steps:
            if isinstance(step, SinkStep):
                ids.append(step.sink_id)
            elif isinstance(step, FanoutStep):
                ids.extend(step.sink_ids)
        return ids


class ChainHandle(BaseModel):
    """Opaque reference returned by ``define_chain``."""

    model_config = ConfigDict(frozen=True)

    chain_id: str
    expected_category: SinkCategory
    name: str = ""
    tags: tuple[str, ...] = ()


class ChainState(StrEnum):
    pending = "pending"
    running = "running"
    completed = "completed"
    broken = "broken"
    failed = "failed"


TERMINAL_STATES: frozenset[ChainState] = frozenset(
    {ChainState.completed, ChainState.broken, ChainState.failed}
)


class ProvenanceOutcome(StrEnum):
    introduced = "introduced"
    preserved = "preserved"
    merged = "merged"
    lost = "lost"
    not_applicable = "not_applicable"


class ErrorRecord(BaseModel):
    kind: str
    message: str
    step_index: int | None = None
    component_id: str | None = None
    missing_labels: list[str] = Field(default_factory=list)


class StepTrace(BaseModel):
    """One hop of a run: what the step saw and how provenance fared."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step_index: int
    step: Step
    labels: frozenset[ProvenanceLabel] = Field(default_factory=frozenset)
    hop_count: int = 0
    outcome: ProvenanceOutcome = ProvenanceOutcome.not_applicable
    sink_results: list[SinkResult] = Field(default_factory=list)
    error: ErrorRecord | None = None
    duration_ms: float = 0.0

    @property
    def kind(self) -> str:
        return self.step.kind


class RunScopes(BaseModel):
    """Partition ids for the store scopes a run can touch."""

    execution_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str | None = None


class ChainRunResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    chain_id: str
    expected_category: SinkCategory
    execution_id: str
    session_id: str | None = None
    state: ChainState = ChainState.pending
    trace: list[StepTrace] = Field(default_factory=list)
    final_result: Any = None
    sink_results: list[SinkResult] = Field(default_factory=list)
    origin_labels: frozenset[ProvenanceLabel] = Field(default_factory=frozenset)
    sink_category_match: bool | None = None
    error: ErrorRecord | None = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return self.state == ChainState.completed

    def to_record(self) -> dict[str, object]:
        """Flatten into a JSON-safe mapping for the ledger and ``--json`` output."""
        return {
            "run_id": self.run_id,
            "chain_id": self.chain_id,
            "expected_category": str(self.expected_category),
            "execution_id": self.execution_id,
            "session_id": self.session_id,
            "state": str(self.state),
            "error": self.error.model_dump() if self.error else None,
            "origin_labels": sorted(str(label) for label in self.origin_labels),
            "sink_category_match": self.sink_category_match,
            "trace": [
                {
                    "step_index": entry.step_index,
                    "step": entry.step.model_dump(mode="json"),
                    "labels": sorted(str(label) for label in entry.labels),
                    "hop_count": entry.hop_count,
                    "outcome": str(entry.outcome),
                    "sinks": [
                        {"sink_id": r.sink_id, "accepted": r.accepted, "error": r.error}
                        for r in entry.sink_results
                    ],
                    "error": entry.error.model_dump() if entry.error else None,
                }
                for entry in self.trace
            ],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


__all__ = [
    "PRODUCING_KINDS",
    "STEP_KINDS",
    "TERMINAL_KINDS",
    "TERMINAL_STATES",
    "Chain",
    "ChainHandle",
    "ChainRunResult",
    "ChainState",
    "ErrorRecord",
    "FanoutStep",
    "LoadStep",
    "MergeStep",
    "ProvenanceOutcome",
    "RelayStep",
    "RunScopes",
    "SinkStep",
    "SourceStep",
    "Step",
    "StepKind",
    "StepTrace",
    "StoreRef",
    "StoreStep",
    "fanout",
    "load",
    "merge",
    "relay",
    "sink",
    "source",
    "store",
]
