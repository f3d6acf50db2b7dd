from __future__ import annotations

from taintchain.models.chains import (
    Chain,
    ChainHandle,
    ChainRunResult,
    ChainState,
    ErrorRecord,
    FanoutStep,
    LoadStep,
    MergeStep,
    ProvenanceOutcome,
    RelayStep,
    RunScopes,
    SinkStep,
    SourceStep,
    Step,
    StepTrace,
    StoreRef,
    StoreStep,
)
from taintchain.models.provenance import (
    ProvenanceLabel,
    SourceCategory,
    TaintedValue,
    TrustLevel,
)
from taintchain.models.registry import SinkCategory, SinkDescriptor, SinkResult, SourceDescriptor
from taintchain.models.store import StoreEntry, StoreScope

__all__ = [
    "Chain",
    "ChainHandle",
    "ChainRunResult",
    "ChainState",
    "ErrorRecord",
    "FanoutStep",
    "LoadStep",
    "MergeStep",
    "ProvenanceLabel",
    "ProvenanceOutcome",
    "RelayStep",
    "RunScopes",
    "SinkCategory",
    "SinkDescriptor",
    "SinkResult",
    "SinkStep",
    "SourceCategory",
    "SourceDescriptor",
    "SourceStep",
    "Step",
    "StepTrace",
    "StoreEntry",
    "StoreRef",
    "StoreScope",
    "StoreStep",
    "TaintedValue",
    "TrustLevel",
]
