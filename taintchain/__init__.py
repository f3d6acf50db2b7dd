"""Taint-propagation benchmark harness.

Builds source-to-sink chains whose provenance is known in advance, so static
and dynamic taint analyzers can be scored against a ground truth.
"""

from taintchain.harness import TaintHarness
from taintchain.models.chains import ChainHandle, ChainRunResult, ChainState, RunScopes
from taintchain.models.provenance import ProvenanceLabel, SourceCategory, TaintedValue
from taintchain.models.registry import SinkCategory

__all__ = [
    "ChainHandle",
    "ChainRunResult",
    "ChainState",
    "ProvenanceLabel",
    "RunScopes",
    "SinkCategory",
    "SourceCategory",
    "TaintHarness",
    "TaintedValue",
]
