"""Relay operators, the engine that applies them, and provenance verification."""

from taintchain.relay.cross_boundary import BOUNDARY_OPERATORS, CrossBoundaryRelay
from taintchain.relay.engine import RelayEngine
from taintchain.relay.operators import BUILTIN_OPERATORS, RelayOperator
from taintchain.relay.verify import classify, ensure_labels, ensure_preserved

__all__ = [
    "BOUNDARY_OPERATORS",
    "BUILTIN_OPERATORS",
    "CrossBoundaryRelay",
    "RelayEngine",
    "RelayOperator",
    "classify",
    "ensure_labels",
    "ensure_preserved",
]
