from taintchain.protocols.capabilities import (
    FunctionSink,
    FunctionSource,
    SinkCapability,
    SourceCapability,
)
from taintchain.protocols.ledger import RunLedger

__all__ = [
    "FunctionSink",
    "FunctionSource",
    "RunLedger",
    "SinkCapability",
    "SourceCapability",
]
