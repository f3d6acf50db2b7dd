from taintchain.registry.sinks import SinkRegistry
from taintchain.registry.sources import SourceRegistry

__all__ = ["SinkRegistry", "SourceRegistry"]
