from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SourceCapability(Protocol):
    def produce(self, raw_context: Any) -> Any | Awaitable[Any]: ...


@runtime_checkable
class SinkCapability(Protocol):
    def consume(self, raw_value: Any) -> Any | Awaitable[Any]: ...


@dataclass(frozen=True, slots=True)
class FunctionSource:
    """Adapt a plain callable to the ``SourceCapability`` protocol."""

    func: Callable[[Any], Any]

    def produce(self, raw_context: Any) -> Any:
        return self.func(raw_context)


@dataclass(frozen=True, slots=True)
class FunctionSink:
    """Adapt a plain callable to the ``SinkCapability`` protocol."""

    func: Callable[[Any], Any]

    def consume(self, raw_value: Any) -> Any:
        return self.func(raw_value)


__all__ = ["FunctionSink", "FunctionSource", "SinkCapability", "SourceCapability"]
