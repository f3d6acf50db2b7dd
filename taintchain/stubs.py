"""Inert capability stubs and an in-memory run ledger.

The stubs never execute anything: sources hand back a sample payload and
sinks only record what they were given. They back the built-in corpus and
the tests.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from taintchain.models.chains import ChainRunResult


@dataclass(slots=True)
class ContextFieldSource:
    """Read ``field`` from a mapping raw context, falling back to ``default``."""

    field: str
    default: Any = None
    calls: int = 0

    def produce(self, raw_context: Any) -> Any:
        self.calls += 1
        if isinstance(raw_context, Mapping) and self.field in raw_context:
            return raw_context[self.field]
        return self.default


@dataclass(slots=True)
class RecordingSink:
    """Record every payload received; optionally fail every call."""

    name: str = "sink"
    fail_with: str | None = None
    received: list[Any] = field(default_factory=list)

    def consume(self, raw_value: Any) -> dict[str, Any]:
        self.received.append(raw_value)
        if self.fail_with is not None:
            raise RuntimeError(self.fail_with)
        return {"sink": self.name, "received": raw_value}

    @property
    def last(self) -> Any:
        return self.received[-1] if self.received else None


@dataclass(slots=True)
class InMemoryRunLedger:
    """In-memory run ledger stub. No persistence."""

    runs: list[dict[str, object]] = field(default_factory=list)

    async def record(self, result: ChainRunResult) -> str:
        self.runs.append(result.to_record())
        return result.run_id

    async def list_runs(self, chain_id: str | None = None) -> list[dict[str, object]]:
        if chain_id is None:
            return list(self.runs)
        return [run for run in self.runs if run["chain_id"] == chain_id]

    async def summary(self) -> dict[str, int]:
        return dict(Counter(str(run["state"]) for run in self.runs))


__all__ = ["ContextFieldSource", "InMemoryRunLedger", "RecordingSink"]
