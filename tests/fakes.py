"""Test doubles for capabilities and relays."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from taintchain.models.provenance import TaintedValue


@dataclass(slots=True)
class SlowSource:
    delay_s: float
    payload: Any = "slow"

    async def produce(self, raw_context: Any) -> Any:
        del raw_context
        await asyncio.sleep(self.delay_s)
        return self.payload


@dataclass(slots=True)
class FailingSource:
    message: str = "upstream unavailable"

    def produce(self, raw_context: Any) -> Any:
        del raw_context
        raise ConnectionError(self.message)


@dataclass(slots=True)
class AsyncRecordingSink:
    delay_s: float = 0.0
    received: list[Any] = field(default_factory=list)

    async def consume(self, raw_value: Any) -> int:
        await asyncio.sleep(self.delay_s)
        self.received.append(raw_value)
        return len(self.received)


@dataclass(slots=True)
class BlockingSink:
    """Synchronous sink that blocks its thread for ``delay_s``."""

    delay_s: float
    received: list[Any] = field(default_factory=list)

    def consume(self, raw_value: Any) -> int:
        time.sleep(self.delay_s)
        self.received.append(raw_value)
        return len(self.received)


def drop_labels(value: TaintedValue) -> TaintedValue:
    """A broken relay: keeps the payload, forgets the provenance."""
    return TaintedValue.literal(value.payload)


def keep_first(first: TaintedValue, second: TaintedValue) -> TaintedValue:
    """Binary relay that silently discards its second input's labels."""
    return TaintedValue(payload=(first.payload, second.payload), labels=first.labels)


def explode(payload: Any) -> Any:
    raise ValueError(f"cannot relay {payload!r}")


__all__ = [
    "AsyncRecordingSink",
    "BlockingSink",
    "FailingSource",
    "SlowSource",
    "drop_labels",
    "explode",
    "keep_first",
]
