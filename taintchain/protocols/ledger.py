from __future__ import annotations

from typing import Protocol, runtime_checkable

from taintchain.models.chains import ChainRunResult


@runtime_checkable
class RunLedger(Protocol):
    async def record(self, result: ChainRunResult) -> str: ...

    async def list_runs(self, chain_id: str | None = None) -> list[dict[str, object]]: ...

    async def summary(self) -> dict[str, int]: ...


__all__ = ["RunLedger"]
