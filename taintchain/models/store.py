from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from taintchain.models.provenance import TaintedValue

PROCESS_PARTITION = "process"


class StoreScope(StrEnum):
    request = "request"
    session = "session"
    process = "process"


class StoreEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: StoreScope
    scope_id: str
    key: str
    value: TaintedValue
    written_at_hop: int


__all__ = ["PROCESS_PARTITION", "StoreEntry", "StoreScope"]
