from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taintchain.models.provenance import ProvenanceLabel, SourceCategory, TrustLevel


class SinkCategory(StrEnum):
    command = "command"
    sql = "sql"
    nosql = "nosql"
    path = "path"
    template = "template"
    xss = "xss"
    ssrf = "ssrf"
    xxe = "xxe"
    log = "log"
    email = "email"


class SourceDescriptor(BaseModel):
    """Catalog entry for a data origin.

    ``produce`` is the external capability; the registry only ever calls it,
    it never looks inside.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str = Field(min_length=1)
    category: SourceCategory
    produce: Any
    origin_id: str | None = None
    trust_level: TrustLevel = TrustLevel.untrusted
    timeout_s: float | None = Field(default=None, gt=0)
    description: str = ""

    @field_validator("produce")
    @classmethod
    def _require_produce(cls, value: Any) -> Any:
        if not callable(getattr(value, "produce", None)):
            raise ValueError("source capability must define produce(raw_context)")
        return value

    def label(self) -> ProvenanceLabel:
        return ProvenanceLabel(
            origin_id=self.origin_id or self.id,
            category=self.category,
            trust_level=self.trust_level,
        )


class SinkDescriptor(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str = Field(min_length=1)
    categories: frozenset[SinkCategory] = Field(min_length=1)
    consume: Any
    timeout_s: float | None = Field(default=None, gt=0)
    description: str = ""

    @field_validator("consume")
    @classmethod
    def _require_consume(cls, value: Any) -> Any:
        if not callable(getattr(value, "consume", None)):
            raise ValueError("sink capability must define consume(raw_value)")
        return value


class SinkResult(BaseModel):
    """Outcome of handing a value to a sink capability.

    ``observed_labels`` is what the harness gave the sink, not anything the
    sink reported back.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sink_id: str
    accepted: bool
    raw_result: Any = None
    observed_labels: frozenset[ProvenanceLabel] = Field(default_factory=frozenset)
    hop_count: int = 0
    error: str | None = None


__all__ = ["SinkCategory", "SinkDescriptor", "SinkResult", "SourceDescriptor"]
