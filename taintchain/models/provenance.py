from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceCategory(StrEnum):
    http_body = "http_body"
    http_query = "http_query"
    http_header = "http_header"
    http_param = "http_param"
    cookie = "cookie"
    session = "session"
    file = "file"
    websocket = "websocket"
    external_api = "external_api"
    env = "env"
    dns = "dns"
    socket = "socket"
    webhook = "webhook"
    jwt_claim = "jwt_claim"
    saml_assertion = "saml_assertion"


class TrustLevel(StrEnum):
    untrusted = "untrusted"
    semi_trusted = "semi_trusted"


class ProvenanceLabel(BaseModel):
    """Immutable tag naming where a value came from."""

    model_config = ConfigDict(frozen=True)

    origin_id: str
    category: SourceCategory
    trust_level: TrustLevel = TrustLevel.untrusted

    def __str__(self) -> str:
        return f"{self.category}:{self.origin_id}"


def union_labels(values: Iterable[TaintedValue]) -> frozenset[ProvenanceLabel]:
    labels: set[ProvenanceLabel] = set()
    for value in values:
        labels |= value.labels
    return frozenset(labels)


class TaintedValue(BaseModel):
    """A payload wrapped with its provenance and the number of hops it travelled.

    Instances are immutable; every transformation produces a new value.
    ``payload`` is kept by reference so a value read back from the store is the
    exact object that was written.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payload: Any = None
    labels: frozenset[ProvenanceLabel] = Field(default_factory=frozenset)
    hop_count: int = Field(default=0, ge=0)

    @classmethod
    def literal(cls, payload: Any) -> TaintedValue:
        """Wrap a constant that carries no provenance."""
        return cls(payload=payload)

    @classmethod
    def tainted(cls, payload: Any, *labels: ProvenanceLabel) -> TaintedValue:
        return cls(payload=payload, labels=frozenset(labels))

    @classmethod
    def combine(cls, values: Iterable[TaintedValue], payload: Any) -> TaintedValue:
        """Build the result of combining several values into ``payload``.

        Labels are the union of every input; the hop count is one past the
        furthest-travelled input.
        """
        inputs = list(values)
        if not inputs:
            raise ValueError("combine() needs at least one input value")
        return cls(
            payload=payload,
            labels=union_labels(inputs),
            hop_count=max(v.hop_count for v in inputs) + 1,
        )

    def forward(self, payload: Any = ...) -> TaintedValue:
        """Return this value moved one hop further, optionally with a new payload."""
        new_payload = self.payload if payload is ... else payload
        return TaintedValue(payload=new_payload, labels=self.labels, hop_count=self.hop_count + 1)

    def with_labels(self, labels: Iterable[ProvenanceLabel]) -> TaintedValue:
        return self.model_copy(update={"labels": self.labels | frozenset(labels)})

    @property
    def is_tainted(self) -> bool:
        return bool(self.labels)

    @property
    def categories(self) -> frozenset[SourceCategory]:
        return frozenset(label.category for label in self.labels)

    def describe(self, max_payload_chars: int = 200) -> dict[str, object]:
        """JSON-safe summary for traces and the run ledger."""
        text = repr(self.payload)
        if len(text) > max_payload_chars:
            text = text[: max_payload_chars - 3] + "..."
        return {
            "payload": text,
            "labels": sorted(str(label) for label in self.labels),
            "hop_count": self.hop_count,
        }


__all__ = [
    "ProvenanceLabel",
    "SourceCategory",
    "TaintedValue",
    "TrustLevel",
    "union_labels",
]
