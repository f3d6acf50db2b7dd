"""Error taxonomy for chain runs.

Capability errors (``SourceUnavailable``, ``SinkRejected``) describe a problem
with an external collaborator. ``TaintLossError`` and ``ChainBroken`` describe
a defect in the modeled flow itself, so the run loop reports them with a
distinct error kind and never folds them into the capability failures.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taintchain.models.provenance import ProvenanceLabel


class TaintChainError(Exception):
    """Base class for every error raised by the harness."""

    kind: str = "error"

    def __init__(
        self,
        message: str,
        *,
        component_id: str | None = None,
        step_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.component_id = component_id
        self.step_index = step_index


class SourceUnavailable(TaintChainError):
    """A source capability raised or timed out while producing data."""

    kind = "source_unavailable"


class SinkRejected(TaintChainError):
    """A sink capability raised or timed out while consuming data.

    ``observed_labels`` echoes the label set the sink was handed, exactly like
    a successful ``SinkResult`` would.
    """

    kind = "sink_rejected"

    def __init__(
        self,
        message: str,
        *,
        component_id: str | None = None,
        step_index: int | None = None,
        observed_labels: Iterable[ProvenanceLabel] = (),
        hop_count: int = 0,
    ) -> None:
        super().__init__(message, component_id=component_id, step_index=step_index)
        self.observed_labels: frozenset[ProvenanceLabel] = frozenset(observed_labels)
        self.hop_count = hop_count


class RelayFailed(TaintChainError):
    """A relay operator raised while transforming its inputs."""

    kind = "relay_failed"


class TaintLossError(TaintChainError):
    """A preserving step produced a value missing some of its input labels.

    This is a defect in the harness, not in the code under test: the ground
    truth for the chain can no longer be trusted.
    """

    kind = "taint_loss"

    def __init__(
        self,
        message: str,
        *,
        component_id: str | None = None,
        step_index: int | None = None,
        missing_labels: Iterable[ProvenanceLabel] = (),
    ) -> None:
        super().__init__(message, component_id=component_id, step_index=step_index)
        self.missing_labels: frozenset[ProvenanceLabel] = frozenset(missing_labels)


class StoreReadError(TaintChainError):
    """Base class for scoped store read failures."""

    kind = "store_read"


class NotFound(StoreReadError):
    """No value was ever written under the requested key."""

    kind = "not_found"


class Cleared(StoreReadError):
    """A value existed under the requested key but was explicitly cleared."""

    kind = "cleared"


class ChainBroken(TaintChainError):
    """The expected taint did not reach the sink."""

    kind = "chain_broken"


class ChainDefinitionError(TaintChainError, ValueError):
    """A chain declaration is structurally invalid."""

    kind = "chain_definition"


class UnknownComponent(TaintChainError, LookupError):
    """A source, sink, relay or chain id is not registered."""

    kind = "unknown_component"


class DuplicateRegistration(TaintChainError, ValueError):
    """An id is registered twice in the same registry."""

    kind = "duplicate_registration"


__all__ = [
    "ChainBroken",
    "ChainDefinitionError",
    "Cleared",
    "DuplicateRegistration",
    "NotFound",
    "RelayFailed",
    "SinkRejected",
    "SourceUnavailable",
    "StoreReadError",
    "TaintChainError",
    "TaintLossError",
    "UnknownComponent",
]
