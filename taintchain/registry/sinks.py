"""Catalog of unsafe consumers and the entry point that hands them values."""

from __future__ import annotations

import logging

from taintchain.core.metrics import SINK_INVOCATIONS_TOTAL
from taintchain.errors import DuplicateRegistration, SinkRejected, UnknownComponent
from taintchain.models.provenance import TaintedValue
from taintchain.models.registry import SinkCategory, SinkDescriptor, SinkResult
from taintchain.registry.capability import effective_timeout, invoke_capability

logger = logging.getLogger(__name__)


class SinkRegistry:
    """Registry of ``SinkDescriptor`` objects keyed by id.

    ``invoke`` passes only the payload to the capability. Whatever happens,
    the result (or the ``SinkRejected`` error) echoes the labels the harness
    handed over, since sinks are not expected to understand taint.
    """

    def __init__(self, *, default_timeout_s: float | None = 5.0) -> None:
        self._descriptors: dict[str, SinkDescriptor] = {}
        self._default_timeout_s = default_timeout_s

    def register(self, descriptor: SinkDescriptor) -> SinkDescriptor:
        if descriptor.id in self._descriptors:
            raise DuplicateRegistration(
                f"sink already registered: {descriptor.id}", component_id=descriptor.id
            )
        self._descriptors[descriptor.id] = descriptor
        logger.debug(
            "sink_registered id=%s categories=%s",
            descriptor.id,
            ",".join(sorted(descriptor.categories)),
        )
        return descriptor

    def get(self, sink_id: str) -> SinkDescriptor:
        descriptor = self._descriptors.get(sink_id)
        if descriptor is None:
            raise UnknownComponent(f"unknown sink: {sink_id}", component_id=sink_id)
        return descriptor

    def list(self, category: SinkCategory | str | None = None) -> list[SinkDescriptor]:
        descriptors = sorted(self._descriptors.values(), key=lambda d: d.id)
        if category is None:
            return descriptors
        wanted = SinkCategory(category)
        return [d for d in descriptors if wanted in d.categories]

    def __contains__(self, sink_id: object) -> bool:
        return sink_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    async def invoke(
        self,
        sink_id: str,
        value: TaintedValue,
        *,
        timeout_s: float | None = None,
    ) -> SinkResult:
        """Hand ``value.payload`` to the sink capability.

        Raises ``SinkRejected`` when the capability raises or times out.
        """
        descriptor = self.get(sink_id)
        timeout = effective_timeout(timeout_s, descriptor.timeout_s, self._default_timeout_s)
        try:
            raw_result = await invoke_capability(descriptor.consume.consume, value.payload, timeout)
        except TimeoutError as exc:
            SINK_INVOCATIONS_TOTAL.labels(sink_id=sink_id, outcome="timeout").inc()
            logger.warning("sink_timeout id=%s timeout_s=%s", sink_id, timeout)
            raise SinkRejected(
                f"sink {sink_id!r} timed out after {timeout}s",
                component_id=sink_id,
                observed_labels=value.labels,
                hop_count=value.hop_count,
            ) from exc
        except Exception as exc:
            SINK_INVOCATIONS_TOTAL.labels(sink_id=sink_id, outcome="error").inc()
            logger.warning("sink_error id=%s error=%s", sink_id, exc)
            raise SinkRejected(
                f"sink {sink_id!r} failed: {type(exc).__name__}: {exc}",
                component_id=sink_id,
                observed_labels=value.labels,
                hop_count=value.hop_count,
            ) from exc

        SINK_INVOCATIONS_TOTAL.labels(sink_id=sink_id, outcome="accepted").inc()
        return SinkResult(
            sink_id=sink_id,
            accepted=True,
            raw_result=raw_result,
            observed_labels=value.labels,
            hop_count=value.hop_count,
        )


__all__ = ["SinkRegistry"]
