"""Catalog of data origins and the entry point that turns raw data into tainted values."""

from __future__ import annotations

import logging
from typing import Any

from taintchain.core.metrics import SOURCE_INVOCATIONS_TOTAL
from taintchain.errors import DuplicateRegistration, SourceUnavailable, UnknownComponent
from taintchain.models.provenance import SourceCategory, TaintedValue
from taintchain.models.registry import SourceDescriptor
from taintchain.registry.capability import effective_timeout, invoke_capability

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Registry of ``SourceDescriptor`` objects keyed by id.

    The registry owns descriptor metadata only. ``invoke`` asks the external
    capability for a raw value and stamps it with the descriptor's label at
    hop 0; it never inspects the value itself.
    """

    def __init__(self, *, default_timeout_s: float | None = 5.0) -> None:
        self._descriptors: dict[str, SourceDescriptor] = {}
        self._default_timeout_s = default_timeout_s

    def register(self, descriptor: SourceDescriptor) -> SourceDescriptor:
        if descriptor.id in self._descriptors:
            raise DuplicateRegistration(
                f"source already registered: {descriptor.id}", component_id=descriptor.id
            )
        self._descriptors[descriptor.id] = descriptor
        logger.debug("source_registered id=%s category=%s", descriptor.id, descriptor.category)
        return descriptor

    def get(self, source_id: str) -> SourceDescriptor:
        descriptor = self._descriptors.get(source_id)
        if descriptor is None:
            raise UnknownComponent(f"unknown source: {source_id}", component_id=source_id)
        return descriptor

    def list(self, category: SourceCategory | str | None = None) -> list[SourceDescriptor]:
        descriptors = sorted(self._descriptors.values(), key=lambda d: d.id)
        if category is None:
            return descriptors
        wanted = SourceCategory(category)
        return [d for d in descriptors if d.category == wanted]

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    async def invoke(
        self,
        source_id: str,
        raw_context: Any = None,
        *,
        timeout_s: float | None = None,
    ) -> TaintedValue:
        """Produce a fresh tainted value from the source's capability.

        Raises ``SourceUnavailable`` when the capability raises or times out.
        """
        descriptor = self.get(source_id)
        timeout = effective_timeout(timeout_s, descriptor.timeout_s, self._default_timeout_s)
        try:
            raw_value = await invoke_capability(descriptor.produce.produce, raw_context, timeout)
        except TimeoutError as exc:
            SOURCE_INVOCATIONS_TOTAL.labels(source_id=source_id, outcome="timeout").inc()
            logger.warning("source_timeout id=%s timeout_s=%s", source_id, timeout)
            raise SourceUnavailable(
                f"source {source_id!r} timed out after {timeout}s", component_id=source_id
            ) from exc
        except Exception as exc:
            SOURCE_INVOCATIONS_TOTAL.labels(source_id=source_id, outcome="error").inc()
            logger.warning("source_error id=%s error=%s", source_id, exc)
            raise SourceUnavailable(
                f"source {source_id!r} failed: {type(exc).__name__}: {exc}",
                component_id=source_id,
            ) from exc

        SOURCE_INVOCATIONS_TOTAL.labels(source_id=source_id, outcome="ok").inc()
        return TaintedValue(payload=raw_value, labels=frozenset({descriptor.label()}), hop_count=0)


__all__ = ["SourceRegistry"]
