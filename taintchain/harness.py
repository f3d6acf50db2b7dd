"""Public facade: one object that owns the registries, relay engine, store and chains."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from taintchain.chains.builder import ChainBuilder
from taintchain.config import HarnessConfig
from taintchain.models.chains import Chain, ChainHandle, ChainRunResult, RunScopes, Step
from taintchain.models.provenance import SourceCategory, TrustLevel
from taintchain.models.registry import SinkCategory, SinkDescriptor, SourceDescriptor
from taintchain.protocols.capabilities import FunctionSink, FunctionSource
from taintchain.registry.sinks import SinkRegistry
from taintchain.registry.sources import SourceRegistry
from taintchain.relay.cross_boundary import CrossBoundaryRelay
from taintchain.relay.operators import RelayOperator
from taintchain.store.scoped import ScopedStore

logger = logging.getLogger(__name__)


class TaintHarness:
    """Register sources, sinks and relays, define chains, run them.

    Plain callables are accepted wherever a capability is expected and are
    adapted with ``FunctionSource`` / ``FunctionSink``.
    """

    def __init__(self, config: HarnessConfig | None = None) -> None:
        self.config = config or HarnessConfig()
        self.sources = SourceRegistry(default_timeout_s=self.config.default_timeout_s)
        self.sinks = SinkRegistry(default_timeout_s=self.config.default_timeout_s)
        self.relays = CrossBoundaryRelay(boundary_timeout_s=self.config.boundary_timeout_s)
        self._store = ScopedStore()
        self.chains = ChainBuilder(
            sources=self.sources,
            sinks=self.sinks,
            relays=self.relays,
            store=self._store,
            verify_store_loads=self.config.verify_store_loads,
        )

    @property
    def store(self) -> ScopedStore:
        return self._store

    def register_source(
        self,
        source: SourceDescriptor | str,
        category: SourceCategory | str | None = None,
        produce: Any = None,
        *,
        origin_id: str | None = None,
        trust_level: TrustLevel | str = TrustLevel.untrusted,
        timeout_s: float | None = None,
        description: str = "",
    ) -> SourceDescriptor:
        if isinstance(source, SourceDescriptor):
            return self.sources.register(source)
        if category is None or produce is None:
            raise TypeError("register_source needs a category and a produce capability")
        if not hasattr(produce, "produce") and callable(produce):
            produce = FunctionSource(produce)
        descriptor = SourceDescriptor(
            id=source,
            category=category,
            produce=produce,
            origin_id=origin_id,
            trust_level=trust_level,
            timeout_s=timeout_s,
            description=description,
        )
        return self.sources.register(descriptor)

    def register_sink(
        self,
        sink: SinkDescriptor | str,
        categories: Iterable[SinkCategory | str] | SinkCategory | str | None = None,
        consume: Any = None,
        *,
        timeout_s: float | None = None,
        description: str = "",
    ) -> SinkDescriptor:
        if isinstance(sink, SinkDescriptor):
            return self.sinks.register(sink)
        if categories is None or consume is None:
            raise TypeError("register_sink needs categories and a consume capability")
        if isinstance(categories, str):
            categories = [categories]
        if not hasattr(consume, "consume") and callable(consume):
            consume = FunctionSink(consume)
        descriptor = SinkDescriptor(
            id=sink,
            categories=frozenset(SinkCategory(c) for c in categories),
            consume=consume,
            timeout_s=timeout_s,
            description=description,
        )
        return self.sinks.register(descriptor)

    def register_relay(
        self,
        operator_id: str,
        func: Callable[..., Any],
        arity: int | None = 1,
        *,
        preserving: bool = True,
        suspends: bool = False,
        lifted: bool = False,
        description: str = "",
    ) -> RelayOperator:
        return self.relays.register(
            operator_id,
            func,
            arity,
            preserving=preserving,
            suspends=suspends,
            lifted=lifted,
            description=description,
        )

    def define_chain(
        self,
        steps: Sequence[Step | dict[str, Any]],
        expected_category: SinkCategory | str,
        *,
        chain_id: str | None = None,
        name: str = "",
        description: str = "",
        tags: Iterable[str] = (),
    ) -> ChainHandle:
        return self.chains.define(
            steps,
            expected_category,
            chain_id=chain_id,
            name=name,
            description=description,
            tags=tags,
        )

    def add_chain(self, chain: Chain) -> ChainHandle:
        return self.chains.add(chain)

    async def run_chain(
        self,
        handle: ChainHandle | str,
        scopes: RunScopes | None = None,
        *,
        context: Any = None,
        timeout_s: float | None = None,
    ) -> ChainRunResult:
        return await self.chains.run_chain(handle, scopes, context=context, timeout_s=timeout_s)

    async def run_many(
        self,
        handles: Iterable[ChainHandle | str],
        scopes: RunScopes | None = None,
        *,
        context: Any = None,
        timeout_s: float | None = None,
    ) -> list[ChainRunResult]:
        return await self.chains.run_many(handles, scopes, context=context, timeout_s=timeout_s)

    def list_chains(self, category: SinkCategory | str | None = None) -> list[ChainHandle]:
        return self.chains.list_chains(category)

    def ground_truth(self, category: SinkCategory | str | None = None) -> list[dict[str, object]]:
        return self.chains.ground_truth(category)

    def end_session(self, session_id: str) -> int:
        """Clear every session-scoped entry written under ``session_id``."""
        dropped = self._store.end_session(session_id)
        logger.info("session_ended session=%s dropped=%d", session_id, dropped)
        return dropped

    @property
    def flagged_operators(self) -> frozenset[str]:
        return self.relays.flagged_operators


__all__ = ["TaintHarness"]
