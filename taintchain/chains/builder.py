"""Chain definitions: validation, lookup and the entry points that run them."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import ValidationError

from taintchain.chains.execution import ChainExecution
from taintchain.errors import ChainDefinitionError, DuplicateRegistration, UnknownComponent
from taintchain.models.chains import (
    PRODUCING_KINDS,
    TERMINAL_KINDS,
    Chain,
    ChainHandle,
    ChainRunResult,
    FanoutStep,
    LoadStep,
    MergeStep,
    RelayStep,
    RunScopes,
    SinkStep,
    SourceStep,
    Step,
    StoreStep,
)
from taintchain.models.registry import SinkCategory
from taintchain.models.store import StoreScope
from taintchain.registry.sinks import SinkRegistry
from taintchain.registry.sources import SourceRegistry
from taintchain.relay.engine import RelayEngine
from taintchain.relay.operators import RelayOperator
from taintchain.store.scoped import ScopedStore

logger = logging.getLogger(__name__)


def _definition_error(
    chain_id: str, message: str, step_index: int | None = None
) -> ChainDefinitionError:
    where = f" (step {step_index})" if step_index is not None else ""
    return ChainDefinitionError(
        f"chain {chain_id!r}{where}: {message}", component_id=chain_id, step_index=step_index
    )


def uses_session_scope(chain: Chain) -> bool:
    for step in chain.steps:
        if isinstance(step, StoreStep | LoadStep) and step.scope == StoreScope.session:
            return True
        if isinstance(step, MergeStep) and any(
            ref.scope == StoreScope.session for ref in step.loads
        ):
            return True
    return False


class ChainBuilder:
    """Owns chain definitions and runs them against shared components.

    ``define`` validates a chain against the registries at definition time,
    so a handle always refers to a chain whose structure can execute.
    Whether the taint survives is only known after ``run_chain``.
    """

    def __init__(
        self,
        *,
        sources: SourceRegistry,
        sinks: SinkRegistry,
        relays: RelayEngine,
        store: ScopedStore,
        default_timeout_s: float | None = None,
        verify_store_loads: bool = True,
    ) -> None:
        self.sources = sources
        self.sinks = sinks
        self.relays = relays
        self.store = store
        self._default_timeout_s = default_timeout_s
        self._verify_store_loads = verify_store_loads
        self._chains: dict[str, Chain] = {}

    def define(
        self,
        steps: Sequence[Step | dict[str, Any]],
        expected_category: SinkCategory | str,
        *,
        chain_id: str | None = None,
        name: str = "",
        description: str = "",
        tags: Iterable[str] = (),
    ) -> ChainHandle:
        chain_id = chain_id or f"chain-{uuid.uuid4().hex[:12]}"
        try:
            chain = Chain(
                chain_id=chain_id,
                expected_category=expected_category,
                steps=list(steps),
                name=name,
                description=description,
                tags=list(tags),
            )
        except ValidationError as exc:
            raise _definition_error(chain_id, str(exc)) from exc
        return self.add(chain)

    def add(self, chain: Chain) -> ChainHandle:
        """Register an already-built ``Chain`` model (catalog entries land here)."""
        if chain.chain_id in self._chains:
            raise DuplicateRegistration(
                f"chain already defined: {chain.chain_id}", component_id=chain.chain_id
            )
        self.validate(chain)
        self._chains[chain.chain_id] = chain
        logger.debug(
            "chain_defined chain=%s category=%s steps=%d",
            chain.chain_id,
            chain.expected_category,
            len(chain.steps),
        )
        return chain.handle()

    def validate(self, chain: Chain) -> None:
        """Check structure and references; raise ``ChainDefinitionError`` on the first problem."""
        steps = chain.steps
        last_index = len(steps) - 1
        if steps[0].kind not in PRODUCING_KINDS:
            raise _definition_error(
                chain.chain_id, f"first step must produce a value, got {steps[0].kind!r}", 0
            )
        if steps[-1].kind not in TERMINAL_KINDS:
            raise _definition_error(
                chain.chain_id,
                f"last step must be a sink or fanout, got {steps[-1].kind!r}",
                last_index,
            )

        depth = 0
        for index, step in enumerate(steps):
            if isinstance(step, SourceStep):
                self._require_source(chain, step.source_id, index)
                depth += 1
            elif isinstance(step, LoadStep):
                depth += 1
            elif isinstance(step, MergeStep):
                for source_id in step.source_ids:
                    self._require_source(chain, source_id, index)
                operator = self._require_operator(chain, step.operator_id, index)
                count = len(step.source_ids) + len(step.loads)
                if not operator.accepts(count):
                    raise _definition_error(
                        chain.chain_id,
                        f"merge operator {step.operator_id!r} cannot take {count} inputs",
                        index,
                    )
                depth += 1
            elif isinstance(step, RelayStep):
                operator = self._require_operator(chain, step.operator_id, index)
                needed = operator.arity or 1
                if depth < needed:
                    raise _definition_error(
                        chain.chain_id,
                        f"relay {step.operator_id!r} needs {needed} active value(s), has {depth}",
                        index,
                    )
                depth = 1 if operator.arity is None else depth - needed + 1
            else:
                if depth < 1:
                    raise _definition_error(
                        chain.chain_id, f"{step.kind} step has no active value", index
                    )
                if isinstance(step, SinkStep):
                    if index != last_index:
                        raise _definition_error(chain.chain_id, "sink must be the last step", index)
                    self._require_sink(chain, step.sink_id, index)
                elif isinstance(step, FanoutStep):
                    for sink_id in step.sink_ids:
                        self._require_sink(chain, sink_id, index)

    def _require_source(self, chain: Chain, source_id: str, index: int) -> None:
        if source_id not in self.sources:
            raise _definition_error(chain.chain_id, f"unknown source {source_id!r}", index)

    def _require_sink(self, chain: Chain, sink_id: str, index: int) -> None:
        if sink_id not in self.sinks:
            raise _definition_error(chain.chain_id, f"unknown sink {sink_id!r}", index)

    def _require_operator(self, chain: Chain, operator_id: str, index: int) -> RelayOperator:
        try:
            return self.relays.get(operator_id)
        except UnknownComponent as exc:
            raise _definition_error(
                chain.chain_id, f"unknown relay operator {operator_id!r}", index
            ) from exc

    def get_chain(self, chain_id: str | ChainHandle) -> Chain:
        key = chain_id.chain_id if isinstance(chain_id, ChainHandle) else chain_id
        chain = self._chains.get(key)
        if chain is None:
            raise UnknownComponent(f"unknown chain: {key}", component_id=key)
        return chain

    def list_chains(self, category: SinkCategory | str | None = None) -> list[ChainHandle]:
        chains = sorted(self._chains.values(), key=lambda c: c.chain_id)
        if category is not None:
            wanted = SinkCategory(category)
            chains = [c for c in chains if c.expected_category == wanted]
        return [c.handle() for c in chains]

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._chains

    def __len__(self) -> int:
        return len(self._chains)

    async def run_chain(
        self,
        handle: ChainHandle | str,
        scopes: RunScopes | None = None,
        *,
        context: Any = None,
        timeout_s: float | None = None,
    ) -> ChainRunResult:
        """Run a defined chain once and return its terminal result.

        Errors inside steps are recorded on the result; only a bad handle or
        missing session id raises.
        """
        chain = self.get_chain(handle)
        scopes = scopes or RunScopes()
        if scopes.session_id is None and uses_session_scope(chain):
            raise ValueError(
                f"chain {chain.chain_id!r} uses session storage; RunScopes.session_id is required"
            )
        execution = ChainExecution(
            chain,
            scopes,
            sources=self.sources,
            sinks=self.sinks,
            relays=self.relays,
            store=self.store,
            context=context,
            timeout_s=timeout_s if timeout_s is not None else self._default_timeout_s,
            verify_store_loads=self._verify_store_loads,
        )
        return await execution.run()

    async def run_many(
        self,
        handles: Iterable[ChainHandle | str],
        scopes: RunScopes | None = None,
        *,
        context: Any = None,
        timeout_s: float | None = None,
    ) -> list[ChainRunResult]:
        """Run independent chains concurrently; each gets its own execution id."""
        session_id = scopes.session_id if scopes else None
        return list(
            await asyncio.gather(
                *(
                    self.run_chain(
                        handle,
                        RunScopes(session_id=session_id),
                        context=context,
                        timeout_s=timeout_s,
                    )
                    for handle in handles
                )
            )
        )

    def ground_truth(self, category: SinkCategory | str | None = None) -> list[dict[str, object]]:
        """JSON-safe description of every defined chain, for scanner evaluation."""
        entries: list[dict[str, object]] = []
        for handle in self.list_chains(category):
            chain = self._chains[handle.chain_id]
            entries.append(
                {
                    "chain_id": chain.chain_id,
                    "name": handle.name,
                    "expected_category": str(chain.expected_category),
                    "sources": [
                        {"id": sid, "category": str(self.sources.get(sid).category)}
                        for sid in chain.source_ids()
                    ],
                    "sinks": [
                        {
                            "id": sid,
                            "categories": sorted(str(c) for c in self.sinks.get(sid).categories),
                        }
                        for sid in chain.sink_ids()
                    ],
                    "step_kinds": [step.kind for step in chain.steps],
                    "operators": [
                        step.operator_id
                        for step in chain.steps
                        if isinstance(step, RelayStep | MergeStep)
                    ],
                    "tags": list(chain.tags),
                    "description": chain.description,
                }
            )
        return entries


__all__ = ["ChainBuilder", "uses_session_scope"]
