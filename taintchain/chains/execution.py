"""Run loop for a single chain.

One ``ChainExecution`` owns one run: the active-value stack, the origin
labels seen so far and the ``ChainRunResult`` being built. Steps are
dispatched through ``STEP_HANDLERS`` keyed by ``kind``; the table is checked
against ``STEP_KINDS`` at import so a new step kind cannot be added without a
handler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from taintchain.core.logging import correlation_scope
from taintchain.core.metrics import CHAIN_RUNS_TOTAL, observe_step_duration
from taintchain.core.telemetry import get_tracer
from taintchain.errors import (
    ChainBroken,
    RelayFailed,
    SinkRejected,
    StoreReadError,
    TaintChainError,
    TaintLossError,
)
from taintchain.models.chains import (
    STEP_KINDS,
    TERMINAL_STATES,
    Chain,
    ChainRunResult,
    ChainState,
    ErrorRecord,
    FanoutStep,
    LoadStep,
    MergeStep,
    ProvenanceOutcome,
    RelayStep,
    RunScopes,
    SinkStep,
    SourceStep,
    Step,
    StepTrace,
    StoreStep,
    utc_now,
)
from taintchain.models.provenance import ProvenanceLabel, TaintedValue
from taintchain.models.registry import SinkResult
from taintchain.models.store import StoreScope
from taintchain.registry.sinks import SinkRegistry
from taintchain.registry.sources import SourceRegistry
from taintchain.relay.engine import RelayEngine
from taintchain.relay.verify import classify, ensure_labels
from taintchain.store.scoped import ScopedStore

logger = logging.getLogger(__name__)

_TRACER = get_tracer("taintchain.chains")

_TRANSITIONS: dict[ChainState, frozenset[ChainState]] = {
    ChainState.pending: frozenset({ChainState.running}),
    ChainState.running: TERMINAL_STATES,
    ChainState.completed: frozenset(),
    ChainState.broken: frozenset(),
    ChainState.failed: frozenset(),
}

# Errors that mean the modeled flow itself lost its taint.
_BREAKING_ERRORS: tuple[type[TaintChainError], ...] = (TaintLossError, StoreReadError, ChainBroken)


class InvalidStateTransition(RuntimeError):
    def __init__(self, current: ChainState, target: ChainState) -> None:
        super().__init__(f"illegal chain state transition: {current} -> {target}")
        self.current = current
        self.target = target


def error_record(exc: TaintChainError, step_index: int | None = None) -> ErrorRecord:
    missing: frozenset[ProvenanceLabel] = getattr(exc, "missing_labels", frozenset())
    return ErrorRecord(
        kind=exc.kind,
        message=exc.message,
        step_index=exc.step_index if exc.step_index is not None else step_index,
        component_id=exc.component_id,
        missing_labels=sorted(str(label) for label in missing),
    )


class ChainExecution:
    """Executes one chain once against shared registries and store."""

    def __init__(
        self,
        chain: Chain,
        scopes: RunScopes,
        *,
        sources: SourceRegistry,
        sinks: SinkRegistry,
        relays: RelayEngine,
        store: ScopedStore,
        context: Any = None,
        timeout_s: float | None = None,
        verify_store_loads: bool = True,
    ) -> None:
        self.chain = chain
        self.scopes = scopes
        self._sources = sources
        self._sinks = sinks
        self._relays = relays
        self._store = store
        self._context = context
        self._timeout_s = timeout_s
        self._verify_store_loads = verify_store_loads
        self._stack: list[TaintedValue] = []
        self._origin_labels: set[ProvenanceLabel] = set()
        # labels this run wrote, by (scope, partition, key)
        self._written: dict[tuple[StoreScope, str | None, str], frozenset[ProvenanceLabel]] = {}
        self.result = ChainRunResult(
            chain_id=chain.chain_id,
            expected_category=chain.expected_category,
            execution_id=scopes.execution_id,
            session_id=scopes.session_id,
        )

    @property
    def state(self) -> ChainState:
        return self.result.state

    def transition(self, target: ChainState) -> None:
        if target not in _TRANSITIONS[self.result.state]:
            raise InvalidStateTransition(self.result.state, target)
        self.result.state = target

    async def run(self) -> ChainRunResult:
        self.transition(ChainState.running)
        result = self.result
        with (
            correlation_scope(
                chain_id=self.chain.chain_id,
                run_id=result.run_id,
                execution_id=self.scopes.execution_id,
            ),
            _TRACER.start_as_current_span("chain.run") as span,
        ):
            span.set_attribute("taintchain.chain_id", self.chain.chain_id)
            span.set_attribute("taintchain.expected_category", str(self.chain.expected_category))
            logger.info(
                "chain_run_started chain=%s steps=%d", self.chain.chain_id, len(self.chain.steps)
            )
            try:
                await self._run_steps()
            finally:
                self._store.release(StoreScope.request, self.scopes.execution_id)
                result.origin_labels = frozenset(self._origin_labels)
                result.finished_at = utc_now()
                CHAIN_RUNS_TOTAL.labels(
                    expected_category=str(self.chain.expected_category),
                    state=str(result.state),
                ).inc()
            span.set_attribute("taintchain.state", str(result.state))
            logger.info(
                "chain_run_finished chain=%s state=%s error=%s",
                self.chain.chain_id,
                result.state,
                result.error.kind if result.error else None,
            )
        return result

    async def _run_steps(self) -> None:
        for index, step in enumerate(self.chain.steps):
            with correlation_scope(step_index=index):
                await self._run_step(index, step)
            if self.result.state in TERMINAL_STATES:
                return

        # Definition-time validation makes this unreachable for built chains.
        exc = ChainBroken("chain ended without reaching a sink", step_index=len(self.chain.steps))
        self._finish(ChainState.broken, error_record(exc))

    async def _run_step(self, index: int, step: Step) -> None:
        handler = STEP_HANDLERS[step.kind]
        started = time.perf_counter()
        try:
            with (
                observe_step_duration(step.kind),
                _TRACER.start_as_current_span(f"chain.step.{step.kind}"),
            ):
                entry = await handler(self, index, step)
        except TaintChainError as exc:
            self._record_failure(index, step, exc, started)
            return
        except Exception as exc:
            logger.exception("chain_step_crashed chain=%s step=%d", self.chain.chain_id, index)
            record = ErrorRecord(
                kind="internal_error",
                message=f"{type(exc).__name__}: {exc}",
                step_index=index,
            )
            self._append(self._entry(index, step, error=record), started)
            self._finish(ChainState.failed, record)
            return
        self._append(entry, started)

    def _record_failure(
        self, index: int, step: Step, exc: TaintChainError, started: float
    ) -> None:
        if exc.step_index is None:
            exc.step_index = index
        record = error_record(exc, index)
        if isinstance(exc, SinkRejected):
            entry = StepTrace(
                step_index=index,
                step=step,
                labels=exc.observed_labels,
                hop_count=exc.hop_count,
                sink_results=[self._rejected_result(exc)],
                error=record,
            )
            self.result.sink_results.extend(entry.sink_results)
        else:
            outcome = (
                ProvenanceOutcome.lost
                if isinstance(exc, TaintLossError)
                else ProvenanceOutcome.not_applicable
            )
            entry = self._entry(index, step, outcome=outcome, error=record)
        self._append(entry, started)

        state = ChainState.broken if isinstance(exc, _BREAKING_ERRORS) else ChainState.failed
        log = logger.error if isinstance(exc, TaintLossError) else logger.warning
        log(
            "chain_step_error chain=%s step=%d kind=%s component=%s",
            self.chain.chain_id,
            index,
            exc.kind,
            exc.component_id,
        )
        self._finish(state, record)

    def _finish(self, state: ChainState, error: ErrorRecord | None = None) -> None:
        self.result.error = error
        self.transition(state)

    def _append(self, entry: StepTrace, started: float) -> None:
        entry.duration_ms = (time.perf_counter() - started) * 1000
        self.result.trace.append(entry)

    def _entry(self, index: int, step: Step, **fields: Any) -> StepTrace:
        top = self._stack[-1] if self._stack else None
        return StepTrace(
            step_index=index,
            step=step,
            labels=top.labels if top else frozenset(),
            hop_count=top.hop_count if top else 0,
            **fields,
        )

    def _scope_id(self, scope: StoreScope) -> str | None:
        if scope == StoreScope.request:
            return self.scopes.execution_id
        if scope == StoreScope.session:
            return self.scopes.session_id
        return None

    def _active(self, step: Step, index: int) -> TaintedValue:
        if not self._stack:
            raise RelayFailed(
                f"{step.kind} step has no active value", step_index=index
            )
        return self._stack[-1]

    def _load(self, scope: StoreScope, key: str, index: int) -> TaintedValue:
        """Read a stored value; a key this run wrote must still carry what it wrote."""
        scope_id = self._scope_id(scope)
        value = self._store.get(scope, key, scope_id=scope_id)
        written = self._written.get((scope, scope_id, key))
        if self._verify_store_loads and written is not None:
            ensure_labels(f"{scope}:{key}", written, value, step_index=index)
        self._origin_labels.update(value.labels)
        return value

    def _conclude(self, entry: StepTrace, delivered: TaintedValue) -> None:
        """Decide the terminal state once taint has reached the last sink(s)."""
        missing = frozenset(self._origin_labels) - delivered.labels
        if delivered.is_tainted and not missing:
            self._finish(ChainState.completed)
            return
        if not delivered.is_tainted:
            message = "value reached the sink without any provenance labels"
        else:
            message = f"{len(missing)} origin label(s) did not reach the sink"
        record = ErrorRecord(
            kind=ChainBroken.kind,
            message=message,
            step_index=entry.step_index,
            component_id=entry.sink_results[0].sink_id if entry.sink_results else None,
            missing_labels=sorted(str(label) for label in missing),
        )
        entry.error = record
        logger.warning(
            "chain_broken chain=%s step=%d missing=%d",
            self.chain.chain_id,
            entry.step_index,
            len(missing),
        )
        self._finish(ChainState.broken, record)

    @staticmethod
    def _rejected_result(exc: SinkRejected) -> SinkResult:
        return SinkResult(
            sink_id=exc.component_id or "",
            accepted=False,
            observed_labels=exc.observed_labels,
            hop_count=exc.hop_count,
            error=exc.message,
        )

    async def _run_source(self, index: int, step: SourceStep) -> StepTrace:
        value = await self._sources.invoke(
            step.source_id, self._context, timeout_s=self._timeout_s
        )
        self._origin_labels.update(value.labels)
        self._stack.append(value)
        return self._entry(index, step, outcome=ProvenanceOutcome.introduced)

    async def _run_relay(self, index: int, step: RelayStep) -> StepTrace:
        operator = self._relays.get(step.operator_id)
        arity = operator.arity or len(self._stack)
        if arity == 0 or len(self._stack) < arity:
            raise RelayFailed(
                f"{step.operator_id!r} needs {arity or 1} active value(s), "
                f"stack holds {len(self._stack)}",
                component_id=step.operator_id,
                step_index=index,
            )
        inputs = self._stack[-arity:]
        output = await self._relays.apply(step.operator_id, inputs, step.params, step_index=index)
        del self._stack[-arity:]
        self._stack.append(output)
        return self._entry(index, step, outcome=classify(inputs, output))

    async def _run_store(self, index: int, step: StoreStep) -> StepTrace:
        written = self._active(step, index).forward()
        scope_id = self._scope_id(step.scope)
        self._store.put(step.scope, step.key, written, scope_id=scope_id)
        self._written[(step.scope, scope_id, step.key)] = written.labels
        return StepTrace(
            step_index=index,
            step=step,
            labels=written.labels,
            hop_count=written.hop_count,
            outcome=ProvenanceOutcome.preserved,
        )

    async def _run_load(self, index: int, step: LoadStep) -> StepTrace:
        self._stack.append(self._load(step.scope, step.key, index))
        return self._entry(index, step, outcome=ProvenanceOutcome.introduced)

    async def _run_merge(self, index: int, step: MergeStep) -> StepTrace:
        inputs: list[TaintedValue] = []
        for source_id in step.source_ids:
            value = await self._sources.invoke(source_id, self._context, timeout_s=self._timeout_s)
            self._origin_labels.update(value.labels)
            inputs.append(value)
        for ref in step.loads:
            inputs.append(self._load(ref.scope, ref.key, index))
        output = await self._relays.apply(step.operator_id, inputs, step.params, step_index=index)
        self._stack.append(output)
        return self._entry(index, step, outcome=classify(inputs, output))

    async def _run_fanout(self, index: int, step: FanoutStep) -> StepTrace:
        delivered = self._active(step, index).forward()
        outcomes = await asyncio.gather(
            *(
                self._sinks.invoke(sink_id, delivered, timeout_s=self._timeout_s)
                for sink_id in step.sink_ids
            ),
            return_exceptions=True,
        )
        results: list[SinkResult] = []
        rejected: SinkRejected | None = None
        for outcome in outcomes:
            if isinstance(outcome, SinkRejected):
                rejected = rejected or outcome
                results.append(self._rejected_result(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)

        entry = StepTrace(
            step_index=index,
            step=step,
            labels=delivered.labels,
            hop_count=delivered.hop_count,
            outcome=ProvenanceOutcome.preserved,
            sink_results=results,
        )
        self.result.sink_results.extend(results)
        is_last = index == len(self.chain.steps) - 1
        if is_last:
            self.result.final_result = [r.raw_result for r in results]
            self.result.sink_category_match = any(
                self.chain.expected_category in self._sinks.get(r.sink_id).categories
                for r in results
            )

        if rejected is not None:
            rejected.step_index = index
            entry.error = error_record(rejected, index)
            logger.warning(
                "chain_fanout_rejected chain=%s step=%d rejected=%d of %d",
                self.chain.chain_id,
                index,
                sum(1 for r in results if not r.accepted),
                len(results),
            )
            self._finish(ChainState.failed, entry.error)
        elif is_last:
            self._conclude(entry, delivered)
        return entry

    async def _run_sink(self, index: int, step: SinkStep) -> StepTrace:
        delivered = self._active(step, index).forward()
        sink_result = await self._sinks.invoke(step.sink_id, delivered, timeout_s=self._timeout_s)
        self.result.sink_results.append(sink_result)
        self.result.final_result = sink_result.raw_result
        self.result.sink_category_match = (
            self.chain.expected_category in self._sinks.get(step.sink_id).categories
        )
        entry = StepTrace(
            step_index=index,
            step=step,
            labels=sink_result.observed_labels,
            hop_count=sink_result.hop_count,
            outcome=ProvenanceOutcome.preserved,
            sink_results=[sink_result],
        )
        self._conclude(entry, delivered)
        return entry


StepHandler = Callable[[ChainExecution, int, Any], Awaitable[StepTrace]]

STEP_HANDLERS: dict[str, StepHandler] = {
    "source": ChainExecution._run_source,
    "relay": ChainExecution._run_relay,
    "store": ChainExecution._run_store,
    "load": ChainExecution._run_load,
    "merge": ChainExecution._run_merge,
    "fanout": ChainExecution._run_fanout,
    "sink": ChainExecution._run_sink,
}

if frozenset(STEP_HANDLERS) != STEP_KINDS:
    raise RuntimeError(
        "step handler table out of sync with step kinds: "
        f"{sorted(STEP_KINDS.symmetric_difference(STEP_HANDLERS))}"
    )


__all__ = [
    "STEP_HANDLERS",
    "ChainExecution",
    "InvalidStateTransition",
    "error_record",
]
