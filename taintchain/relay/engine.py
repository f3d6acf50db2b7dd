"""Relay engine: the registry and executor for provenance-preserving transforms."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from taintchain.core.metrics import TAINT_LOSS_TOTAL
from taintchain.errors import (
    DuplicateRegistration,
    RelayFailed,
    TaintChainError,
    TaintLossError,
    UnknownComponent,
)
from taintchain.models.provenance import TaintedValue
from taintchain.relay.operators import BUILTIN_OPERATORS, RelayOperator
from taintchain.relay.verify import ensure_preserved

logger = logging.getLogger(__name__)


class RelayEngine:
    """Holds relay operators by id and applies them under the non-loss contract.

    Every output is stamped with ``hop_count = max(input hops) + 1``. Outputs
    of preserving operators are checked against the union of their input
    labels; an operator caught dropping labels is remembered in
    ``flagged_operators`` so maintainers can find it after the run.

    Lifted operators work on payloads. A lifted preserving operator gets the
    union of its input labels; a lifted non-preserving one (``literal``)
    produces an unlabeled constant.
    """

    def __init__(self, *, include_builtins: bool = True) -> None:
        self._operators: dict[str, RelayOperator] = {}
        self._flagged: set[str] = set()
        if include_builtins:
            for operator in BUILTIN_OPERATORS:
                self.register_operator(operator)

    def register(
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
        if arity is not None and arity < 1:
            raise ValueError(f"arity must be >= 1 or None (variadic), got {arity}")
        operator = RelayOperator(
            operator_id=operator_id,
            func=func,
            arity=arity,
            preserving=preserving,
            suspends=suspends,
            lifted=lifted,
            description=description,
        )
        return self.register_operator(operator)

    def register_operator(self, operator: RelayOperator) -> RelayOperator:
        if operator.operator_id in self._operators:
            raise DuplicateRegistration(
                f"relay operator already registered: {operator.operator_id}",
                component_id=operator.operator_id,
            )
        self._operators[operator.operator_id] = operator
        logger.debug(
            "relay_registered operator=%s arity=%s preserving=%s suspends=%s",
            operator.operator_id,
            operator.arity,
            operator.preserving,
            operator.suspends,
        )
        return operator

    def get(self, operator_id: str) -> RelayOperator:
        operator = self._operators.get(operator_id)
        if operator is None:
            raise UnknownComponent(
                f"unknown relay operator: {operator_id}", component_id=operator_id
            )
        return operator

    def list(self, *, preserving: bool | None = None) -> list[RelayOperator]:
        operators = sorted(self._operators.values(), key=lambda op: op.operator_id)
        if preserving is None:
            return operators
        return [op for op in operators if op.preserving == preserving]

    def __contains__(self, operator_id: object) -> bool:
        return operator_id in self._operators

    @property
    def flagged_operators(self) -> frozenset[str]:
        return frozenset(self._flagged)

    async def apply(
        self,
        operator_id: str,
        inputs: Sequence[TaintedValue],
        params: Mapping[str, Any] | None = None,
        *,
        step_index: int | None = None,
    ) -> TaintedValue:
        """Run one operator over ``inputs`` and verify the result."""
        operator = self.get(operator_id)
        if not inputs or not operator.accepts(len(inputs)):
            raise RelayFailed(
                f"{operator_id!r} expects {operator.arity or 'one or more'} input(s), "
                f"got {len(inputs)}",
                component_id=operator_id,
                step_index=step_index,
            )

        try:
            output = await self._invoke(operator, list(inputs), dict(params or {}))
        except TaintChainError as exc:
            if exc.step_index is None:
                exc.step_index = step_index
            raise
        except Exception as exc:
            raise RelayFailed(
                f"{operator_id!r} raised {type(exc).__name__}: {exc}",
                component_id=operator_id,
                step_index=step_index,
            ) from exc

        if not isinstance(output, TaintedValue):
            raise RelayFailed(
                f"{operator_id!r} returned {type(output).__name__}, expected TaintedValue",
                component_id=operator_id,
                step_index=step_index,
            )
        output = output.model_copy(
            update={"hop_count": max(value.hop_count for value in inputs) + 1}
        )

        if operator.preserving:
            try:
                ensure_preserved(operator_id, inputs, output, step_index=step_index)
            except TaintLossError:
                self._flagged.add(operator_id)
                TAINT_LOSS_TOTAL.labels(operator=operator_id).inc()
                logger.error(
                    "relay_taint_loss operator=%s step=%s", operator_id, step_index
                )
                raise
        return output

    async def _invoke(
        self,
        operator: RelayOperator,
        inputs: list[TaintedValue],
        params: dict[str, Any],
    ) -> Any:
        if operator.lifted:
            payload = operator.func(*(value.payload for value in inputs), **params)
            if inspect.isawaitable(payload):
                payload = await payload
            if operator.preserving:
                return TaintedValue.combine(inputs, payload)
            return TaintedValue.literal(payload)

        output = operator.func(*inputs, **params)
        if inspect.isawaitable(output):
            output = await output
        return output


__all__ = ["RelayEngine"]
