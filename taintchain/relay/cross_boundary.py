"""Relays that hand a value across an asynchronous or process boundary.

These operators carry the whole ``TaintedValue`` across the boundary and
return whatever arrives on the other side, so the engine's verification sees
exactly what a consumer in the target system would receive. Each may suspend
the running chain; steps of the same chain still never overlap because the
builder awaits the relay before moving on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from taintchain.errors import RelayFailed
from taintchain.models.provenance import TaintedValue
from taintchain.relay.engine import RelayEngine
from taintchain.relay.operators import RelayOperator

logger = logging.getLogger(__name__)


async def deferred(value: TaintedValue) -> TaintedValue:
    """Yield to the event loop once, like a zero-delay timer."""
    await asyncio.sleep(0)
    return value


async def callback(value: TaintedValue) -> TaintedValue:
    """Deliver the value through a callback scheduled on the loop."""
    loop = asyncio.get_running_loop()
    delivered: asyncio.Future[TaintedValue] = loop.create_future()
    loop.call_soon(delivered.set_result, value)
    return await delivered


async def scheduled(value: TaintedValue, *, delay_s: float = 0.0) -> TaintedValue:
    """Resume with the value from a continuation scheduled ``delay_s`` later."""
    loop = asyncio.get_running_loop()
    delivered: asyncio.Future[TaintedValue] = loop.create_future()
    handle = loop.call_later(max(0.0, delay_s), delivered.set_result, value)
    try:
        return await delivered
    finally:
        handle.cancel()


async def message_passing(value: TaintedValue) -> TaintedValue:
    """Send the value over a queue to a separate consumer task."""
    channel: asyncio.Queue[TaintedValue] = asyncio.Queue(maxsize=1)
    loop = asyncio.get_running_loop()
    received: asyncio.Future[TaintedValue] = loop.create_future()

    async def consume() -> None:
        message = await channel.get()
        channel.task_done()
        received.set_result(message)

    consumer = asyncio.create_task(consume())
    try:
        await channel.put(value)
        return await received
    finally:
        if not consumer.done():
            consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)


async def worker_thread(value: TaintedValue) -> TaintedValue:
    """Serialize, decode on a worker thread, and hand the decoded value back.

    The payload must be JSON-serializable; this is the same constraint a
    cross-process message would impose.
    """
    wire = value.model_dump_json()
    return await asyncio.to_thread(TaintedValue.model_validate_json, wire)


BOUNDARY_OPERATORS: tuple[RelayOperator, ...] = (
    RelayOperator("deferred", deferred, suspends=True, description="zero-delay timer"),
    RelayOperator("callback", callback, suspends=True, description="loop callback delivery"),
    RelayOperator("scheduled", scheduled, suspends=True, description="delayed continuation"),
    RelayOperator(
        "message_passing", message_passing, suspends=True, description="queue to consumer task"
    ),
    RelayOperator(
        "worker_thread", worker_thread, suspends=True, description="serialized thread hand-off"
    ),
)


class CrossBoundaryRelay(RelayEngine):
    """Relay engine that also knows the boundary-crossing operators.

    A suspending operator is bounded by ``boundary_timeout_s`` (overridable per
    step with a ``timeout_s`` param); exceeding it fails the step with
    ``RelayFailed``.
    """

    def __init__(
        self,
        *,
        include_builtins: bool = True,
        boundary_timeout_s: float = 5.0,
    ) -> None:
        super().__init__(include_builtins=include_builtins)
        self._boundary_timeout_s = boundary_timeout_s
        for operator in BOUNDARY_OPERATORS:
            self.register_operator(operator)

    @property
    def boundary_operators(self) -> list[str]:
        return [op.operator_id for op in self.list() if op.suspends]

    async def _invoke(
        self,
        operator: RelayOperator,
        inputs: list[TaintedValue],
        params: dict[str, Any],
    ) -> Any:
        if not operator.suspends:
            return await super()._invoke(operator, inputs, params)

        timeout_s = float(params.pop("timeout_s", self._boundary_timeout_s))
        try:
            async with asyncio.timeout(timeout_s):
                return await super()._invoke(operator, inputs, params)
        except TimeoutError as exc:
            logger.warning(
                "boundary_relay_timeout operator=%s timeout_s=%s", operator.operator_id, timeout_s
            )
            raise RelayFailed(
                f"{operator.operator_id!r} did not resume within {timeout_s}s",
                component_id=operator.operator_id,
            ) from exc


__all__ = [
    "BOUNDARY_OPERATORS",
    "CrossBoundaryRelay",
    "callback",
    "deferred",
    "message_passing",
    "scheduled",
    "worker_thread",
]
