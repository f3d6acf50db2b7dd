"""Tests for relays that cross asynchronous boundaries."""

from __future__ import annotations

import asyncio

import pytest
from taintchain.errors import RelayFailed
from taintchain.models.provenance import TaintedValue
from taintchain.relay.cross_boundary import BOUNDARY_OPERATORS, CrossBoundaryRelay

from tests.helpers import tainted


@pytest.fixture
def relay() -> CrossBoundaryRelay:
    return CrossBoundaryRelay(boundary_timeout_s=1.0)


@pytest.mark.parametrize("operator_id", [op.operator_id for op in BOUNDARY_OPERATORS])
async def test_boundary_operator_preserves_value(
    relay: CrossBoundaryRelay, operator_id: str
) -> None:
    value = tainted({"host": "metadata.internal", "port": 80}, hop_count=1)
    output = await relay.apply(operator_id, [value])
    assert output.payload == value.payload
    assert output.labels == value.labels
    assert output.hop_count == 2


async def test_boundary_operators_are_registered_alongside_builtins(
    relay: CrossBoundaryRelay,
) -> None:
    assert set(relay.boundary_operators) == {
        "callback",
        "deferred",
        "message_passing",
        "scheduled",
        "worker_thread",
    }
    assert "passthrough" in relay


async def test_worker_thread_returns_a_decoded_copy(relay: CrossBoundaryRelay) -> None:
    value = tainted(["a", "b"])
    output = await relay.apply("worker_thread", [value])
    assert output.payload == ["a", "b"]
    assert output.payload is not value.payload


async def test_scheduled_waits_for_delay(relay: CrossBoundaryRelay) -> None:
    loop = asyncio.get_running_loop()
    started = loop.time()
    await relay.apply("scheduled", [tainted("x")], {"delay_s": 0.05})
    assert loop.time() - started >= 0.04


async def test_scheduled_past_timeout_fails(relay: CrossBoundaryRelay) -> None:
    with pytest.raises(RelayFailed, match="did not resume"):
        await relay.apply("scheduled", [tainted("x")], {"delay_s": 5.0, "timeout_s": 0.01})


async def test_custom_suspending_operator_is_bounded() -> None:
    relay = CrossBoundaryRelay(boundary_timeout_s=0.01)

    async def stuck(value: TaintedValue) -> TaintedValue:
        await asyncio.sleep(10)
        return value

    relay.register("stuck", stuck, suspends=True)
    with pytest.raises(RelayFailed) as excinfo:
        await relay.apply("stuck", [tainted("x")], step_index=4)
    assert excinfo.value.component_id == "stuck"
    assert excinfo.value.step_index == 4
    assert isinstance(excinfo.value.__cause__, TimeoutError)


async def test_message_passing_leaves_no_pending_tasks(relay: CrossBoundaryRelay) -> None:
    before = len(asyncio.all_tasks())
    await relay.apply("message_passing", [tainted("x")])
    assert len(asyncio.all_tasks()) == before


async def test_boundary_relays_interleave_across_chains(relay: CrossBoundaryRelay) -> None:
    values = [tainted(f"v{i}", f"origin-{i}") for i in range(5)]
    outputs = await asyncio.gather(
        *(relay.apply("scheduled", [v], {"delay_s": 0.01 * (5 - i)}) for i, v in enumerate(values))
    )
    for value, output in zip(values, outputs, strict=True):
        assert output.labels == value.labels
        assert output.payload == value.payload
