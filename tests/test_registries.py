"""Tests for source and sink registries."""

from __future__ import annotations

import asyncio
import time

import pytest
from pydantic import ValidationError
from taintchain.errors import (
    DuplicateRegistration,
    SinkRejected,
    SourceUnavailable,
    UnknownComponent,
)
from taintchain.models.provenance import SourceCategory, TrustLevel
from taintchain.models.registry import SinkCategory, SinkDescriptor, SourceDescriptor
from taintchain.protocols.capabilities import (
    FunctionSink,
    FunctionSource,
    SinkCapability,
    SourceCapability,
)
from taintchain.registry.sinks import SinkRegistry
from taintchain.registry.sources import SourceRegistry
from taintchain.stubs import ContextFieldSource, RecordingSink

from tests.fakes import AsyncRecordingSink, BlockingSink, FailingSource, SlowSource
from tests.helpers import metric_value, tainted


def _source(
    source_id: str = "q", capability: object | None = None, **kwargs: object
) -> SourceDescriptor:
    return SourceDescriptor(
        id=source_id,
        category=SourceCategory.http_query,
        produce=capability or ContextFieldSource("q", default="1 OR 1=1"),
        **kwargs,
    )


def _sink(
    sink_id: str = "db", capability: object | None = None, **kwargs: object
) -> SinkDescriptor:
    return SinkDescriptor(
        id=sink_id,
        categories=frozenset({SinkCategory.sql}),
        consume=capability or RecordingSink(name=sink_id),
        **kwargs,
    )


class TestDescriptors:
    def test_source_label_defaults_origin_to_id(self) -> None:
        descriptor = _source("search")
        assert descriptor.label().origin_id == "search"
        assert descriptor.label().category == SourceCategory.http_query

    def test_source_label_uses_origin_and_trust(self) -> None:
        descriptor = _source(origin_id="GET /search", trust_level=TrustLevel.semi_trusted)
        assert descriptor.label().origin_id == "GET /search"
        assert descriptor.label().trust_level == TrustLevel.semi_trusted

    def test_source_requires_produce(self) -> None:
        with pytest.raises(ValidationError, match="produce"):
            SourceDescriptor(id="x", category=SourceCategory.env, produce=object())

    def test_sink_requires_a_category(self) -> None:
        with pytest.raises(ValidationError):
            SinkDescriptor(id="x", categories=frozenset(), consume=RecordingSink())

    def test_capability_protocols(self) -> None:
        assert isinstance(ContextFieldSource("f"), SourceCapability)
        assert isinstance(RecordingSink(), SinkCapability)
        assert isinstance(FunctionSource(lambda ctx: ctx), SourceCapability)
        assert isinstance(FunctionSink(lambda raw: raw), SinkCapability)


class TestSourceRegistry:
    async def test_invoke_labels_at_hop_zero(self) -> None:
        registry = SourceRegistry()
        registry.register(_source())
        value = await registry.invoke("q", {"q": "admin'--"})
        assert value.payload == "admin'--"
        assert value.hop_count == 0
        assert [str(lbl) for lbl in value.labels] == ["http_query:q"]

    async def test_invoke_uses_default_without_context(self) -> None:
        registry = SourceRegistry()
        registry.register(_source())
        assert (await registry.invoke("q")).payload == "1 OR 1=1"

    async def test_capability_error_becomes_source_unavailable(self) -> None:
        registry = SourceRegistry()
        registry.register(_source(capability=FailingSource("dns down")))
        before = metric_value("taintchain_source_invocations_total", source_id="q", outcome="error")
        with pytest.raises(SourceUnavailable, match="dns down") as excinfo:
            await registry.invoke("q")
        assert excinfo.value.component_id == "q"
        assert isinstance(excinfo.value.__cause__, ConnectionError)
        after = metric_value("taintchain_source_invocations_total", source_id="q", outcome="error")
        assert after == before + 1

    async def test_timeout_precedence(self) -> None:
        registry = SourceRegistry(default_timeout_s=0.01)
        registry.register(_source(capability=SlowSource(0.05), timeout_s=1.0))
        # descriptor timeout beats the registry default
        assert (await registry.invoke("q")).payload == "slow"
        # per-call timeout beats the descriptor
        with pytest.raises(SourceUnavailable, match="timed out"):
            await registry.invoke("q", timeout_s=0.01)

    async def test_registry_default_timeout(self) -> None:
        registry = SourceRegistry(default_timeout_s=0.01)
        registry.register(_source(capability=SlowSource(1.0)))
        with pytest.raises(SourceUnavailable):
            await registry.invoke("q")

    def test_list_and_lookup(self) -> None:
        registry = SourceRegistry()
        registry.register(_source("b"))
        registry.register(
            SourceDescriptor(
                id="a", category=SourceCategory.cookie, produce=ContextFieldSource("c")
            )
        )
        assert [d.id for d in registry.list()] == ["a", "b"]
        assert [d.id for d in registry.list("cookie")] == ["a"]
        assert "a" in registry
        assert len(registry) == 2
        with pytest.raises(UnknownComponent):
            registry.get("zzz")

    def test_duplicate(self) -> None:
        registry = SourceRegistry()
        registry.register(_source())
        with pytest.raises(DuplicateRegistration):
            registry.register(_source())


class TestSinkRegistry:
    async def test_invoke_passes_payload_and_echoes_labels(self) -> None:
        recorder = RecordingSink(name="db")
        registry = SinkRegistry()
        registry.register(_sink(capability=recorder))
        value = tainted("SELECT 1", hop_count=3)

        result = await registry.invoke("db", value)

        assert recorder.received == ["SELECT 1"]
        assert result.accepted is True
        assert result.raw_result == {"sink": "db", "received": "SELECT 1"}
        assert result.observed_labels == value.labels
        assert result.hop_count == 3

    async def test_async_capability(self) -> None:
        recorder = AsyncRecordingSink()
        registry = SinkRegistry()
        registry.register(_sink(capability=recorder))
        result = await registry.invoke("db", tainted("x"))
        assert result.raw_result == 1

    async def test_rejection_echoes_labels(self) -> None:
        registry = SinkRegistry()
        registry.register(_sink(capability=RecordingSink(fail_with="syntax error")))
        value = tainted("x", hop_count=2)
        with pytest.raises(SinkRejected, match="syntax error") as excinfo:
            await registry.invoke("db", value)
        assert excinfo.value.observed_labels == value.labels
        assert excinfo.value.hop_count == 2

    async def test_timeout_rejects(self) -> None:
        registry = SinkRegistry(default_timeout_s=0.01)
        registry.register(_sink(capability=AsyncRecordingSink(delay_s=1.0)))
        with pytest.raises(SinkRejected, match="timed out"):
            await registry.invoke("db", tainted("x"))

    async def test_blocking_sync_sink_times_out(self) -> None:
        registry = SinkRegistry(default_timeout_s=0.05)
        registry.register(_sink(capability=BlockingSink(delay_s=0.5)))
        started = time.perf_counter()
        with pytest.raises(SinkRejected, match="timed out"):
            await registry.invoke("db", tainted("x"))
        assert time.perf_counter() - started < 0.4

    async def test_sync_sink_runs_off_the_loop(self) -> None:
        registry = SinkRegistry(default_timeout_s=1.0)
        registry.register(_sink(capability=BlockingSink(delay_s=0.2)))
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            for _ in range(5):
                await asyncio.sleep(0.01)
                ticks += 1

        sink_result, _ = await asyncio.gather(registry.invoke("db", tainted("x")), ticker())

        assert sink_result.raw_result == 1
        assert ticks == 5

    def test_list_by_category(self) -> None:
        registry = SinkRegistry()
        registry.register(_sink("db"))
        registry.register(
            SinkDescriptor(
                id="upload",
                categories=frozenset({SinkCategory.path, SinkCategory.command}),
                consume=RecordingSink(),
            )
        )
        assert [d.id for d in registry.list(SinkCategory.command)] == ["upload"]
        assert [d.id for d in registry.list()] == ["db", "upload"]

    def test_unknown_and_duplicate(self) -> None:
        registry = SinkRegistry()
        registry.register(_sink())
        with pytest.raises(DuplicateRegistration):
            registry.register(_sink())
        with pytest.raises(UnknownComponent):
            registry.get("nope")
