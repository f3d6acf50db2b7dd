"""Tests for the TaintHarness facade."""

from __future__ import annotations

import pytest
from taintchain import ChainState, SinkCategory, TaintHarness
from taintchain.config import HarnessConfig
from taintchain.models.chains import relay, sink, source
from taintchain.protocols.capabilities import FunctionSink, FunctionSource


def test_plain_callables_are_adapted() -> None:
    harness = TaintHarness()
    source_descriptor = harness.register_source("q", "http_query", lambda ctx: ctx["q"])
    sink_descriptor = harness.register_sink("db", "sql", lambda raw: len(raw))
    assert isinstance(source_descriptor.produce, FunctionSource)
    assert isinstance(sink_descriptor.consume, FunctionSink)
    assert sink_descriptor.categories == frozenset({SinkCategory.sql})


def test_multi_category_sink() -> None:
    harness = TaintHarness()
    descriptor = harness.register_sink("upload", ["path", "command"], lambda raw: raw)
    assert descriptor.categories == frozenset({SinkCategory.path, SinkCategory.command})


def test_register_source_needs_capability() -> None:
    with pytest.raises(TypeError, match="produce"):
        TaintHarness().register_source("q", "http_query")


def test_register_sink_needs_categories() -> None:
    with pytest.raises(TypeError, match="categories"):
        TaintHarness().register_sink("db", consume=lambda raw: raw)


def test_config_reaches_components() -> None:
    harness = TaintHarness(HarnessConfig(default_timeout_s=None, verify_store_loads=False))
    assert harness.config.default_timeout_s is None
    assert "scheduled" in harness.relays


async def test_callable_capabilities_run_end_to_end() -> None:
    harness = TaintHarness()
    seen: list[str] = []
    harness.register_source("q", "http_query", lambda ctx: ctx["q"])
    harness.register_sink("db", "sql", seen.append)
    handle = harness.define_chain(
        [source("q"), relay("concat", prefix="WHERE name = "), sink("db")], "sql"
    )

    result = await harness.run_chain(handle, context={"q": "'x' OR 1=1"})

    assert result.state == ChainState.completed
    assert seen == ["WHERE name = 'x' OR 1=1"]
    assert harness.flagged_operators == frozenset()
