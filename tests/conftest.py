from __future__ import annotations

import pytest
from taintchain.config import HarnessConfig
from taintchain.harness import TaintHarness
from taintchain.models.provenance import SourceCategory
from taintchain.models.registry import SinkCategory
from taintchain.stubs import ContextFieldSource, RecordingSink

from tests.helpers import Rig

SINK_CATEGORIES: dict[str, SinkCategory] = {
    "command_exec": SinkCategory.command,
    "sql_query": SinkCategory.sql,
    "html_response": SinkCategory.xss,
    "http_fetch": SinkCategory.ssrf,
    "log_write": SinkCategory.log,
}


@pytest.fixture
def rig() -> Rig:
    harness = TaintHarness(HarnessConfig(default_timeout_s=1.0, boundary_timeout_s=1.0))
    harness.register_source(
        "http_body",
        SourceCategory.http_body,
        ContextFieldSource("body", default="; cat /etc/passwd"),
    )
    harness.register_source(
        "http_query",
        SourceCategory.http_query,
        ContextFieldSource("query", default="1 OR 1=1"),
    )
    harness.register_source(
        "cookie",
        SourceCategory.cookie,
        ContextFieldSource("cookie", default="<script>alert(1)</script>"),
    )
    sinks: dict[str, RecordingSink] = {}
    for sink_id, category in SINK_CATEGORIES.items():
        sinks[sink_id] = RecordingSink(name=sink_id)
        harness.register_sink(sink_id, category, sinks[sink_id])
    return Rig(harness=harness, sinks=sinks)
