"""OpenTelemetry tracing setup for benchmark runs.

Exports spans via OTLP gRPC, or to stdout when the endpoint is ``console``.
When no endpoint is configured, all tracing is a no-op.
"""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import NoOpTracerProvider

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | NoOpTracerProvider | None = None


def init_tracing(
    *,
    service_name: str = "taintchain",
    env: str = "dev",
    endpoint: str | None = None,
) -> TracerProvider | NoOpTracerProvider:
    """Initialize OpenTelemetry tracing.

    If endpoint is None or empty, installs a no-op provider so callers
    don't need conditional logic.
    """
    global _tracer_provider  # noqa: PLW0603

    if not endpoint:
        provider = NoOpTracerProvider()
        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        logger.info("Tracing disabled (no endpoint configured)")
        return provider

    try:
        package_version = pkg_version("taintchain")
    except PackageNotFoundError:
        package_version = "0.0.0"

    resource = Resource.create(
        {
            "service.name": service_name,
            "deployment.environment": env,
            "service.version": package_version,
        }
    )
    provider = TracerProvider(resource=resource)
    if endpoint == "console":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        logger.info("Tracing enabled → console (env=%s)", env)
    else:
        exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("Tracing enabled → %s (env=%s)", endpoint, env)

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the configured provider."""
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush and shut down the tracer provider."""
    if isinstance(_tracer_provider, TracerProvider):
        _tracer_provider.shutdown()


__all__ = ["get_tracer", "init_tracing", "shutdown_tracing"]
