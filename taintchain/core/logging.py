"""Logging setup that tags records with the chain run they belong to.

Chains run concurrently and fan-out sinks run side by side, so a bare log
line says little. ``correlation_scope`` pins the chain, run, execution and
step ids to the current task and ``CorrelationFilter`` copies them onto every
record, together with the OpenTelemetry trace id.
"""

from __future__ import annotations

import contextvars
import dataclasses
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from opentelemetry import trace as _trace_api

CORRELATION_FIELDS: tuple[str, ...] = ("chain_id", "run_id", "execution_id", "step_index")


@dataclass(frozen=True, slots=True)
class CorrelationContext:
    chain_id: str | None = None
    run_id: str | None = None
    execution_id: str | None = None
    step_index: int | None = None

    def fields(self) -> dict[str, str | int | None]:
        return {name: getattr(self, name) for name in CORRELATION_FIELDS}


_EMPTY_CONTEXT = CorrelationContext()
_CORRELATION_CONTEXT: contextvars.ContextVar[CorrelationContext] = contextvars.ContextVar(
    "taintchain_correlation_context",
    default=_EMPTY_CONTEXT,
)


def get_correlation_context() -> CorrelationContext:
    return _CORRELATION_CONTEXT.get()


@contextmanager
def correlation_scope(**ids: str | int | None) -> Iterator[CorrelationContext]:
    """Overlay ``ids`` on the current context until the block exits.

    ``None`` values leave the outer id in place, so a step scope opened inside
    a run scope keeps the run's chain and execution ids.
    """
    unknown = set(ids) - set(CORRELATION_FIELDS)
    if unknown:
        raise TypeError(f"unknown correlation field(s): {', '.join(sorted(unknown))}")
    overrides = {name: value for name, value in ids.items() if value is not None}
    context = dataclasses.replace(get_correlation_context(), **overrides)
    token = _CORRELATION_CONTEXT.set(context)
    try:
        yield context
    finally:
        _CORRELATION_CONTEXT.reset(token)


def _current_otel_trace_id() -> str:
    span_context = _trace_api.get_current_span().get_span_context()
    if span_context and span_context.trace_id:
        return format(span_context.trace_id, "032x")
    return ""


class CorrelationFilter(logging.Filter):
    """Copy the active correlation ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in get_correlation_context().fields().items():
            setattr(record, name, value)
        record.otel_trace_id = _current_otel_trace_id()
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object | None] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CORRELATION_FIELDS:
            payload[name] = getattr(record, name, None)
        payload["trace_id"] = getattr(record, "otel_trace_id", None)
        if record.exc_info is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


_TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    + " ".join(f"{name}=%({name})s" for name in CORRELATION_FIELDS)
    + " trace_id=%(otel_trace_id)s %(message)s"
)


def setup_logging(level: int | str = logging.INFO, json_output: bool = False) -> None:
    """Replace the root handlers with one correlation-aware stderr handler.

    Output goes to stderr so the CLI can keep stdout for results.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.filters.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(_JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    correlation_filter = CorrelationFilter()
    handler.addFilter(correlation_filter)
    root_logger.addFilter(correlation_filter)
    root_logger.addHandler(handler)


__all__ = [
    "CORRELATION_FIELDS",
    "CorrelationContext",
    "CorrelationFilter",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
]
