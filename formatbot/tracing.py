"""
Run Tracing
===========
OpenTelemetry spans for pipeline runs.

A run produces one `formatbot.run` span with a child span per controller step
(`formatbot.provision`, `formatbot.normalize`, `formatbot.publish`). A step that
ends in a typed failure marks its span as an error carrying the failure kind.

Spans are exported over OTLP/HTTP only when ENABLE_TRACING=true; otherwise the
API's no-op tracer is used and every helper here does nothing.
"""

import atexit
import json
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from formatbot.config import TRACING, TracingConfig

SPAN_PREFIX = "formatbot."
MAX_STRING_ATTRIBUTE = 2048
MAX_SEQUENCE_ITEMS = 25

_tracer: Optional[trace.Tracer] = None


def build_tracer_provider(config: TracingConfig = TRACING) -> TracerProvider:
    """TracerProvider exporting batches to config.OTLP_ENDPOINT.

    The provider is shut down at interpreter exit so buffered spans of the last
    run are flushed.
    """

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: config.SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.OTLP_ENDPOINT)))
    atexit.register(provider.shutdown)
    return provider


def get_tracer(config: TracingConfig = TRACING) -> trace.Tracer:
    """Return the process tracer, installing the exporting provider on first use when enabled."""

    global _tracer
    if _tracer is None:
        if config.ENABLED:
            trace.set_tracer_provider(build_tracer_provider(config))
        _tracer = trace.get_tracer(config.SERVICE_NAME)
    return _tracer


def _coerce(value: Any) -> Any:
    """Map value onto an OTel attribute type, or None to skip it."""

    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value[:MAX_STRING_ATTRIBUTE]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v)[:256] for v in list(value)[:MAX_SEQUENCE_ITEMS]]
    if isinstance(value, dict):
        try:
            return json.dumps(value, sort_keys=True)[:MAX_STRING_ATTRIBUTE]
        except (TypeError, ValueError):
            pass
    return str(value)[:MAX_STRING_ATTRIBUTE]


def annotate_span(span: Any, attributes: Mapping[str, Any]) -> None:
    """Set attributes on span; unusable keys and None values are skipped.

    Never raises: a tracing problem must not change a run's outcome.
    """

    setter = getattr(span, "set_attribute", None)
    if not callable(setter):
        return

    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            continue
        coerced = _coerce(value)
        if coerced is None:
            continue
        try:
            setter(key, coerced)
        except Exception:
            continue


def annotate_current_span(attributes: Mapping[str, Any]) -> None:
    annotate_span(trace.get_current_span(), attributes)


def mark_span_failed(span: Any, failure_kind: str, message: str) -> None:
    """Record a typed step failure on span as an error status."""

    annotate_span(span, {"formatbot.failure_kind": failure_kind, "formatbot.error": message})
    set_status = getattr(span, "set_status", None)
    if callable(set_status):
        try:
            set_status(Status(StatusCode.ERROR, f"{failure_kind}: {message}"[:MAX_STRING_ATTRIBUTE]))
        except Exception:
            return


@contextmanager
def step_span(name: str, attributes: Optional[Mapping[str, Any]] = None) -> Iterator[Any]:
    """Run a block inside a span named formatbot.<name>."""
    with get_tracer().start_as_current_span(SPAN_PREFIX + name) as span:
        if attributes:
            annotate_span(span, attributes)
        yield span
