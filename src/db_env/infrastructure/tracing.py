"""OpenTelemetry tracing for maintenance operations.

Flush, verify, salvage, recovery and rewrite run inside spans named
``db_env.<operation>``. Without ``setup_tracing`` the spans go to the
no-op provider.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

TRACER_NAME = "db_env"

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = TRACER_NAME,
    otlp_endpoint: str | None = None,
    processors: list[SpanProcessor] | None = None,
) -> trace.Tracer:
    """
    Build a tracer provider for this package.

    The provider is kept private to the package tracer instead of being
    installed globally, so embedding applications keep their own.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
        processors: Extra span processors (e.g. an in-memory exporter)

    Returns:
        Configured tracer instance
    """
    global _tracer

    from db_env import __version__

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    for processor in processors or []:
        provider.add_span_processor(processor)

    _tracer = provider.get_tracer(TRACER_NAME, __version__)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the package tracer, falling back to the global provider."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(TRACER_NAME)
    return _tracer


def reset_tracing() -> None:
    """Forget the configured tracer (useful for testing)."""
    global _tracer
    _tracer = None


@contextmanager
def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[trace.Span]:
    """
    Run a block inside a span.

    Attributes whose value is None are dropped. Exceptions escaping the
    block are recorded on the span and mark it as an error.
    """
    clean = {k: v for k, v in (attributes or {}).items() if v is not None}
    with get_tracer().start_as_current_span(name, attributes=clean) as span:
        yield span
