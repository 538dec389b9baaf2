"""
OpenTelemetry tracing for crawl runs.

One run produces this span tree per region:

    crawl_run {region, sources}
      └─ crawl_source {source, attempt, url, tags}   (one per attempt)

Spans are exported over OTLP/gRPC when TRACING_ENABLED is set. Without
setup_tracing() every tracer is the no-op proxy, so the crawler code calls
get_tracer()/traced() unconditionally.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, StatusCode, Tracer

logger = logging.getLogger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install the global TracerProvider.

    The OTLP exporter is batched. A caller-supplied exporter (tests pass an
    InMemorySpanExporter) is flushed synchronously so spans are visible as
    soon as they end.

    Args:
        service_name: Value of the service.name resource attribute
        otlp_endpoint: OTLP gRPC collector endpoint
        exporter: Replaces the OTLP exporter

    Returns:
        The installed TracerProvider
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        endpoint = otlp_endpoint or DEFAULT_OTLP_ENDPOINT
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )

    trace.set_tracer_provider(provider)

    logger.info(f"Tracing enabled for {service_name} ({otlp_endpoint or 'custom exporter'})")
    return provider


def get_tracer(name: str) -> Tracer:
    """Get a named tracer (a no-op proxy until setup_tracing() runs)."""
    return trace.get_tracer(name)


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span]:
    """
    Open a span as the current span and mark it failed if the body raises.

    The exception is recorded on the span and re-raised.

    Usage:
        with traced(tracer, "crawl_source", {"source": "TikTok"}) as span:
            records = await extractor.extract(session)
            span.set_attribute("tags", len(records))
    """
    with tracer.start_as_current_span(
        name,
        attributes=attributes or {},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, f"{type(exc).__name__}: {exc}")
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Structlog processor adding trace_id and span_id of the current span.

    Installed by setup_logging() when tracing is enabled.
    """
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict.setdefault("trace_id", format(ctx.trace_id, "032x"))
        event_dict.setdefault("span_id", format(ctx.span_id, "016x"))
    return event_dict
