"""
Tests for OpenTelemetry tracing.

Spans are captured with an InMemorySpanExporter installed once for the
module, since the global TracerProvider can only be set once per process.
"""

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from src.crawler.fake_session import FakeBrowserSession, text_page
from src.observability.tracing import (
    add_trace_context,
    get_tracer,
    setup_tracing,
    traced,
)

_exporter = InMemorySpanExporter()
_provider = setup_tracing("trendtag-test", exporter=_exporter)


@pytest.fixture(autouse=True)
def _clear_spans():
    _exporter.clear()
    yield
    _exporter.clear()


def _spans(name: str | None = None):
    spans = _exporter.get_finished_spans()
    return [s for s in spans if name is None or s.name == name]


class TestTraced:
    """Tests for the traced() span helper."""

    def test_sets_attributes(self):
        with traced(get_tracer("test"), "crawl_run", {"region": "VN", "sources": 7}):
            pass

        (span,) = _spans()
        assert span.name == "crawl_run"
        assert span.attributes["region"] == "VN"
        assert span.attributes["sources"] == 7

    def test_failure_marks_span(self):
        with pytest.raises(TimeoutError, match="readiness"):
            with traced(get_tracer("test"), "crawl_source"):
                raise TimeoutError("readiness")

        (span,) = _spans()
        assert span.status.status_code.name == "ERROR"
        assert span.status.description == "TimeoutError: readiness"
        assert [e.name for e in span.events] == ["exception"]

    def test_nested_spans_share_trace(self):
        tracer = get_tracer("test")

        with traced(tracer, "crawl_run"):
            with traced(tracer, "crawl_source"):
                pass

        (run,) = _spans("crawl_run")
        (source,) = _spans("crawl_source")
        assert source.context.trace_id == run.context.trace_id
        assert source.parent.span_id == run.context.span_id


class TestOrchestratorSpans:
    """Source crawls show up as spans."""

    @pytest.mark.asyncio
    async def test_one_span_per_source(self, orchestrator, make_source):
        source = make_source("Buffer")
        session = FakeBrowserSession({source.url: text_page("p", "#fyp #dance")})

        async with session:
            await orchestrator.run(session, [source])

        (span,) = _spans("crawl_source")
        assert span.attributes["source"] == "Buffer"
        assert span.attributes["attempt"] == 1
        assert span.attributes["tags"] == 2

    @pytest.mark.asyncio
    async def test_failed_attempt_span(self, orchestrator, make_source):
        source = make_source("Countik")
        session = FakeBrowserSession({})

        async with session:
            await orchestrator.run(session, [source])

        (span,) = _spans("crawl_source")
        assert span.status.status_code.name == "ERROR"
        assert span.status.description.startswith("NavigationTimeout")


class TestAddTraceContext:
    """Tests for the structlog processor."""

    def test_adds_ids_inside_span(self):
        with get_tracer("test").start_as_current_span("log") as span:
            result = add_trace_context(None, "info", {"event": "source completed"})

        ctx = span.get_span_context()
        assert result["trace_id"] == f"{ctx.trace_id:032x}"
        assert result["span_id"] == f"{ctx.span_id:016x}"
        assert result["event"] == "source completed"

    def test_no_ids_outside_span(self):
        result = add_trace_context(None, "info", {"event": "idle"})

        assert "trace_id" not in result
        assert "span_id" not in result
