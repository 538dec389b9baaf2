"""Tests for CrawlService region runs and publishing."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from src.crawler.fake_session import FakeBrowserSession
from src.crawler.sinks import NullSink
from src.services.crawl_service import CrawlService, CrawlSummary


@pytest.fixture
def session_factory(make_page):
    """Builds a FakeBrowserSession with two tags on every source page."""
    sessions: list[FakeBrowserSession] = []

    def factory(sources):
        session = FakeBrowserSession({s.url: make_page("#fyp", "#Dance") for s in sources})
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


@pytest.fixture
def sink() -> AsyncMock:
    return AsyncMock()


class TestRun:
    """Tests for single-region runs."""

    @pytest.mark.asyncio
    async def test_crawls_and_publishes(self, orchestrator, session_factory, sink):
        sink_factory = MagicMock(return_value=sink)
        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            sink_factory=sink_factory,
        )

        summary = await service.run("vn", ["Buffer", "CapCut"])

        assert isinstance(summary, CrawlSummary)
        assert summary.region == "VN"
        assert [r.source_name for r in summary.reports] == ["Buffer", "CapCut"]
        assert summary.successful_sources == 2
        assert summary.failed_sources == 0
        assert summary.total_tags == 4
        assert summary.tags_published == 4
        assert summary.errors == []
        sink_factory.assert_called_once_with("VN")
        assert sink.record_crawl_log.await_count == 2
        assert sink.upsert_hashtag_records.await_count == 2

    @pytest.mark.asyncio
    async def test_session_is_closed_after_run(self, orchestrator, session_factory):
        service = CrawlService(orchestrator=orchestrator, session_factory=session_factory)

        await service.run("VN", ["Buffer"])

        [session] = session_factory.sessions
        assert session.open_count == 1
        assert session.close_count == 1

    @pytest.mark.asyncio
    async def test_failed_sources_are_summarized(self, orchestrator, sink):
        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=lambda sources: FakeBrowserSession({}),
            sink_factory=lambda region: sink,
        )

        summary = await service.run("VN", ["Buffer"])

        assert summary.failed_sources == 1
        assert summary.errors[0].startswith("Buffer: NavigationTimeout")
        sink.record_crawl_log.assert_awaited_once()
        sink.upsert_hashtag_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_mode(self, orchestrator, session_factory):
        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            concurrent=True,
            max_concurrency=2,
        )

        summary = await service.run("VN", ["Buffer", "CapCut", "Trollishly"])

        assert [r.source_name for r in summary.reports] == ["Buffer", "CapCut", "Trollishly"]
        assert len(session_factory.sessions[0].children) == 3

    @pytest.mark.asyncio
    async def test_sink_errors_propagate(self, orchestrator, session_factory, sink):
        sink.record_crawl_log.side_effect = ConnectionError("database unavailable")
        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            sink_factory=lambda region: sink,
        )

        with pytest.raises(ConnectionError):
            await service.run("VN", ["Buffer"])

    @pytest.mark.asyncio
    async def test_unknown_region_raises(self, orchestrator, session_factory):
        service = CrawlService(orchestrator=orchestrator, session_factory=session_factory)

        with pytest.raises(ValueError, match="Unsupported region"):
            await service.run("XX")

    @pytest.mark.asyncio
    async def test_mock_mode_serves_generated_pages(self, orchestrator):
        service = CrawlService(orchestrator=orchestrator, use_mock=True)

        summary = await service.run("VN", ["TikTok", "GoogleTrends", "Countik"])

        assert summary.successful_sources == 3
        assert all(r.item_count > 0 for r in summary.reports)

    def test_summary_to_dict(self, succeeded_report, failed_report):
        summary = CrawlSummary(
            region="VN",
            reports=[succeeded_report, failed_report],
            started_at=succeeded_report.started_at,
            completed_at=failed_report.completed_at,
        )

        data = summary.to_dict()

        assert data["total_sources"] == 2
        assert data["successful_sources"] == 1
        assert data["total_tags"] == 3
        assert data["reports"][1]["sourceName"] == "Countik"
        assert data["errors"] == [
            "Countik: ReadinessTimeout: Readiness condition selector(p) not met after 20000ms"
        ]
        assert summary.duration_seconds == 80.0


class TestRunRegions:
    """Tests for multi-region runs."""

    @pytest.mark.asyncio
    async def test_pauses_between_regions(self, orchestrator, session_factory, no_sleep):
        regions_seen = []

        def sink_factory(region):
            regions_seen.append(region)
            return NullSink()

        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            sink_factory=sink_factory,
            sleep=no_sleep,
        )

        summaries = await service.run_regions(["VN", "US", "JP"], ["TikTok"])

        assert [s.region for s in summaries] == ["VN", "US", "JP"]
        assert regions_seen == ["VN", "US", "JP"]
        assert no_sleep.await_count == 2
        urls = [list(s.pages) for s in session_factory.sessions]
        assert "countryCode=US" in urls[1][0]

    @pytest.mark.asyncio
    async def test_stop_skips_remaining_regions(self, orchestrator, session_factory, no_sleep):
        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            sleep=no_sleep,
        )
        service.stop("shutdown")

        summaries = await service.run_regions(["VN", "US"])

        assert summaries == []
        assert session_factory.sessions == []

    @pytest.mark.asyncio
    async def test_log_context_bound_during_run(self, orchestrator, session_factory, no_sleep):
        bound = []

        def sink_factory(region):
            bound.append(structlog.contextvars.get_contextvars())
            return NullSink()

        service = CrawlService(
            orchestrator=orchestrator,
            session_factory=session_factory,
            sink_factory=sink_factory,
            sleep=no_sleep,
        )

        await service.run_regions(["VN", "US"], ["Buffer"])

        assert [b["region"] for b in bound] == ["VN", "US"]
        assert bound[0]["run_id"] == bound[1]["run_id"]
        assert structlog.contextvars.get_contextvars() == {}
