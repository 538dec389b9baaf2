"""
Crawl service - runs the full pipeline for one or more regions.

For each region:
1. Select the enabled sources and fill in the region placeholder
2. Open a browser session (or an in-memory one with use_mock)
3. Run the orchestrator, serially or concurrently
4. Publish the sealed reports to the region's result sink

Features:
- Multi-region crawls with a pause between regions
- Graceful stop via a shared cancellation token
- Tracing span per region
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from src.config.settings import get_settings
from src.config.sources import select_sources
from src.crawler.browser import BrowserSession
from src.crawler.cancellation import CancellationToken
from src.crawler.fake_session import create_mock_session
from src.crawler.orchestrator import ExtractionOrchestrator
from src.crawler.schemas import SourceConfig, SourceReport
from src.crawler.sinks import NullSink, ResultSink, publish_reports
from src.observability.logging import bind_context, clear_context
from src.observability.tracing import get_tracer, traced

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[Sequence[SourceConfig]], Any]
SinkFactory = Callable[[str], ResultSink]


@dataclass
class CrawlSummary:
    """Outcome of one region's crawl run."""

    region: str
    reports: list[SourceReport]
    started_at: datetime
    completed_at: datetime
    tags_published: int = 0

    @property
    def total_sources(self) -> int:
        return len(self.reports)

    @property
    def successful_sources(self) -> int:
        return sum(1 for r in self.reports if r.success)

    @property
    def failed_sources(self) -> int:
        return self.total_sources - self.successful_sources

    @property
    def errors(self) -> list[str]:
        """"Source: error" lines for the failed sources."""
        return [f"{r.source_name}: {r.error_message}" for r in self.reports if not r.success]

    @property
    def total_tags(self) -> int:
        return sum(r.item_count for r in self.reports)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "total_sources": self.total_sources,
            "successful_sources": self.successful_sources,
            "failed_sources": self.failed_sources,
            "total_tags": self.total_tags,
            "tags_published": self.tags_published,
            "errors": self.errors,
            "reports": [r.to_wire() for r in self.reports],
        }


def _default_session(sources: Sequence[SourceConfig]) -> BrowserSession:
    return BrowserSession()


class CrawlService:
    """
    Service that crawls trending-hashtag sources and publishes the results.

    Usage:
        service = CrawlService(sink_factory=lambda code: HashtagRepository(db, code))
        summary = await service.run("VN")
    """

    def __init__(
        self,
        orchestrator: ExtractionOrchestrator | None = None,
        session_factory: SessionFactory | None = None,
        sink_factory: SinkFactory | None = None,
        concurrent: bool = False,
        max_concurrency: int | None = None,
        use_mock: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize crawl service.

        Args:
            orchestrator: Extraction orchestrator (or create from config)
            session_factory: Builds a session for the sources of one region
            sink_factory: Builds the result sink for a region (default: NullSink)
            concurrent: Crawl sources in parallel, one browser context each
            max_concurrency: Parallel source limit in concurrent mode
            use_mock: Serve generated pages instead of launching a browser
            sleep: Awaitable used for the pause between regions
        """
        settings = get_settings()

        self._orchestrator = orchestrator or ExtractionOrchestrator()
        if session_factory is not None:
            self._session_factory = session_factory
        elif use_mock:
            self._session_factory = create_mock_session
        else:
            self._session_factory = _default_session
        self._sink_factory = sink_factory or (lambda region: NullSink())
        self._concurrent = concurrent
        self._max_concurrency = max_concurrency
        self._region_pause = settings.region_pause_seconds
        self._default_region = settings.default_region
        self._enabled_sources = settings.enabled_source_names
        self._sleep = sleep
        self._token = CancellationToken()
        self._tracer = get_tracer("crawl_service")

        logger.info(
            "Crawl service initialized",
            mode="concurrent" if concurrent else "serial",
            mock=use_mock,
        )

    @property
    def token(self) -> CancellationToken:
        return self._token

    def stop(self, reason: str | None = None) -> None:
        """Cancel the current run; remaining sources get failed reports."""
        logger.info("Stopping crawl", reason=reason)
        self._token.cancel(reason)

    async def run(
        self,
        region: str | None = None,
        source_names: list[str] | None = None,
    ) -> CrawlSummary:
        """
        Crawl every selected source for one region and publish the reports.

        Args:
            region: Region code (default from settings)
            source_names: Restrict to these sources (default: ENABLED_SOURCES or all)

        Returns:
            CrawlSummary with one report per selected source

        Raises:
            ValueError: If the region or a source name is unknown
        """
        region = (region or self._default_region).upper()
        sources = select_sources(source_names or self._enabled_sources, region)
        started_at = datetime.now(timezone.utc)
        bind_context(region=region)

        logger.info("Starting region crawl", region=region, sources=[s.name for s in sources])

        with traced(self._tracer, "crawl_run", {"region": region, "sources": len(sources)}):
            session = self._session_factory(sources)
            async with session:
                if self._concurrent:
                    reports = await self._orchestrator.run_concurrent(
                        session, sources, self._max_concurrency, token=self._token
                    )
                else:
                    reports = await self._orchestrator.run(session, sources, token=self._token)

            sink = self._sink_factory(region)
            tags_published = await publish_reports(reports, sink)

        summary = CrawlSummary(
            region=region,
            reports=reports,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            tags_published=tags_published,
        )

        logger.info(
            "Region crawl completed",
            region=region,
            successful=summary.successful_sources,
            failed=summary.failed_sources,
            tags=summary.total_tags,
            elapsed_seconds=round(summary.duration_seconds, 2),
        )
        return summary

    async def run_regions(
        self,
        regions: list[str],
        source_names: list[str] | None = None,
    ) -> list[CrawlSummary]:
        """
        Crawl several regions one after another.

        Pauses between regions. Stops early if the run is cancelled.

        Returns:
            One CrawlSummary per region that was crawled
        """
        summaries = []
        bind_context(run_id=uuid.uuid4().hex[:12])

        try:
            for index, region in enumerate(regions):
                if self._token.cancelled:
                    logger.warning(
                        "Crawl cancelled, skipping remaining regions", remaining=regions[index:]
                    )
                    break

                if index > 0 and self._region_pause > 0:
                    await self._sleep(self._region_pause)

                summaries.append(await self.run(region, source_names))

            logger.info(
                "Multi-region crawl completed",
                regions=len(summaries),
                tags=sum(s.total_tags for s in summaries),
            )
        finally:
            clear_context()

        return summaries
