"""
Extraction orchestrator - runs every configured source with failure isolation.

For each source, in configuration order:
    Idle -> Navigating -> WaitingReady -> Extracting -> Succeeded | Failed

A source failure becomes a failed SourceReport and the run moves on; the
run always completes with exactly one report per configured source, in
configuration order, whether sources ran serially or concurrently.

Features:
- Retries with exponential backoff (failures only; an empty page is success)
- Concurrent mode with one isolated browser context per source
- Run-scoped cancellation
- Progress events for an external observer
- Metrics and tracing per source
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from src.config.settings import get_settings
from src.crawler.backoff import ExponentialBackoff
from src.crawler.base_extractor import BaseExtractor, PageSession
from src.crawler.cancellation import CancellationToken
from src.crawler.errors import CrawlCancelled
from src.crawler.extractors import create_extractor
from src.crawler.normalization import CasePolicy, normalize_records
from src.crawler.schemas import RawTagRecord, SourceConfig, SourceReport
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced

logger = structlog.get_logger(__name__)


class ProgressKind(str, Enum):
    """Progress event types emitted per source."""

    STARTED = "started"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    """One observable step of a source crawl."""

    kind: ProgressKind
    source_name: str
    item_count: int = 0
    error_message: str | None = None
    attempt: int = 1


ProgressObserver = Callable[[ProgressEvent], None]


def log_progress(event: ProgressEvent) -> None:
    """Default observer: one structured log line per event."""
    if event.kind == ProgressKind.SUCCEEDED:
        logger.info("source completed", source=event.source_name, items=event.item_count)
    elif event.kind in (ProgressKind.FAILED, ProgressKind.CANCELLED):
        logger.warning(
            "source failed",
            source=event.source_name,
            error=event.error_message,
            attempt=event.attempt,
        )
    elif event.kind == ProgressKind.RETRYING:
        logger.info(
            "Retrying source",
            source=event.source_name,
            attempt=event.attempt,
            error=event.error_message,
        )
    else:
        logger.info("Source started", source=event.source_name)


def describe_error(exc: BaseException) -> str:
    """Human-readable failure description for a report."""
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionOrchestrator:
    """
    Runs source extractors against a browser session.

    Usage:
        orchestrator = ExtractionOrchestrator()
        async with BrowserSession() as session:
            reports = await orchestrator.run(session, sources)
    """

    def __init__(
        self,
        extractor_factory: Callable[[SourceConfig], BaseExtractor] = create_extractor,
        observer: ProgressObserver | None = None,
        max_attempts: int | None = None,
        backoff_base_seconds: float | None = None,
        max_backoff_seconds: float | None = None,
        case_policy: CasePolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            extractor_factory: Builds the extractor for a source (registry lookup)
            observer: Receives progress events (default: structured log lines)
            max_attempts: Attempts per source before recording a failure
            backoff_base_seconds: First retry delay
            max_backoff_seconds: Retry delay cap
            case_policy: Normalization case policy ("fold" or "preserve")
            sleep: Awaitable used between retries
        """
        settings = get_settings()

        self._extractor_factory = extractor_factory
        self._observer = observer or log_progress
        self._max_attempts = max_attempts or settings.crawler_max_attempts
        self._backoff_base = (
            settings.crawler_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self._max_backoff = (
            settings.crawler_max_backoff_seconds
            if max_backoff_seconds is None
            else max_backoff_seconds
        )
        self._case_policy = case_policy or settings.tag_case_policy
        self._sleep = sleep
        self._metrics = get_metrics()
        self._tracer = get_tracer("orchestrator")

    async def run(
        self,
        session: PageSession,
        sources: Sequence[SourceConfig],
        token: CancellationToken | None = None,
    ) -> list[SourceReport]:
        """
        Crawl sources one after another on the shared session.

        Returns:
            One report per source, in configuration order
        """
        token = token or CancellationToken()
        session.cancellation = token

        logger.info("Starting crawl run", sources=len(sources), mode="serial")

        reports = []
        for source in sources:
            reports.append(await self.crawl_source(session, source, token))

        self._log_run(reports)
        return reports

    async def run_concurrent(
        self,
        session,
        sources: Sequence[SourceConfig],
        max_concurrency: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[SourceReport]:
        """
        Crawl sources in parallel, one isolated browser context each.

        Results are placed by original index, so the returned order equals
        the configuration order regardless of completion order.

        Args:
            session: Open session providing isolated() child sessions
            sources: Source configurations
            max_concurrency: Upper bound on simultaneously open contexts
            token: Run-scoped cancellation token
        """
        token = token or CancellationToken()
        session.cancellation = token
        limit = max_concurrency or get_settings().crawler_max_concurrency
        semaphore = asyncio.Semaphore(limit)
        reports: list[SourceReport | None] = [None] * len(sources)

        logger.info(
            "Starting crawl run",
            sources=len(sources),
            mode="concurrent",
            max_concurrency=limit,
        )

        async def crawl_at(index: int, source: SourceConfig) -> None:
            async with semaphore:
                started_at = _utc_now()
                if token.cancelled:
                    reports[index] = self._cancelled(source, token.reason, started_at)
                    return
                try:
                    async with session.isolated() as child:
                        reports[index] = await self.crawl_source(child, source, token)
                except Exception as e:
                    logger.error(
                        "Could not open isolated context",
                        source=source.name,
                        error=str(e),
                        exc_info=True,
                    )
                    reports[index] = self._failed(source, describe_error(e), started_at, 1)

        await asyncio.gather(*(crawl_at(i, s) for i, s in enumerate(sources)))

        results = [report for report in reports if report is not None]
        self._log_run(results)
        return results

    async def crawl_source(
        self,
        session: PageSession,
        source: SourceConfig,
        token: CancellationToken,
    ) -> SourceReport:
        """
        Crawl one source, retrying failures, and seal its report.

        Never raises for source-level failures.
        """
        started_at = _utc_now()
        start = time.monotonic()

        if token.cancelled:
            return self._cancelled(source, token.reason, started_at)

        self._emit(ProgressKind.STARTED, source.name)
        backoff = ExponentialBackoff(
            base_delay=self._backoff_base,
            max_delay=self._max_backoff,
        )
        error_message = "no attempt made"
        notes: list[str] = []

        for attempt in range(1, self._max_attempts + 1):
            try:
                records = await self._attempt(session, source, attempt)
                items = normalize_records(records, self._case_policy)

                notes.append(f"attempt {attempt}: {len(items)} tags")
                report = SourceReport.succeeded(source.name, items, started_at, log_messages=notes)
                self._metrics.record_source(
                    source.name,
                    success=True,
                    tag_count=report.item_count,
                    latency=time.monotonic() - start,
                )
                self._emit(ProgressKind.SUCCEEDED, source.name, item_count=report.item_count, attempt=attempt)
                return report

            except CrawlCancelled as e:
                return self._cancelled(source, str(e), started_at, attempt, notes)

            except Exception as e:
                error_message = describe_error(e)
                notes.append(f"attempt {attempt}: {error_message}")
                logger.error(
                    "Source attempt failed",
                    source=source.name,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=error_message,
                    exc_info=True,
                )

                if attempt < self._max_attempts:
                    self._emit(
                        ProgressKind.RETRYING,
                        source.name,
                        error_message=error_message,
                        attempt=attempt + 1,
                    )
                    delay = backoff.next_delay()
                    notes.append(f"retrying in {delay:.1f}s")
                    await self._sleep(delay)
                    if token.cancelled:
                        return self._cancelled(source, token.reason, started_at, attempt, notes)

        self._metrics.record_source(
            source.name, success=False, latency=time.monotonic() - start
        )
        return self._failed(source, error_message, started_at, self._max_attempts, notes)

    async def _attempt(
        self,
        session: PageSession,
        source: SourceConfig,
        attempt: int,
    ) -> list[RawTagRecord]:
        with traced(
            self._tracer,
            "crawl_source",
            {"source": source.name, "attempt": attempt, "url": source.url},
        ) as span:
            extractor = self._extractor_factory(source)
            try:
                records = await extractor.extract(session)
            finally:
                self._metrics.record_item_errors(source.name, extractor.stats.errors)
            span.set_attribute("tags", len(records))
            return records

    def _failed(
        self,
        source: SourceConfig,
        error_message: str,
        started_at: datetime,
        attempt: int,
        notes: list[str] | None = None,
    ) -> SourceReport:
        self._emit(ProgressKind.FAILED, source.name, error_message=error_message, attempt=attempt)
        return SourceReport.failed(
            source.name, error_message, started_at, log_messages=notes or ()
        )

    def _cancelled(
        self,
        source: SourceConfig,
        reason: str,
        started_at: datetime,
        attempt: int = 0,
        notes: list[str] | None = None,
    ) -> SourceReport:
        self._metrics.record_cancelled(source.name)
        self._emit(ProgressKind.CANCELLED, source.name, error_message=reason, attempt=attempt)
        return SourceReport.failed(
            source.name, reason, started_at, log_messages=[*(notes or ()), f"cancelled: {reason}"]
        )

    def _emit(self, kind: ProgressKind, source_name: str, **fields) -> None:
        try:
            self._observer(ProgressEvent(kind=kind, source_name=source_name, **fields))
        except Exception as e:
            logger.warning("Progress observer raised", error=str(e))

    def _log_run(self, reports: list[SourceReport]) -> None:
        succeeded = sum(1 for r in reports if r.success)
        logger.info(
            "Crawl run completed",
            succeeded=succeeded,
            failed=len(reports) - succeeded,
            tags=sum(r.item_count for r in reports),
        )
