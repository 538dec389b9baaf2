"""
Prometheus metrics for monitoring crawl runs.

Defines and exposes metrics for:
- Source outcomes (succeeded / failed / cancelled)
- Tags collected per source
- Per-source crawl latency
- Item-level extraction errors
- Source health

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for per-source latency (navigation alone can take a minute)
LATENCY_BUCKETS = (1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0, 300.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the crawler.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_source("Buffer", success=True, tag_count=40, latency=12.5)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.sources_crawled = Counter(
            "trendtag_sources_crawled_total",
            "Total number of source crawls by outcome",
            ["source", "status"],  # status: succeeded, failed, cancelled
        )

        self.tags_collected = Counter(
            "trendtag_tags_collected_total",
            "Total number of normalized tags collected",
            ["source"],
        )

        self.source_latency = Histogram(
            "trendtag_source_latency_seconds",
            "Time to crawl one source, retries included",
            ["source"],
            buckets=LATENCY_BUCKETS,
        )

        self.item_errors = Counter(
            "trendtag_extraction_item_errors_total",
            "Items skipped because their markup could not be parsed",
            ["source"],
        )

        self.source_health = Gauge(
            "trendtag_source_health",
            "Outcome of the last crawl of a source (1=succeeded, 0=failed)",
            ["source"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_source(
        self,
        source: str,
        success: bool,
        tag_count: int = 0,
        latency: float | None = None,
    ) -> None:
        """
        Record the outcome of one source crawl.

        Args:
            source: Source name
            success: Whether the source report succeeded
            tag_count: Number of tags in the report
            latency: Optional crawl latency in seconds
        """
        status = "succeeded" if success else "failed"
        self.sources_crawled.labels(source=source, status=status).inc()
        self.source_health.labels(source=source).set(1 if success else 0)

        if tag_count:
            self.tags_collected.labels(source=source).inc(tag_count)

        if latency is not None:
            self.source_latency.labels(source=source).observe(latency)

    def record_cancelled(self, source: str) -> None:
        """Record a source skipped because the run was cancelled."""
        self.sources_crawled.labels(source=source, status="cancelled").inc()

    def record_item_errors(self, source: str, count: int) -> None:
        """Record item-level extraction errors for a source."""
        if count > 0:
            self.item_errors.labels(source=source).inc(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
