"""Crawl pipeline - browser session, extractors, orchestration and sinks."""

from src.crawler.errors import (
    BrowserError,
    CrawlCancelled,
    CrawlerError,
    ExtractionError,
    NavigationTimeout,
    ReadinessTimeout,
)
from src.crawler.schemas import (
    ExtractionSpec,
    ExtractorVariant,
    RawTagRecord,
    ReadinessCondition,
    ReadinessKind,
    SourceConfig,
    SourceReport,
)

__all__ = [
    "RawTagRecord",
    "SourceReport",
    "SourceConfig",
    "ReadinessCondition",
    "ReadinessKind",
    "ExtractionSpec",
    "ExtractorVariant",
    "CrawlerError",
    "BrowserError",
    "NavigationTimeout",
    "ReadinessTimeout",
    "ExtractionError",
    "CrawlCancelled",
]
