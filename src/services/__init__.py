"""Services that run crawls end to end."""

from src.services.crawl_service import CrawlService, CrawlSummary

__all__ = ["CrawlService", "CrawlSummary"]
