"""Exception hierarchy for the crawl pipeline."""


class CrawlerError(Exception):
    """Base exception for crawler errors."""

    pass


class BrowserError(CrawlerError):
    """Raised when the browser cannot be launched or is used while closed."""

    pass


class NavigationTimeout(CrawlerError):
    """Raised when a page does not finish loading within its budget."""

    def __init__(self, url: str, timeout_ms: int, detail: str | None = None):
        message = f"Navigation to {url} timed out after {timeout_ms}ms"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.url = url
        self.timeout_ms = timeout_ms


class ReadinessTimeout(CrawlerError):
    """Raised when the expected content never appears on a loaded page."""

    def __init__(self, condition: str, timeout_ms: int):
        super().__init__(f"Readiness condition {condition} not met after {timeout_ms}ms")
        self.condition = condition
        self.timeout_ms = timeout_ms


class ExtractionError(CrawlerError):
    """Raised when one item's markup cannot be parsed. Never leaves an extractor."""

    pass


class CrawlCancelled(CrawlerError):
    """Raised at a suspension point once the run has been cancelled."""

    def __init__(self, message: str = "crawl cancelled"):
        super().__init__(message)
