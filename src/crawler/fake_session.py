"""
In-memory browser session for testing and development.

Serves canned pages keyed by URL through the same interface as
BrowserSession, so extractors and the orchestrator run unchanged without
a browser or network. Useful for:
- Unit tests of extraction variants and failure isolation
- `trendtag crawl --mock` dry runs
- Development and debugging
"""

import asyncio
import random
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from src.crawler.cancellation import CancellationToken
from src.crawler.errors import BrowserError, NavigationTimeout, ReadinessTimeout
from src.crawler.schemas import ExtractorVariant, ReadinessCondition, ReadinessKind, SourceConfig

# Sample tags for realistic mock pages
SAMPLE_TAGS = [
    "fyp",
    "foryou",
    "viral",
    "trending",
    "tiktokvietnam",
    "xuhuong",
    "dance",
    "comedy",
    "learnontiktok",
    "booktok",
    "fitness",
    "food",
    "travel",
    "skincare",
    "outfitideas",
    "petsoftiktok",
    "football",
    "kpop",
    "anime",
    "diy",
]

SAMPLE_PHRASES = [
    "Champions League final",
    "Taylor Swift tour",
    "Bitcoin price",
    "Weather tomorrow",
    "New iPhone release",
    "Lunar New Year",
    "World Cup qualifiers",
    "Stock market today",
]


class FakeElement:
    """
    Element handle stand-in.

    A broken element raises from every read, like a node detached from the
    DOM between query and read.
    """

    def __init__(
        self,
        text: str = "",
        attributes: dict[str, str] | None = None,
        children: dict[str, "FakeElement"] | None = None,
        broken: bool = False,
    ):
        self.text = text
        self.attributes = attributes or {}
        self.children = children or {}
        self.broken = broken

    def _check(self) -> None:
        if self.broken:
            raise RuntimeError("Element is not attached to the DOM")

    async def inner_text(self) -> str:
        self._check()
        return self.text

    async def query_selector(self, selector: str) -> "FakeElement | None":
        self._check()
        return self.children.get(selector)

    async def get_attribute(self, name: str) -> str | None:
        self._check()
        return self.attributes.get(name)


@dataclass
class FakePage:
    """
    A canned page.

    Attributes:
        nodes: Selector -> matching elements, in document order
        body: Rendered text of the whole page
        ready: False makes every readiness wait time out
        navigation_error: Raised by navigate() when set
        failures: Number of navigations that fail before the page loads
        load_delay: Seconds navigate() takes
    """

    nodes: dict[str, list[FakeElement]] = field(default_factory=dict)
    body: str = ""
    ready: bool = True
    navigation_error: Exception | None = None
    failures: int = 0
    load_delay: float = 0.0
    visits: int = 0


def text_page(selector: str, *texts: str, body: str = "") -> FakePage:
    """Page whose `selector` matches one node per text."""
    return FakePage(nodes={selector: [FakeElement(text=t) for t in texts]}, body=body)


class FakeBrowserSession:
    """
    Browser session serving FakePages.

    Usage:
        session = FakeBrowserSession({"https://a.example": text_page("p", "#fyp")})
        async with session:
            reports = await orchestrator.run(session, sources)
    """

    def __init__(self, pages: dict[str, FakePage] | None = None):
        self.pages = pages or {}
        self.cancellation: CancellationToken | None = None
        self.visited: list[str] = []
        self.navigations: list[tuple[str, str | None, int | None]] = []
        self.children: list["FakeBrowserSession"] = []
        self.open_count = 0
        self.close_count = 0
        self._current: FakePage | None = None
        self._open = False

    async def open(self) -> None:
        self.open_count += 1
        self._open = True

    async def close(self) -> None:
        if self._open:
            self.close_count += 1
        self._open = False
        self._current = None

    async def __aenter__(self) -> "FakeBrowserSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    @asynccontextmanager
    async def isolated(self) -> AsyncIterator["FakeBrowserSession"]:
        child = FakeBrowserSession(self.pages)
        child.cancellation = self.cancellation
        self.children.append(child)
        await child.open()
        try:
            yield child
        finally:
            await child.close()

    @property
    def page(self) -> FakePage:
        if not self._open:
            raise BrowserError("Browser session not open. Call open() first.")
        if self._current is None:
            raise BrowserError("No page loaded")
        return self._current

    def _check_cancelled(self) -> None:
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()

    async def _guard(self, awaitable):
        if self.cancellation is None:
            return await awaitable
        return await self.cancellation.race(awaitable)

    async def navigate(
        self,
        url: str,
        timeout_ms: int | None = None,
        wait_until: str | None = None,
    ) -> None:
        self._check_cancelled()
        if not self._open:
            raise BrowserError("Browser session not open. Call open() first.")

        self.visited.append(url)
        self.navigations.append((url, wait_until, timeout_ms))
        page = self.pages.get(url)
        if page is None:
            raise NavigationTimeout(url, timeout_ms or 60_000, "no such page")

        page.visits += 1
        if page.load_delay:
            await self._guard(asyncio.sleep(page.load_delay))
        if page.navigation_error is not None:
            raise page.navigation_error
        if page.failures > 0:
            page.failures -= 1
            raise NavigationTimeout(url, timeout_ms or 60_000)

        self._current = page

    async def wait_for_ready(
        self,
        condition: ReadinessCondition,
        timeout_ms: int | None = None,
    ) -> None:
        self._check_cancelled()
        if condition.kind == ReadinessKind.NONE:
            return
        if not self.page.ready:
            timeout_ms = timeout_ms or condition.timeout_ms or 20_000
            raise ReadinessTimeout(f"{condition.kind.value}({', '.join(condition.selectors)})", timeout_ms)

    async def query_all(self, selector: str) -> list[FakeElement]:
        return list(self.page.nodes.get(selector, []))

    async def texts(self, selector: str) -> list[str]:
        return [await element.inner_text() for element in self.page.nodes.get(selector, [])]

    async def attribute_values(self, selector: str, name: str) -> list[str | None]:
        return [element.attributes.get(name) for element in self.page.nodes.get(selector, [])]

    async def body_text(self) -> str:
        return self.page.body

    async def scroll(self, passes: int, pause_ms: int | None = None) -> None:
        self._check_cancelled()


def _mock_page(source: SourceConfig, tags: list[str]) -> FakePage:
    spec = source.extraction
    hashtags = [f"#{t}" for t in tags]

    if spec.variant == ExtractorVariant.STRUCTURED:
        items = []
        for t in hashtags:
            children = {}
            if spec.text_selector:
                children[spec.text_selector] = FakeElement(text=t)
            if spec.count_selector:
                children[spec.count_selector] = FakeElement(text=f"{random.randint(1, 999)}K")
            items.append(FakeElement(text="" if spec.text_selector else t, children=children))
        return FakePage(nodes={spec.item_selector: items})

    if spec.variant == ExtractorVariant.TRENDING_PHRASES:
        phrases = random.sample(SAMPLE_PHRASES, k=min(5, len(SAMPLE_PHRASES)))
        return text_page(spec.containers[0], *(f"{p}\n200K+ searches" for p in phrases))

    if spec.variant == ExtractorVariant.HASHTAG_LINKS:
        links = [
            FakeElement(text=f"#{t}", attributes={"href": f"/hashtag/{t}"}) for t in tags
        ]
        return FakePage(nodes={spec.item_selector or "a[href*='/hashtag/']": links})

    if spec.variant == ExtractorVariant.FREE_TEXT:
        selector = spec.containers[0] if spec.containers else "p"
        lines = [f"{i}. {tag}" for i, tag in enumerate(hashtags, start=1)]
        return text_page(selector, *lines, body="\n".join(lines))

    return FakePage()


def create_mock_session(
    sources: Sequence[SourceConfig],
    tags_per_source: int = 10,
) -> FakeBrowserSession:
    """
    Create a session with a plausible page for every source URL.

    Args:
        sources: Sources that will be crawled
        tags_per_source: Number of tags each mock page lists

    Returns:
        FakeBrowserSession serving one generated page per URL
    """
    pages = {}
    for source in sources:
        for url in source.urls:
            tags = random.sample(SAMPLE_TAGS, k=min(tags_per_source, len(SAMPLE_TAGS)))
            pages[url] = _mock_page(source, tags)
    return FakeBrowserSession(pages)
