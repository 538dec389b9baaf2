"""
Headless browser session backed by Playwright.

One BrowserSession owns a Chromium browser, one context configured with a
fixed user agent, and one page. The orchestrator reuses that page serially
across sources; the concurrent mode asks for isolated() child sessions,
each with its own context and page on the same browser.

Every navigation and readiness wait is bounded by a timeout and races the
run's CancellationToken, so a cancel ends a page that is still loading.

Usage:
    async with BrowserSession() as session:
        await session.navigate("https://buffer.com/resources/tiktok-hashtags/")
        await session.wait_for_ready(ReadinessCondition(selectors=("p",)))
        texts = await session.texts("p")
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any, TypeVar

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from src.config.settings import get_settings
from src.crawler.cancellation import CancellationToken
from src.crawler.errors import BrowserError, NavigationTimeout, ReadinessTimeout
from src.crawler.schemas import ReadinessCondition, ReadinessKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reads one attribute from every node, null where it is absent
ATTRIBUTE_VALUES = "(els, name) => els.map((e) => e.getAttribute(name))"

# Resolves true as soon as any selector in the argument list matches a node
ANY_SELECTOR_PREDICATE = """(selectors) => {
    for (const s of selectors) {
        if (document.querySelectorAll(s).length > 0) return true;
    }
    return false;
}"""

SCROLL_TO_BOTTOM = "window.scrollTo(0, document.body.scrollHeight)"


class BrowserSession:
    """
    Scoped headless-browser resource.

    open() must be paired with close(); prefer `async with`. close() is
    idempotent so the orchestrator can release the session on every exit
    path without tracking whether it already did.
    """

    def __init__(
        self,
        headless: bool | None = None,
        user_agent: str | None = None,
        navigation_timeout_ms: int | None = None,
        readiness_timeout_ms: int | None = None,
        wait_until: str | None = None,
        scroll_pause_ms: int | None = None,
    ):
        """
        Initialize session configuration. Nothing is launched until open().

        Args:
            headless: Run Chromium without a window
            user_agent: Client identity string sent with every request
            navigation_timeout_ms: Default navigation budget
            readiness_timeout_ms: Default readiness budget
            wait_until: Load state that ends a navigation
            scroll_pause_ms: Pause between scroll passes
        """
        settings = get_settings()

        self._headless = settings.browser_headless if headless is None else headless
        self._user_agent = user_agent or settings.browser_user_agent
        self._navigation_timeout_ms = navigation_timeout_ms or settings.navigation_timeout_ms
        self._readiness_timeout_ms = readiness_timeout_ms or settings.readiness_timeout_ms
        self._wait_until = wait_until or settings.navigation_wait_until
        self._scroll_pause_ms = (
            settings.scroll_pause_ms if scroll_pause_ms is None else scroll_pause_ms
        )

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._owns_browser = True

        self.cancellation: CancellationToken | None = None

    async def open(self) -> None:
        """Launch the browser and create the context and page."""
        if self._page is not None:
            return

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"],
            )
            await self._open_page()
        except PlaywrightError as e:
            logger.error(
                "Failed to launch browser. Is Chromium installed? "
                "Run: playwright install chromium"
            )
            await self.close()
            raise BrowserError(f"Failed to launch browser: {e}") from e

        logger.info(f"Browser session opened (headless={self._headless})")

    async def _open_page(self) -> None:
        assert self._browser is not None
        self._context = await self._browser.new_context(user_agent=self._user_agent)
        self._page = await self._context.new_page()
        self._page.set_default_timeout(self._navigation_timeout_ms)

    async def close(self) -> None:
        """Release page, context, browser and Playwright. Safe to call twice."""
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")
            self._context = None
            self._page = None

        if self._owns_browser:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning(f"Error closing browser: {e}")
                self._browser = None
                logger.debug("Browser closed")

            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        """Get the page, raising if the session is not open."""
        if self._page is None:
            raise BrowserError("Browser session not open. Call open() first.")
        return self._page

    @asynccontextmanager
    async def isolated(self) -> AsyncIterator["BrowserSession"]:
        """
        Yield a child session with its own context and page.

        The child shares this session's browser and cancellation token and
        closes only its own context on exit.
        """
        if self._browser is None:
            raise BrowserError("Browser session not open. Call open() first.")

        child = BrowserSession(
            headless=self._headless,
            user_agent=self._user_agent,
            navigation_timeout_ms=self._navigation_timeout_ms,
            readiness_timeout_ms=self._readiness_timeout_ms,
            wait_until=self._wait_until,
            scroll_pause_ms=self._scroll_pause_ms,
        )
        child._browser = self._browser
        child._owns_browser = False
        child.cancellation = self.cancellation

        await child._open_page()
        try:
            yield child
        finally:
            await child.close()

    def _check_cancelled(self) -> None:
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()

    async def _guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it with CrawlCancelled if the run is cancelled."""
        if self.cancellation is None:
            return await awaitable
        return await self.cancellation.race(awaitable)

    async def navigate(
        self,
        url: str,
        timeout_ms: int | None = None,
        wait_until: str | None = None,
    ) -> None:
        """
        Load a URL and wait until the load state is reached.

        Args:
            url: Page to load
            timeout_ms: Navigation budget (default: session setting)
            wait_until: Load state ending the navigation (default: session setting)

        Raises:
            NavigationTimeout: If the page does not settle within the budget
            BrowserError: If navigation fails for another reason
        """
        self._check_cancelled()
        timeout_ms = timeout_ms or self._navigation_timeout_ms
        wait_until = wait_until or self._wait_until

        logger.debug(f"Navigating to {url} (wait_until={wait_until}, timeout={timeout_ms}ms)")
        try:
            await self._guard(self.page.goto(url, wait_until=wait_until, timeout=timeout_ms))
        except PlaywrightTimeout as e:
            raise NavigationTimeout(url, timeout_ms) from e
        except PlaywrightError as e:
            raise BrowserError(f"Navigation to {url} failed: {e}") from e

    async def wait_for_ready(
        self,
        condition: ReadinessCondition,
        timeout_ms: int | None = None,
    ) -> None:
        """
        Suspend until the readiness condition holds.

        Raises:
            ReadinessTimeout: If the condition is still false after the budget
        """
        self._check_cancelled()
        timeout_ms = timeout_ms or condition.timeout_ms or self._readiness_timeout_ms
        selectors = list(condition.selectors)
        label = f"{condition.kind.value}({', '.join(selectors)})"

        try:
            if condition.kind == ReadinessKind.NONE:
                return
            if condition.kind == ReadinessKind.SELECTOR:
                await self._guard(
                    self.page.wait_for_selector(
                        ", ".join(selectors), state="attached", timeout=timeout_ms
                    )
                )
            elif condition.kind == ReadinessKind.ANY_SELECTOR:
                await self._guard(
                    self.page.wait_for_function(
                        ANY_SELECTOR_PREDICATE, arg=selectors, timeout=timeout_ms
                    )
                )
            else:
                await self._poll_page_state(selectors, timeout_ms, condition.poll_interval_ms, label)
        except PlaywrightTimeout as e:
            raise ReadinessTimeout(label, timeout_ms) from e

    async def _poll_page_state(
        self,
        selectors: list[str],
        timeout_ms: int,
        interval_ms: int,
        label: str,
    ) -> None:
        """Poll until the document is complete and any selector matches."""
        deadline = time.monotonic() + timeout_ms / 1000

        while True:
            self._check_cancelled()
            state = await self.page.evaluate("document.readyState")
            if state == "complete":
                if not selectors:
                    return
                for selector in selectors:
                    if await self.page.locator(selector).count() > 0:
                        return

            if time.monotonic() >= deadline:
                raise ReadinessTimeout(label, timeout_ms)
            await self._guard(asyncio.sleep(interval_ms / 1000))

    async def query_all(self, selector: str) -> list[Any]:
        """Element handles for every node matching the selector."""
        return await self.page.query_selector_all(selector)

    async def texts(self, selector: str) -> list[str]:
        """Rendered inner text of every node matching the selector."""
        return await self.page.locator(selector).all_inner_texts()

    async def attribute_values(self, selector: str, name: str) -> list[str | None]:
        """Value of attribute `name` on every node matching the selector, in document order."""
        return await self.page.locator(selector).evaluate_all(ATTRIBUTE_VALUES, name)

    async def body_text(self) -> str:
        """Rendered text of the whole page."""
        return await self.page.inner_text("body")

    async def scroll(self, passes: int, pause_ms: int | None = None) -> None:
        """Scroll to the bottom `passes` times so lazy lists load more rows."""
        pause = (self._scroll_pause_ms if pause_ms is None else pause_ms) / 1000
        for _ in range(passes):
            self._check_cancelled()
            await self.page.evaluate(SCROLL_TO_BOTTOM)
            await self._guard(asyncio.sleep(pause))
