"""Tests for BrowserSession against a mocked Playwright page."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from src.crawler.browser import ANY_SELECTOR_PREDICATE, ATTRIBUTE_VALUES, BrowserSession
from src.crawler.cancellation import CancellationToken
from src.crawler.errors import BrowserError, CrawlCancelled, NavigationTimeout, ReadinessTimeout
from src.crawler.schemas import ReadinessCondition, ReadinessKind


def _mock_page() -> MagicMock:
    """Mock Page matching the parts of the Playwright API the session uses."""
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.evaluate = AsyncMock(return_value="complete")
    page.query_selector_all = AsyncMock(return_value=[])
    page.inner_text = AsyncMock(return_value="")

    locator = MagicMock()
    locator.count = AsyncMock(return_value=1)
    locator.all_inner_texts = AsyncMock(return_value=["#fyp", "#viral"])
    locator.evaluate_all = AsyncMock(return_value=["/hashtag/fyp", None])
    page.locator.return_value = locator
    return page


async def _hang(*args, **kwargs) -> None:
    await asyncio.sleep(5)


def _cancel_soon(token: CancellationToken, delay: float = 0.05) -> None:
    asyncio.get_running_loop().call_later(delay, token.cancel, "stopped by operator")


def _session(page: MagicMock | None = None, **kwargs) -> BrowserSession:
    session = BrowserSession(
        navigation_timeout_ms=kwargs.pop("navigation_timeout_ms", 60_000),
        readiness_timeout_ms=kwargs.pop("readiness_timeout_ms", 20_000),
        wait_until="networkidle",
        scroll_pause_ms=0,
        **kwargs,
    )
    session._page = page or _mock_page()
    return session


@pytest.fixture
def playwright_stack():
    """Patched async_playwright() returning mocked playwright, browser, context and page."""
    page = _mock_page()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    manager = MagicMock()
    manager.start = AsyncMock(return_value=playwright)

    with patch("src.crawler.browser.async_playwright", return_value=manager):
        yield playwright, browser, context, page


class TestLifecycle:
    """Tests for open/close and isolated contexts."""

    @pytest.mark.asyncio
    async def test_open_creates_context_with_user_agent(self, playwright_stack):
        playwright, browser, context, page = playwright_stack

        async with BrowserSession(headless=True, user_agent="TestAgent/1.0") as session:
            assert session.is_open
            assert session.page is page

        playwright.chromium.launch.assert_awaited_once()
        assert playwright.chromium.launch.call_args.kwargs["headless"] is True
        browser.new_context.assert_awaited_once_with(user_agent="TestAgent/1.0")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, playwright_stack):
        playwright, browser, context, _ = playwright_stack
        session = BrowserSession()

        await session.open()
        await session.close()
        await session.close()

        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_launch_failure_raises_browser_error(self, playwright_stack):
        playwright, _, _, _ = playwright_stack
        playwright.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")

        session = BrowserSession()
        with pytest.raises(BrowserError, match="Failed to launch browser"):
            await session.open()

        playwright.stop.assert_awaited_once()
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_isolated_child_closes_only_its_context(self, playwright_stack):
        _, browser, context, _ = playwright_stack

        async with BrowserSession() as session:
            session.cancellation = CancellationToken()
            async with session.isolated() as child:
                assert child is not session
                assert child.cancellation is session.cancellation
            assert browser.new_context.await_count == 2
            assert context.close.await_count == 1
            browser.close.assert_not_awaited()

        browser.close.assert_awaited_once()

    def test_page_requires_open_session(self):
        with pytest.raises(BrowserError, match="not open"):
            BrowserSession().page


class TestNavigate:
    """Tests for navigate()."""

    @pytest.mark.asyncio
    async def test_waits_for_configured_load_state(self):
        session = _session()

        await session.navigate("https://buffer.example/tags")

        session.page.goto.assert_awaited_once_with(
            "https://buffer.example/tags", wait_until="networkidle", timeout=60_000
        )

    @pytest.mark.asyncio
    async def test_timeout_override(self):
        session = _session()

        await session.navigate("https://buffer.example/tags", timeout_ms=5_000)

        assert session.page.goto.call_args.kwargs["timeout"] == 5_000

    @pytest.mark.asyncio
    async def test_source_load_state_override(self):
        session = _session()

        await session.navigate("https://tokchart.example", timeout_ms=90_000, wait_until="load")

        session.page.goto.assert_awaited_once_with(
            "https://tokchart.example", wait_until="load", timeout=90_000
        )

    @pytest.mark.asyncio
    async def test_timeout_raises_navigation_timeout(self):
        session = _session()
        session.page.goto.side_effect = PlaywrightTimeout("Timeout 60000ms exceeded")

        with pytest.raises(NavigationTimeout) as exc_info:
            await session.navigate("https://slow.example")

        assert exc_info.value.url == "https://slow.example"
        assert exc_info.value.timeout_ms == 60_000

    @pytest.mark.asyncio
    async def test_other_errors_raise_browser_error(self):
        session = _session()
        session.page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(BrowserError, match="ERR_NAME_NOT_RESOLVED"):
            await session.navigate("https://nowhere.example")

    @pytest.mark.asyncio
    async def test_cancelled_session_does_not_navigate(self):
        session = _session()
        session.cancellation = CancellationToken()
        session.cancellation.cancel()

        with pytest.raises(CrawlCancelled):
            await session.navigate("https://buffer.example/tags")

        session.page.goto.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_interrupts_loading_page(self):
        session = _session()
        session.cancellation = CancellationToken()
        session.page.goto.side_effect = _hang
        _cancel_soon(session.cancellation)

        start = time.monotonic()
        with pytest.raises(CrawlCancelled, match="stopped by operator"):
            await session.navigate("https://slow.example")

        assert time.monotonic() - start < 1.0


class TestWaitForReady:
    """Tests for readiness conditions."""

    @pytest.mark.asyncio
    async def test_none_returns_immediately(self):
        session = _session()

        await session.wait_for_ready(ReadinessCondition(kind=ReadinessKind.NONE))

        session.page.wait_for_selector.assert_not_awaited()
        session.page.wait_for_function.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_selector_waits_for_attached_node(self):
        session = _session()
        condition = ReadinessCondition(kind=ReadinessKind.SELECTOR, selectors=("#top", "#popular"))

        await session.wait_for_ready(condition)

        session.page.wait_for_selector.assert_awaited_once_with(
            "#top, #popular", state="attached", timeout=20_000
        )

    @pytest.mark.asyncio
    async def test_condition_timeout_overrides_default(self):
        session = _session()
        condition = ReadinessCondition(
            kind=ReadinessKind.SELECTOR, selectors=("p",), timeout_ms=3_000
        )

        await session.wait_for_ready(condition)

        assert session.page.wait_for_selector.call_args.kwargs["timeout"] == 3_000

    @pytest.mark.asyncio
    async def test_any_selector_evaluated_in_page(self):
        session = _session()
        condition = ReadinessCondition(
            kind=ReadinessKind.ANY_SELECTOR, selectors=("table tr", "div.mZ3Rlc")
        )

        await session.wait_for_ready(condition)

        session.page.wait_for_function.assert_awaited_once_with(
            ANY_SELECTOR_PREDICATE, arg=["table tr", "div.mZ3Rlc"], timeout=20_000
        )

    @pytest.mark.asyncio
    async def test_timeout_raises_readiness_timeout(self):
        session = _session()
        session.page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout exceeded")
        condition = ReadinessCondition(kind=ReadinessKind.SELECTOR, selectors=("p",))

        with pytest.raises(ReadinessTimeout) as exc_info:
            await session.wait_for_ready(condition)

        assert exc_info.value.timeout_ms == 20_000
        assert "selector(p)" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancel_interrupts_readiness_wait(self):
        session = _session()
        session.cancellation = CancellationToken()
        session.page.wait_for_selector.side_effect = _hang
        condition = ReadinessCondition(kind=ReadinessKind.SELECTOR, selectors=("p",))
        _cancel_soon(session.cancellation)

        start = time.monotonic()
        with pytest.raises(CrawlCancelled):
            await session.wait_for_ready(condition)

        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    async def test_page_state_polls_until_complete(self):
        session = _session()
        session.page.evaluate.side_effect = ["loading", "interactive", "complete"]
        condition = ReadinessCondition(
            kind=ReadinessKind.PAGE_STATE, selectors=("p",), poll_interval_ms=50
        )

        await session.wait_for_ready(condition)

        assert session.page.evaluate.await_count == 3

    @pytest.mark.asyncio
    async def test_page_state_times_out(self):
        session = _session()
        session.page.evaluate.return_value = "loading"
        condition = ReadinessCondition(
            kind=ReadinessKind.PAGE_STATE, timeout_ms=100, poll_interval_ms=50
        )

        with pytest.raises(ReadinessTimeout):
            await session.wait_for_ready(condition)


class TestPageReads:
    """Tests for query helpers."""

    @pytest.mark.asyncio
    async def test_texts_reads_all_matching_nodes(self):
        session = _session()

        assert await session.texts("p") == ["#fyp", "#viral"]
        session.page.locator.assert_called_with("p")

    @pytest.mark.asyncio
    async def test_attribute_values_in_document_order(self):
        session = _session()

        assert await session.attribute_values("a.tag", "href") == ["/hashtag/fyp", None]
        session.page.locator.assert_called_with("a.tag")
        session.page.locator.return_value.evaluate_all.assert_awaited_once_with(
            ATTRIBUTE_VALUES, "href"
        )

    @pytest.mark.asyncio
    async def test_body_text(self):
        session = _session()
        session.page.inner_text.return_value = "#fyp everywhere"

        assert await session.body_text() == "#fyp everywhere"
        session.page.inner_text.assert_awaited_once_with("body")

    @pytest.mark.asyncio
    async def test_scroll_passes(self):
        session = _session()

        await session.scroll(3)

        assert session.page.evaluate.await_count == 3
