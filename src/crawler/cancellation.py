"""Run-scoped cancellation observed at every crawl suspension point."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from src.crawler.errors import CrawlCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation flag for one crawl run.

    The orchestrator checks it before each source. The browser session runs
    every navigation, readiness wait and scroll pause through race(), so a
    cancel interrupts a page that is still loading. Cancelling never
    interrupts a report that is already sealed.

    Usage:
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        reports = await orchestrator.run(session, sources, token=token)
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "crawl cancelled"

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CrawlCancelled(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        Whichever side loses is cancelled. Errors from the awaitable
        propagate unchanged.

        Raises:
            CrawlCancelled: If the token was or becomes cancelled first
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CrawlCancelled(self._reason)

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, waiter):
                if not task.done():
                    task.cancel()

        if work.done() and not work.cancelled():
            return work.result()

        await asyncio.gather(work, return_exceptions=True)
        raise CrawlCancelled(self._reason)
