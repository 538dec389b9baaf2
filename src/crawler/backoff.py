"""
Retry delays for failed sources.

A source whose navigation or readiness wait fails is retried after 2s, 4s,
8s... (CRAWLER_BACKOFF_BASE_SECONDS doubling) up to
CRAWLER_MAX_BACKOFF_SECONDS. Each delay is jittered by up to 10% so sources
crawled concurrently do not retry the same site in lockstep.
"""

import random
from dataclasses import dataclass, field


@dataclass
class ExponentialBackoff:
    """
    Per-source retry delay sequence.

    Usage:
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=30.0)
        await asyncio.sleep(backoff.next_delay())   # ~2s
        await asyncio.sleep(backoff.next_delay())   # ~4s
    """

    base_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter_range: float = 0.1
    _retries: int = field(default=0, init=False, repr=False)

    @property
    def attempt(self) -> int:
        """Number of delays handed out so far."""
        return self._retries

    def delay_for(self, retry: int) -> float:
        """Un-jittered delay before retry number `retry` (0-based)."""
        return min(self.base_delay * self.multiplier**retry, self.max_delay)

    def next_delay(self) -> float:
        delay = self.delay_for(self._retries)
        self._retries += 1
        if self.jitter_range:
            delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        return max(0.0, delay)
