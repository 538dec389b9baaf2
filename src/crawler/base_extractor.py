"""
Base extractor interface and shared ranking logic.

Each extraction variant implements:
- _collect(): Async generator yielding raw items (element handles or text blocks)
- _read(): Turn one raw item into candidate tag strings (or TagCandidates
  when the page also shows a post count)

The base class provides:
- Navigation and readiness waits for every page of the source
- Rank assignment by discovery order, starting at 1
- Per-pass deduplication on the canonical tag
- Item-level error isolation and statistics

Navigation and readiness failures propagate so the orchestrator can
record a failed report, unless the readiness condition is marked not
required. A single malformed item is skipped.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any, ClassVar, Protocol

from src.crawler.cancellation import CancellationToken
from src.crawler.errors import CrawlCancelled, ReadinessTimeout
from src.crawler.normalization import canonical_key, ensure_marker, is_tag_char
from src.crawler.schemas import ExtractorVariant, RawTagRecord, ReadinessCondition, SourceConfig

logger = logging.getLogger(__name__)

# "#" followed by a run of non-space text; find_hashtags() trims it to tag characters
HASHTAG_PATTERN = re.compile(r"#([^\s#]+)")


class PageSession(Protocol):
    """What an extractor needs from a browser session."""

    cancellation: CancellationToken | None

    async def navigate(
        self, url: str, timeout_ms: int | None = None, wait_until: str | None = None
    ) -> None: ...

    async def wait_for_ready(
        self, condition: ReadinessCondition, timeout_ms: int | None = None
    ) -> None: ...

    async def query_all(self, selector: str) -> list[Any]: ...

    async def texts(self, selector: str) -> list[str]: ...

    async def attribute_values(self, selector: str, name: str) -> list[str | None]: ...

    async def body_text(self) -> str: ...

    async def scroll(self, passes: int, pause_ms: int | None = None) -> None: ...


@dataclass(frozen=True)
class TagCandidate:
    """Candidate tag text plus the metadata shown next to it."""

    text: str
    post_count: int | None = None


@dataclass
class ExtractorStats:
    """Statistics for one extraction pass."""

    items_seen: int = 0
    tags_collected: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class BaseExtractor(ABC):
    """
    Abstract base class for source extractors.

    Subclasses set `variant` and implement _collect() and _read(). Override
    _to_tag() when candidates need more than a leading marker.
    """

    variant: ClassVar[ExtractorVariant]

    def __init__(self, config: SourceConfig):
        """
        Initialize extractor for one source.

        Args:
            config: Source configuration (URL, readiness, extraction spec)
        """
        self._config = config
        self._spec = config.extraction
        self._stats = ExtractorStats()

    @property
    def name(self) -> str:
        """Human-readable extractor name."""
        return f"{self._config.name}_{self.variant.value}"

    @property
    def stats(self) -> ExtractorStats:
        """Get statistics of the last extract() call."""
        return self._stats

    @abstractmethod
    def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        """
        Yield raw items from the loaded page.

        Reading the whole list is a page-level operation: errors raised here
        propagate. Per-item parsing belongs in _read().
        """
        ...

    @abstractmethod
    async def _read(self, item: Any) -> list[str | TagCandidate]:
        """
        Turn one raw item into candidate tags, in page order.

        May raise for malformed markup; the item is then skipped.
        """
        ...

    def _to_tag(self, candidate: str) -> str | None:
        """Convert a candidate string to a marker-prefixed tag, or None to skip."""
        candidate = candidate.strip()
        if not candidate:
            return None
        return ensure_marker(candidate)

    async def extract(self, session: PageSession) -> list[RawTagRecord]:
        """
        Visit every page of the source and return ranked, deduplicated records.

        The primary URL must load; pages in extra_urls are best effort and
        are skipped with a warning when they fail.

        Returns:
            Records ranked 1..N in discovery order (empty if nothing matched)
        """
        self._stats = ExtractorStats()
        records: list[RawTagRecord] = []
        seen: set[str] = set()
        today = date.today()

        logger.info(f"Starting extraction for {self.name}")

        try:
            for index, url in enumerate(self._config.urls):
                try:
                    await self._load(session, url)
                except CrawlCancelled:
                    raise
                except Exception as e:
                    if index == 0:
                        raise
                    logger.warning(f"{self.name}: skipping {url}: {e}")
                    continue

                async for item in self._collect(session):
                    self._stats.items_seen += 1
                    try:
                        candidates = await self._read(item)
                    except Exception as e:
                        self._stats.errors += 1
                        logger.debug(f"{self.name}: skipping malformed item: {e}")
                        continue

                    for candidate in candidates:
                        self._add(candidate, records, seen, today)

        except Exception as e:
            logger.error(f"Error in {self.name} extraction: {e}")
            raise

        finally:
            logger.info(
                f"{self.name} completed: "
                f"tags={self._stats.tags_collected}, "
                f"duplicates={self._stats.duplicates}, "
                f"skipped={self._stats.skipped}, "
                f"errors={self._stats.errors}, "
                f"elapsed={self._stats.elapsed_seconds:.2f}s"
            )

        return records

    def _add(
        self,
        candidate: str | TagCandidate,
        records: list[RawTagRecord],
        seen: set[str],
        collected_date: date,
    ) -> None:
        if not isinstance(candidate, TagCandidate):
            candidate = TagCandidate(candidate)
        try:
            tag = self._to_tag(candidate.text)
            key = canonical_key(tag) if tag else None
            if key is None:
                self._stats.skipped += 1
                return
            if key in seen:
                self._stats.duplicates += 1
                return

            records.append(
                RawTagRecord(
                    tag=tag,
                    rank=len(records) + 1,
                    collected_date=collected_date,
                    post_count=candidate.post_count,
                )
            )
            seen.add(key)
            self._stats.tags_collected += 1
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"{self.name}: skipping candidate {candidate.text!r}: {e}")

    async def _load(self, session: PageSession, url: str) -> None:
        """Navigate, wait for readiness and optionally scroll."""
        await session.navigate(
            url,
            timeout_ms=self._config.navigation_timeout_ms,
            wait_until=self._config.wait_until,
        )
        try:
            await session.wait_for_ready(self._config.readiness)
        except ReadinessTimeout as e:
            if self._config.readiness.required:
                raise
            logger.info(f"{self.name}: {e}, extracting anyway")
        if self._config.scroll_passes:
            await session.scroll(self._config.scroll_passes)


def find_hashtags(text: str) -> list[str]:
    """
    Extract hashtag-shaped tokens from text, in order of appearance.

    Args:
        text: Rendered text to scan

    Returns:
        List of "#word" tokens (duplicates kept; ranking dedupes them).
        A token ends at the first character that is not a letter, combining
        mark, digit or "_", so "#ดูหนัง" and "#हिन्दी" stay whole and "#fyp," reads
        as "#fyp".
    """
    tags = []
    for run in HASHTAG_PATTERN.findall(text):
        end = 0
        while end < len(run) and is_tag_char(run[end]):
            end += 1
        if end:
            tags.append(f"#{run[:end]}")
    return tags
