"""
Concrete extraction variants and the variant registry.

Sources are data: a SourceConfig names its variant and the registry picks
the class, so adding a source never touches the orchestrator.

Variants:
    structured        Enumerate item nodes, read each node's display text and post count
    free_text         Scan container (or body) text for #word tokens
    hashtag_links     Read /hashtag/<name> anchors, fall back to a text scan
    trending_phrases  First line of each row, punctuation stripped, words joined
    disabled          Retired source, returns no records
"""

import logging
import re
from collections.abc import AsyncIterator
from itertools import zip_longest
from typing import Any
from urllib.parse import unquote

from src.crawler.base_extractor import BaseExtractor, PageSession, TagCandidate, find_hashtags
from src.crawler.errors import ExtractionError
from src.crawler.normalization import parse_count, phrase_to_tag
from src.crawler.schemas import ExtractorVariant, RawTagRecord, SourceConfig

logger = logging.getLogger(__name__)

DEFAULT_LINK_SELECTOR = "a[href*='/hashtag/']"

_HASHTAG_HREF = re.compile(r"/hashtag/([^/?#]+)")

# Fallback for the post counter when count_selector finds nothing: "Posts 12.5K"
_POSTS_COUNT = re.compile(r"Posts?\s+([0-9][0-9,.]*[KMB]?)", re.IGNORECASE)


class StructuredExtractor(BaseExtractor):
    """
    Structured traversal: one tag per item node.

    Reads `text_selector` inside each `item_selector` node, or the node's
    own text when no text selector is configured. With `count_selector` the
    item's post counter is read too, falling back to a "Posts 12.5K" match
    on the item text. An unreadable counter leaves the count unset.
    """

    variant = ExtractorVariant.STRUCTURED

    async def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        for element in await session.query_all(self._spec.item_selector):
            yield element

    async def _read(self, item: Any) -> list[str | TagCandidate]:
        target = item
        if self._spec.text_selector:
            target = await item.query_selector(self._spec.text_selector)
            if target is None:
                raise ExtractionError(f"no {self._spec.text_selector} inside item")

        text = (await target.inner_text()).strip()
        if not text:
            return []
        if not self._spec.count_selector:
            return [text]
        return [TagCandidate(text, post_count=await self._post_count(item))]

    async def _post_count(self, item: Any) -> int | None:
        counter = await item.query_selector(self._spec.count_selector)
        if counter is not None:
            count = parse_count(await counter.inner_text())
            if count is not None:
                return count

        match = _POSTS_COUNT.search(await item.inner_text())
        return parse_count(match.group(1)) if match else None


class FreeTextExtractor(BaseExtractor):
    """
    Free-text scan of rendered containers for hashtag tokens.

    Containers are read in order. With stop_at_first_hit the scan ends at
    the first container selector that produced any token. With
    fallback_to_body the whole page text is scanned when no container did.
    """

    variant = ExtractorVariant.FREE_TEXT

    async def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        found = False

        for selector in self._spec.containers:
            blocks = await session.texts(selector)
            hit = any(find_hashtags(block) for block in blocks if self._within_limit(block))
            for block in blocks:
                yield block
            found = found or hit
            if hit and self._spec.stop_at_first_hit:
                return

        if (not found and self._spec.fallback_to_body) or not self._spec.containers:
            yield await session.body_text()

    async def _read(self, item: Any) -> list[str]:
        if not self._within_limit(item):
            return []
        return find_hashtags(item)

    def _within_limit(self, text: str) -> bool:
        limit = self._spec.max_text_length
        return limit is None or len(text) <= limit


class HashtagLinkExtractor(FreeTextExtractor):
    """
    Hashtag detail links, e.g. <a href="/hashtag/fyp">#fyp</a>.

    Uses the first hashtag token of the anchor text, otherwise the
    URL-decoded path segment of the href, so "# fyp" or an emoji-led label
    still resolves through "/hashtag/fyp". Falls back to the free-text scan
    when the page has no such links and fallback_to_body is set.
    """

    variant = ExtractorVariant.HASHTAG_LINKS

    async def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        selector = self._spec.item_selector or DEFAULT_LINK_SELECTOR
        texts = await session.texts(selector)
        hrefs = await session.attribute_values(selector, "href")
        for text, href in zip_longest(texts, hrefs):
            yield (text or "", href or "")

        if not texts and not hrefs and self._spec.fallback_to_body:
            logger.debug(f"{self.name}: no hashtag links, scanning page text")
            yield await session.body_text()

    async def _read(self, item: Any) -> list[str]:
        if isinstance(item, str):
            return await super()._read(item)

        text, href = item
        tags = find_hashtags(text)
        if tags:
            return tags[:1]

        match = _HASHTAG_HREF.search(href)
        if not match:
            raise ExtractionError(f"unrecognised hashtag link {text.strip()!r} -> {href!r}")
        return ["#" + unquote(match.group(1))]


class TrendingPhraseExtractor(BaseExtractor):
    """
    Trending search phrases that carry no native hashtag marker.

    Containers are candidate selectors tried in order; the first one that
    yields any non-empty text is used. Each phrase becomes a tag by
    stripping punctuation and joining words with "_".
    """

    variant = ExtractorVariant.TRENDING_PHRASES

    async def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        for selector in self._spec.containers:
            rows = [row for row in await session.texts(selector) if row.strip()]
            if rows:
                logger.debug(f"{self.name}: {len(rows)} rows matched {selector}")
                for row in rows:
                    yield row
                return

    async def _read(self, item: Any) -> list[str]:
        text = item.strip()
        if self._spec.first_line_only:
            text = text.split("\n", 1)[0].strip()
        return [text] if text else []

    def _to_tag(self, candidate: str) -> str | None:
        return phrase_to_tag(candidate)


class DisabledExtractor(BaseExtractor):
    """A retired source kept in the catalogue. Never navigates."""

    variant = ExtractorVariant.DISABLED

    async def extract(self, session: PageSession) -> list[RawTagRecord]:
        logger.warning(f"Source {self._config.name} is disabled; no tags collected")
        return []

    async def _collect(self, session: PageSession) -> AsyncIterator[Any]:
        return
        yield

    async def _read(self, item: Any) -> list[str]:
        return []


EXTRACTORS: dict[ExtractorVariant, type[BaseExtractor]] = {
    cls.variant: cls
    for cls in (
        StructuredExtractor,
        FreeTextExtractor,
        HashtagLinkExtractor,
        TrendingPhraseExtractor,
        DisabledExtractor,
    )
}


def create_extractor(config: SourceConfig) -> BaseExtractor:
    """
    Create the extractor for a source configuration.

    Raises:
        KeyError: If no extractor is registered for the variant
    """
    try:
        extractor_cls = EXTRACTORS[config.extraction.variant]
    except KeyError:
        raise KeyError(f"No extractor registered for {config.extraction.variant!r}") from None
    return extractor_cls(config)
