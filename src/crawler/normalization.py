"""
Tag canonicalization and per-source deduplication.

Canonical tag: NFC-normalized, trimmed, exactly one leading marker, body
restricted to letters, combining marks, digits and the `_` joining
character. Combining marks are part of the word: Thai vowel signs and
Devanagari viramas survive, so "#ดูหนัง" does not collide with "#ดหนง".

Under the default "fold" case policy the body is lower-cased; "preserve"
keeps the first-seen casing. Deduplication always compares case-folded
values, so "#Fyp" and "#fyp" are one tag under either policy.
"""

import logging
import re
import unicodedata
from collections.abc import Iterable
from typing import Literal

from src.crawler.schemas import HASHTAG_MARKER, RawTagRecord

logger = logging.getLogger(__name__)

CasePolicy = Literal["fold", "preserve"]

JOINER = "_"

_WHITESPACE = re.compile(r"\s+")

# Display counters: "12.5K", "1,234", "3M"
_COUNT_SUFFIXES = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}
_NOT_COUNT = re.compile(r"[^\d.,KMB]")


def is_tag_char(ch: str) -> bool:
    """True for characters allowed in a tag body: L*, M*, N* categories and "_"."""
    return ch == JOINER or unicodedata.category(ch)[0] in "LMN"


def canonicalize_tag(text: str, case_policy: CasePolicy = "fold") -> str | None:
    """
    Canonicalize raw tag text.

    Args:
        text: Raw text such as " #Summer-Vibes "
        case_policy: "fold" lower-cases the body, "preserve" keeps it

    Returns:
        Canonical tag (e.g. "#summervibes") or None if nothing survives
    """
    body = unicodedata.normalize("NFC", text.strip()).replace(HASHTAG_MARKER, "")
    body = "".join(ch for ch in body if is_tag_char(ch))
    if not body:
        return None
    if case_policy == "fold":
        body = body.lower()
    return f"{HASHTAG_MARKER}{body}"


def canonical_key(text: str) -> str | None:
    """Deduplication key: the case-folded canonical tag."""
    tag = canonicalize_tag(text, case_policy="preserve")
    return tag.casefold() if tag else None


def ensure_marker(text: str) -> str:
    """Trim and make sure the text starts with the hashtag marker."""
    text = text.strip()
    return text if text.startswith(HASHTAG_MARKER) else f"{HASHTAG_MARKER}{text}"


def phrase_to_tag(phrase: str) -> str | None:
    """
    Turn a multi-word trending phrase into a tag.

    Strips punctuation, collapses internal whitespace to the joiner and
    prefixes the marker: "Taylor Swift, tour!" -> "#Taylor_Swift_tour".
    Case is left to the normalization stage.
    """
    text = "".join(ch for ch in phrase if is_tag_char(ch) or ch.isspace())
    text = _WHITESPACE.sub(JOINER, text.strip()).strip(JOINER)
    if not text:
        return None
    return f"{HASHTAG_MARKER}{text}"


def parse_count(text: str | None) -> int | None:
    """
    Parse a displayed counter such as "12.5K", "1,234" or "3M Posts".

    Returns:
        The count, or None when the text holds no number
    """
    if not text:
        return None

    cleaned = _NOT_COUNT.sub("", text.upper()).replace(",", "")
    multiplier = 1
    if cleaned and cleaned[-1] in _COUNT_SUFFIXES:
        multiplier = _COUNT_SUFFIXES[cleaned[-1]]
        cleaned = cleaned[:-1]

    try:
        return round(float(cleaned) * multiplier)
    except ValueError:
        return None


def normalize_records(
    records: Iterable[RawTagRecord],
    case_policy: CasePolicy = "fold",
) -> list[RawTagRecord]:
    """
    Produce the canonical record sequence for one source.

    Steps: trim, enforce a single leading marker, drop disallowed characters,
    deduplicate by canonical value keeping the earliest rank. Ranks are not
    renumbered. Applying this twice gives the same result.

    Args:
        records: Raw records in discovery order
        case_policy: "fold" or "preserve"

    Returns:
        Normalized records ordered by rank
    """
    best: dict[str, RawTagRecord] = {}
    dropped = 0

    for record in sorted(records, key=lambda r: r.rank):
        tag = canonicalize_tag(record.tag, case_policy)
        if tag is None:
            dropped += 1
            continue

        key = tag.casefold()
        if key in best:
            dropped += 1
            continue

        best[key] = (
            record if tag == record.tag else record.model_copy(update={"tag": tag})
        )

    if dropped:
        logger.debug(f"Normalization dropped {dropped} empty or duplicate tags")

    return list(best.values())
