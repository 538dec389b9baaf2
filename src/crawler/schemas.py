"""
Record and configuration schemas for the crawl pipeline.

CRITICAL: RawTagRecord and SourceReport flow from the extractors through
normalization to every result sink. Keep the wire field names stable
(sourceName, items[{tag, rank, collectedDate, postCount}], success,
errorMessage, logMessages, startedAt, completedAt); downstream storage
depends on them. postCount is left out of the wire form when unknown.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

HASHTAG_MARKER = "#"

WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    """Frozen model that serializes with camelCase field names."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RawTagRecord(_WireModel):
    """One ranked tag discovered on a source page."""

    tag: str = Field(..., min_length=2, description="Tag text including the leading marker")
    rank: int = Field(..., ge=1, description="Discovery rank within the source, 1 = top")
    collected_date: date = Field(default_factory=date.today)
    post_count: int | None = Field(
        default=None, ge=0, description="Posts using the tag, when the source shows it"
    )

    @field_validator("tag")
    @classmethod
    def tag_has_marker(cls, v: str) -> str:
        if not v.startswith(HASHTAG_MARKER):
            raise ValueError(f"tag must start with {HASHTAG_MARKER!r}: {v!r}")
        return v


class SourceReport(_WireModel):
    """
    Outcome of crawling one source within one run.

    A failed report never carries items and always explains itself;
    a succeeded report may be empty (zero tags found is not an error).
    """

    source_name: str = Field(..., min_length=1)
    items: tuple[RawTagRecord, ...] = ()
    success: bool
    error_message: str | None = None
    log_messages: tuple[str, ...] = ()
    started_at: datetime
    completed_at: datetime

    @model_validator(mode="after")
    def failure_has_message(self) -> "SourceReport":
        if not self.success:
            if self.items:
                raise ValueError("failed report must not carry items")
            if not self.error_message:
                raise ValueError("failed report requires an error message")
        return self

    @classmethod
    def succeeded(
        cls,
        source_name: str,
        items: list[RawTagRecord] | tuple[RawTagRecord, ...],
        started_at: datetime,
        completed_at: datetime | None = None,
        log_messages: list[str] | tuple[str, ...] = (),
    ) -> "SourceReport":
        return cls(
            source_name=source_name,
            items=tuple(items),
            success=True,
            log_messages=tuple(log_messages),
            started_at=started_at,
            completed_at=completed_at or _utc_now(),
        )

    @classmethod
    def failed(
        cls,
        source_name: str,
        error_message: str,
        started_at: datetime,
        completed_at: datetime | None = None,
        log_messages: list[str] | tuple[str, ...] = (),
    ) -> "SourceReport":
        return cls(
            source_name=source_name,
            success=False,
            error_message=error_message or "unknown error",
            log_messages=tuple(log_messages),
            started_at=started_at,
            completed_at=completed_at or _utc_now(),
        )

    @property
    def item_count(self) -> int:
        return len(self.items)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the external JSON shape (camelCase, ISO timestamps)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReadinessKind(str, Enum):
    """How a page signals that the content of interest has rendered."""

    SELECTOR = "selector"
    ANY_SELECTOR = "any_selector"
    PAGE_STATE = "page_state"
    NONE = "none"


class ReadinessCondition(BaseModel):
    """Readiness predicate evaluated after navigation."""

    model_config = ConfigDict(frozen=True)

    kind: ReadinessKind = ReadinessKind.SELECTOR
    selectors: tuple[str, ...] = ()
    timeout_ms: int | None = Field(
        default=None,
        ge=100,
        description="Overrides the configured readiness timeout",
    )
    poll_interval_ms: int = Field(default=500, ge=50)
    required: bool = Field(
        default=True,
        description="When False a timeout is logged and extraction goes ahead",
    )

    @model_validator(mode="after")
    def selectors_required(self) -> "ReadinessCondition":
        if self.kind in (ReadinessKind.SELECTOR, ReadinessKind.ANY_SELECTOR) and not self.selectors:
            raise ValueError(f"{self.kind.value} readiness requires at least one selector")
        return self


class ExtractorVariant(str, Enum):
    """Extraction algorithms available to source configurations."""

    STRUCTURED = "structured"
    FREE_TEXT = "free_text"
    HASHTAG_LINKS = "hashtag_links"
    TRENDING_PHRASES = "trending_phrases"
    DISABLED = "disabled"


class ExtractionSpec(BaseModel):
    """Parameters for the extraction algorithm of one source."""

    model_config = ConfigDict(frozen=True)

    variant: ExtractorVariant
    item_selector: str | None = None
    text_selector: str | None = None
    containers: tuple[str, ...] = ()
    fallback_to_body: bool = False
    stop_at_first_hit: bool = False
    first_line_only: bool = True
    max_text_length: int | None = Field(default=None, ge=1)
    count_selector: str | None = Field(
        default=None,
        description="Node inside an item whose text is the post count (structured only)",
    )

    @model_validator(mode="after")
    def variant_parameters(self) -> "ExtractionSpec":
        if self.variant == ExtractorVariant.STRUCTURED and not self.item_selector:
            raise ValueError("structured extraction requires item_selector")
        if self.variant == ExtractorVariant.TRENDING_PHRASES and not self.containers:
            raise ValueError("trending_phrases extraction requires containers")
        return self


class SourceConfig(BaseModel):
    """
    Everything needed to crawl one source.

    `url` and `extra_urls` may contain a `{country_code}` placeholder that
    for_region() fills in.

    `wait_until` and `navigation_timeout_ms` override the session defaults
    for slow pages that never reach network idle.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    readiness: ReadinessCondition = Field(
        default_factory=lambda: ReadinessCondition(kind=ReadinessKind.NONE)
    )
    extraction: ExtractionSpec
    extra_urls: tuple[str, ...] = ()
    scroll_passes: int = Field(default=0, ge=0, le=50)
    wait_until: WaitUntil | None = None
    navigation_timeout_ms: int | None = Field(default=None, ge=1_000)
    enabled: bool = True

    @property
    def urls(self) -> tuple[str, ...]:
        """All pages visited for this source, primary first."""
        return (self.url, *self.extra_urls)

    def for_region(self, country_code: str) -> "SourceConfig":
        """Return a copy with the region placeholder filled in."""
        code = country_code.upper()
        return self.model_copy(
            update={
                "url": self.url.replace("{country_code}", code),
                "extra_urls": tuple(u.replace("{country_code}", code) for u in self.extra_urls),
            }
        )
