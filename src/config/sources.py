"""
Default catalogue of trending-hashtag sources.

Order matters: reports come back in this order and ranks are only
comparable within one source. Override the enabled set via the
ENABLED_SOURCES environment variable (comma-separated names).

URLs may carry a {country_code} placeholder that is filled per region.

Heavy client-rendered pages rarely reach network idle, so they end
navigation at the load event with a 90s budget (SLOW_PAGE_TIMEOUT_MS).
"""

from src.crawler.schemas import (
    ExtractionSpec,
    ExtractorVariant,
    ReadinessCondition,
    ReadinessKind,
    SourceConfig,
)

# Regions the crawl can target (ISO 3166-1 alpha-2)
SUPPORTED_REGIONS = {
    "VN": "Vietnam",
    "US": "United States",
    "GB": "United Kingdom",
    "BR": "Brazil",
    "IN": "India",
    "ID": "Indonesia",
    "PH": "Philippines",
    "TH": "Thailand",
    "MY": "Malaysia",
    "DE": "Germany",
    "FR": "France",
    "JP": "Japan",
    "KR": "South Korea",
    "MX": "Mexico",
    "AU": "Australia",
}

SLOW_PAGE_TIMEOUT_MS = 90_000

# Link pages fall back to a body scan, so a missing link is not fatal
HASHTAG_LINK_READINESS = ReadinessCondition(
    kind=ReadinessKind.SELECTOR,
    selectors=("a[href*='/hashtag/']", ".hashtag-name", "[class*='hashtag']"),
    timeout_ms=10_000,
    required=False,
)

PARAGRAPH_READINESS = ReadinessCondition(kind=ReadinessKind.SELECTOR, selectors=("p",))

SOFT_BODY_READINESS = ReadinessCondition(
    kind=ReadinessKind.SELECTOR, selectors=("body",), timeout_ms=10_000, required=False
)

DEFAULT_SOURCES = [
    # TikTok Creative Center - the only region-aware, ranked source
    SourceConfig(
        name="TikTok",
        url=(
            "https://ads.tiktok.com/business/creativecenter/inspiration/popular/"
            "hashtag/pc/en?countryCode={country_code}&period=7"
        ),
        readiness=ReadinessCondition(
            kind=ReadinessKind.SELECTOR,
            selectors=("a[data-testid^='cc_commonCom-trend_hashtag_item']",),
        ),
        extraction=ExtractionSpec(
            variant=ExtractorVariant.STRUCTURED,
            item_selector="a[data-testid^='cc_commonCom-trend_hashtag_item']",
            text_selector="span[class*='titleText']",
            count_selector="span[class*='itemValue']",
        ),
        wait_until="load",
        navigation_timeout_ms=SLOW_PAGE_TIMEOUT_MS,
    ),
    # Google Trends daily searches - phrases, not hashtags
    SourceConfig(
        name="GoogleTrends",
        url="https://trends.google.com/trends/trendingsearches/daily?geo={country_code}",
        readiness=ReadinessCondition(
            kind=ReadinessKind.ANY_SELECTOR,
            selectors=(
                "#trend-table table tr",
                "table[role=grid] tr",
                "tr[jsname=OkdM2c]",
                "div.mZ3Rlc",
            ),
        ),
        extraction=ExtractionSpec(
            variant=ExtractorVariant.TRENDING_PHRASES,
            containers=(
                "#trend-table table tr td:nth-child(2)",
                "table[role=grid] tr td:nth-child(2)",
                "tr[jsname=OkdM2c] td:nth-child(2)",
                "div.mZ3Rlc",
            ),
            first_line_only=True,
        ),
    ),
    SourceConfig(
        name="Buffer",
        url="https://buffer.com/resources/tiktok-hashtags/",
        readiness=PARAGRAPH_READINESS,
        extraction=ExtractionSpec(variant=ExtractorVariant.FREE_TEXT, containers=("p",)),
    ),
    SourceConfig(
        name="Trollishly",
        url="https://www.trollishly.com/tiktok-trending-hashtags/",
        readiness=ReadinessCondition(
            kind=ReadinessKind.SELECTOR,
            selectors=(
                "#popular-hashtags-container",
                "#top-hashtags-container",
                "#trending-hashtags-container",
            ),
        ),
        extraction=ExtractionSpec(
            variant=ExtractorVariant.FREE_TEXT,
            containers=(
                "#popular-hashtags-container",
                "#top-hashtags-container",
                "#trending-hashtags-container",
            ),
        ),
    ),
    SourceConfig(
        name="CapCut",
        url="https://www.capcut.com/resource/tiktok-hashtag-guide",
        readiness=SOFT_BODY_READINESS,
        extraction=ExtractionSpec(
            variant=ExtractorVariant.FREE_TEXT, containers=("p",), fallback_to_body=True
        ),
        scroll_passes=3,
        wait_until="load",
        navigation_timeout_ms=SLOW_PAGE_TIMEOUT_MS,
    ),
    # Lazy-loaded dashboards: scroll before reading
    SourceConfig(
        name="TokChart",
        url="https://tokchart.com/dashboard/hashtags/most-views",
        extra_urls=("https://tokchart.com/dashboard/hashtags/growing",),
        readiness=HASHTAG_LINK_READINESS,
        extraction=ExtractionSpec(
            variant=ExtractorVariant.HASHTAG_LINKS,
            item_selector="a[href*='/hashtag/']",
            fallback_to_body=True,
        ),
        scroll_passes=3,
        wait_until="load",
        navigation_timeout_ms=SLOW_PAGE_TIMEOUT_MS,
    ),
    SourceConfig(
        name="Countik",
        url="https://countik.com/popular/hashtags",
        readiness=HASHTAG_LINK_READINESS,
        extraction=ExtractionSpec(
            variant=ExtractorVariant.HASHTAG_LINKS,
            item_selector="a[href*='/hashtag/']",
            fallback_to_body=True,
        ),
        scroll_passes=3,
        wait_until="load",
        navigation_timeout_ms=SLOW_PAGE_TIMEOUT_MS,
    ),
    # Blocks headless browsers; kept so its history stays attributable
    SourceConfig(
        name="Picuki",
        url="https://www.picuki.com/popular-tags",
        extraction=ExtractionSpec(variant=ExtractorVariant.DISABLED),
        enabled=False,
    ),
]


def get_default_sources() -> list[SourceConfig]:
    """
    Get the default ordered source catalogue.

    Returns:
        List of SourceConfig, disabled entries included
    """
    return DEFAULT_SOURCES.copy()


def parse_source_names(names_str: str | None) -> list[str]:
    """
    Parse comma-separated source names into a list.

    Args:
        names_str: Comma-separated names (e.g., "TikTok,Buffer")

    Returns:
        List of names, empty if input is None/empty
    """
    if not names_str:
        return []

    names = [n.strip() for n in names_str.split(",")]
    return [n for n in names if n]


def is_supported_region(code: str) -> bool:
    """Check whether a region code is in the supported set."""
    return code.upper() in SUPPORTED_REGIONS


def select_sources(
    names: list[str] | None = None,
    region: str | None = None,
    include_disabled: bool = False,
) -> list[SourceConfig]:
    """
    Pick sources from the catalogue, preserving catalogue order.

    Args:
        names: Source names to keep (case-insensitive); None or empty keeps all
        region: Region code for the {country_code} placeholder
        include_disabled: Keep entries with enabled=False

    Returns:
        Ordered list of SourceConfig ready to crawl

    Raises:
        ValueError: If a name is unknown or the region is unsupported
    """
    catalogue = get_default_sources()

    if names:
        known = {s.name.lower(): s for s in catalogue}
        unknown = [n for n in names if n.lower() not in known]
        if unknown:
            raise ValueError(
                f"Unknown source(s): {', '.join(unknown)}. "
                f"Available: {', '.join(s.name for s in catalogue)}"
            )
        wanted = {n.lower() for n in names}
        catalogue = [s for s in catalogue if s.name.lower() in wanted]

    if not include_disabled:
        catalogue = [s for s in catalogue if s.enabled]

    if region is not None:
        if not is_supported_region(region):
            raise ValueError(
                f"Unsupported region {region!r}. "
                f"Supported: {', '.join(SUPPORTED_REGIONS)}"
            )
        catalogue = [s.for_region(region) for s in catalogue]

    return catalogue
