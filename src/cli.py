"""
Command-line interface for trendtag-crawler.

Provides commands to crawl trending-hashtag sources, inspect the source
catalogue, and initialize the database.

Usage:
    trendtag crawl                 # Crawl the default region, print a summary
    trendtag crawl --mock          # Same, against generated pages
    trendtag crawl --all-regions   # Crawl every configured region
    trendtag sources               # List the source catalogue
    trendtag regions               # List supported regions
    trendtag init-db               # Initialize database
    trendtag health                # Check dependencies
"""

import asyncio
import json
import signal
import sys

import click

from src.config.settings import get_settings
from src.config.sources import SUPPORTED_REGIONS, get_default_sources, select_sources
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """TrendTag Crawler - trending hashtags from many sources."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


def _print_summary(summary) -> None:
    click.echo(f"\nRegion {summary.region}:")
    for report in summary.reports:
        if report.success:
            click.echo(click.style(f"  ✓ {report.source_name}: {report.item_count} tags", fg="green"))
        else:
            click.echo(click.style(f"  ✗ {report.source_name}: {report.error_message}", fg="red"))
    click.echo(
        f"  {summary.successful_sources}/{summary.total_sources} sources succeeded, "
        f"{summary.total_tags} tags in {summary.duration_seconds:.1f}s"
    )


@main.command()
@click.option("--mock", is_flag=True, help="Serve generated pages instead of launching a browser")
@click.option("--source", "-s", "source_names", multiple=True, help="Only crawl this source (repeatable)")
@click.option("--region", "-r", default=None, help="Region code (default: DEFAULT_REGION)")
@click.option("--all-regions", is_flag=True, help="Crawl every region in REGIONS (or all supported)")
@click.option("--concurrent", is_flag=True, help="Crawl sources in parallel")
@click.option("--max-concurrency", default=None, type=int, help="Parallel source limit")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False), help="Append reports as JSON lines")
@click.option("--db", "use_db", is_flag=True, help="Store results in PostgreSQL")
@click.option("--json", "as_json", is_flag=True, help="Print summaries as JSON")
@click.option("--metrics/--no-metrics", default=False, help="Enable metrics server")
def crawl(
    mock: bool,
    source_names: tuple[str, ...],
    region: str | None,
    all_regions: bool,
    concurrent: bool,
    max_concurrency: int | None,
    output: str | None,
    use_db: bool,
    as_json: bool,
    metrics: bool,
) -> None:
    """Crawl trending hashtags and publish the reports."""
    from src.crawler.sinks import JsonLinesSink, NullSink
    from src.services.crawl_service import CrawlService

    if output and use_db:
        raise click.UsageError("--output and --db are mutually exclusive")

    settings = get_settings()
    if all_regions:
        regions = settings.region_codes or list(SUPPORTED_REGIONS)
    else:
        regions = [(region or settings.default_region).upper()]

    names = list(source_names) or None
    try:
        for code in regions:
            select_sources(names, code)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    async def run():
        db = None
        if use_db:
            from src.storage.database import Database
            from src.storage.repository import HashtagRepository

            db = Database()
            await db.connect()
            sink_factory = lambda code: HashtagRepository(db, country_code=code)  # noqa: E731
        elif output:
            jsonl = JsonLinesSink(output)
            sink_factory = lambda code: jsonl  # noqa: E731
        else:
            sink_factory = lambda code: NullSink()  # noqa: E731

        if metrics:
            get_metrics().start_server()

        service = CrawlService(
            sink_factory=sink_factory,
            concurrent=concurrent,
            max_concurrency=max_concurrency,
            use_mock=mock,
        )

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, service.stop)

        try:
            return await service.run_regions(regions, names)
        finally:
            if db is not None:
                await db.close()

    summaries = asyncio.run(run())

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in summaries], indent=2, ensure_ascii=False))
    else:
        for summary in summaries:
            _print_summary(summary)

    if summaries and all(s.successful_sources == 0 for s in summaries):
        sys.exit(1)


@main.command()
@click.option("--all", "show_all", is_flag=True, help="Include disabled sources")
def sources(show_all: bool) -> None:
    """List the source catalogue in crawl order."""
    catalogue = get_default_sources()
    if not show_all:
        catalogue = [s for s in catalogue if s.enabled]

    click.echo(f"\n{'Name':<14} {'Variant':<18} {'Readiness':<14} URL")
    click.echo("-" * 80)
    for source in catalogue:
        line = (
            f"{source.name:<14} {source.extraction.variant.value:<18} "
            f"{source.readiness.kind.value:<14} {source.url}"
        )
        click.echo(line if source.enabled else click.style(line, dim=True))
        for extra in source.extra_urls:
            click.echo(f"{'':<48} {extra}")


@main.command()
def regions() -> None:
    """List supported region codes."""
    default = get_settings().default_region
    for code, name in SUPPORTED_REGIONS.items():
        marker = " (default)" if code == default else ""
        click.echo(f"  {code}  {name}{marker}")


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema and register the catalogue."""
    from src.storage.database import Database
    from src.storage.repository import HashtagRepository

    async def run():
        async with Database() as db:
            repo = HashtagRepository(db)
            await repo.create_tables()
            count = await repo.register_sources(get_default_sources())

        click.echo(f"Database initialized successfully ({count} sources registered)")

    asyncio.run(run())


@main.command()
@click.option("--skip-browser", is_flag=True, help="Only check PostgreSQL")
def health(skip_browser: bool) -> None:
    """Check that PostgreSQL answers and Chromium launches."""
    import structlog

    from src.crawler.browser import BrowserSession
    from src.storage.database import Database

    logger = structlog.get_logger()

    async def check_postgres() -> bool:
        async with Database() as db:
            return await db.health_check()

    async def check_browser() -> bool:
        async with BrowserSession() as session:
            return session.is_open

    checks = {"postgres": check_postgres}
    if not skip_browser:
        checks["chromium"] = check_browser

    async def run() -> dict[str, bool]:
        results = {}
        for name, check in checks.items():
            try:
                results[name] = await check()
            except Exception as e:
                logger.error("Health check failed", dependency=name, error=str(e))
                results[name] = False
        return results

    results = asyncio.run(run())

    for name, ok in results.items():
        mark = click.style("ok", fg="green") if ok else click.style("FAILED", fg="red")
        click.echo(f"  {name:<10} {mark}")

    if not all(results.values()):
        sys.exit(1)


if __name__ == "__main__":
    main()
