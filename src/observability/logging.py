"""
Structured logging configuration using structlog.

Production runs emit one JSON object per line; development runs get the
colored console renderer. Logs go to stderr so that `crawl --json` keeps
stdout machine-readable.

Crawl runs bind `run_id` and `region` with bind_context() so every line a
run produces (orchestrator, extractors, sinks) can be grouped.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings
from src.observability.tracing import add_trace_context

# Libraries whose INFO output drowns out the crawl progress
QUIET_LOGGERS = ("asyncio", "asyncpg", "playwright", "urllib3")


def _processors(production: bool, with_traces: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if with_traces:
        processors.append(add_trace_context)

    if production:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def setup_logging() -> None:
    """
    Configure structlog and the standard library logging it writes through.

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Region crawl completed", region="VN", tags=120)
    """
    settings = get_settings()

    structlog.configure(
        processors=_processors(settings.is_production, settings.tracing_enabled),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, settings.log_level),
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """
    Bind fields to every subsequent log line in this context.

    Args:
        **kwargs: Key-value pairs to bind (e.g. run_id, region)
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
