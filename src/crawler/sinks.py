"""
Result sinks - destinations for finished source reports.

A sink persists what it is given and does not interpret it. The
orchestrator never talks to a sink; the crawl service hands the sealed
report list to publish_reports() once the run has completed.

Shipped sinks:
- HashtagRepository (src.storage.repository): PostgreSQL via asyncpg
- JsonLinesSink: one wire-format report per line
- NullSink: discards everything (dry runs)
"""

import asyncio
import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from src.crawler.schemas import RawTagRecord, SourceReport

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultSink(Protocol):
    """Where crawl results go."""

    async def record_crawl_log(self, report: SourceReport) -> None:
        """Persist the outcome of one source crawl."""
        ...

    async def upsert_hashtag_records(
        self,
        items: Sequence[RawTagRecord],
        source_name: str,
    ) -> None:
        """Persist the normalized tags of one successful source."""
        ...


class NullSink:
    """Accepts and discards every report."""

    async def record_crawl_log(self, report: SourceReport) -> None:
        logger.debug(f"Discarding crawl log for {report.source_name}")

    async def upsert_hashtag_records(
        self,
        items: Sequence[RawTagRecord],
        source_name: str,
    ) -> None:
        logger.debug(f"Discarding {len(items)} tags from {source_name}")


class JsonLinesSink:
    """
    Appends one JSON object per report to a file.

    Each line is the report's wire format (camelCase keys, ISO-8601
    timestamps). Tags are written as part of the report, so
    upsert_hashtag_records() only counts them.

    Usage:
        sink = JsonLinesSink("reports.jsonl")
        await publish_reports(reports, sink)
    """

    def __init__(self, path: str | Path):
        """
        Initialize sink.

        Args:
            path: Output file; parent directories are created on first write
        """
        self._path = Path(path)
        self._reports_written = 0
        self._tags_seen = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def reports_written(self) -> int:
        return self._reports_written

    @property
    def tags_seen(self) -> int:
        return self._tags_seen

    async def record_crawl_log(self, report: SourceReport) -> None:
        line = json.dumps(report.to_wire(), ensure_ascii=False)
        await asyncio.to_thread(self._append_line, line)
        self._reports_written += 1

    def _append_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")

    async def upsert_hashtag_records(
        self,
        items: Sequence[RawTagRecord],
        source_name: str,
    ) -> None:
        self._tags_seen += len(items)


async def publish_reports(reports: Iterable[SourceReport], sink: ResultSink) -> int:
    """
    Hand every report to a sink.

    Every report gets a crawl log entry; successful reports with items also
    have their tags upserted. Sink errors propagate to the caller.

    Args:
        reports: Sealed reports from one run
        sink: Destination

    Returns:
        Number of tags handed to the sink
    """
    published = 0
    tags = 0

    for report in reports:
        await sink.record_crawl_log(report)
        if report.success and report.items:
            await sink.upsert_hashtag_records(report.items, report.source_name)
            tags += report.item_count
        published += 1

    logger.info(f"Published {published} reports ({tags} tags) to {type(sink).__name__}")
    return tags
