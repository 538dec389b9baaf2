"""
Hashtag repository - the PostgreSQL result sink.

Implements the ResultSink protocol on top of asyncpg:
- record_crawl_log(): one crawl_logs row per source report, plus the
  source's last_crawled / last_error status
- upsert_hashtag_records(): one hashtags row per (tag, region), one
  hashtag_history row per (hashtag, source, collected_date), with the
  post count when the source shows one

Tables:
    - hashtag_sources: Known sources and their last crawl status
    - hashtags: One row per tag and region with first/last seen dates
    - hashtag_history: Rank of a tag on a source per collection day
    - crawl_logs: Outcome of every source crawl
"""

import logging
from collections.abc import Sequence

import asyncpg

from src.config.settings import get_settings
from src.crawler.schemas import HASHTAG_MARKER, RawTagRecord, SourceConfig, SourceReport
from src.storage.database import Database

logger = logging.getLogger(__name__)


def tag_key(tag: str) -> str:
    """Storage key for a tag: marker stripped, case-folded."""
    return tag.lstrip(HASHTAG_MARKER).casefold()


class HashtagRepository:
    """
    Repository for crawled hashtags, scoped to one region.

    Usage:
        async with Database() as db:
            repo = HashtagRepository(db, country_code="VN")
            await repo.create_tables()
            await publish_reports(reports, repo)
    """

    def __init__(self, database: Database, country_code: str | None = None):
        """
        Initialize repository.

        Args:
            database: Connected Database instance
            country_code: Region the stored tags belong to (default from settings)
        """
        self._db = database
        self._country_code = (country_code or get_settings().default_region).upper()

    @property
    def country_code(self) -> str:
        return self._country_code

    async def create_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        create_sql = """
        CREATE TABLE IF NOT EXISTS hashtag_sources (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            url TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            last_crawled TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS hashtags (
            id SERIAL PRIMARY KEY,
            tag TEXT NOT NULL,
            tag_display TEXT NOT NULL,
            country_code CHAR(2) NOT NULL,
            first_seen DATE NOT NULL,
            last_seen DATE NOT NULL,
            total_appearances INTEGER NOT NULL DEFAULT 1,
            latest_post_count BIGINT,
            UNIQUE (tag, country_code)
        );

        CREATE INDEX IF NOT EXISTS idx_hashtags_last_seen
            ON hashtags(country_code, last_seen DESC);

        CREATE TABLE IF NOT EXISTS hashtag_history (
            id SERIAL PRIMARY KEY,
            hashtag_id INTEGER NOT NULL REFERENCES hashtags(id) ON DELETE CASCADE,
            source_id INTEGER NOT NULL REFERENCES hashtag_sources(id) ON DELETE CASCADE,
            rank INTEGER NOT NULL CHECK (rank >= 1),
            post_count BIGINT,
            collected_date DATE NOT NULL,
            collected_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (hashtag_id, source_id, collected_date)
        );

        CREATE INDEX IF NOT EXISTS idx_hashtag_history_date
            ON hashtag_history(collected_date DESC);

        CREATE TABLE IF NOT EXISTS crawl_logs (
            id SERIAL PRIMARY KEY,
            source_name TEXT NOT NULL,
            country_code CHAR(2) NOT NULL,
            started_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ NOT NULL,
            success BOOLEAN NOT NULL,
            hashtags_collected INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            log_messages TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_crawl_logs_started_at
            ON crawl_logs(started_at DESC);

        -- Columns added after the first release
        ALTER TABLE hashtags ADD COLUMN IF NOT EXISTS latest_post_count BIGINT;
        ALTER TABLE hashtag_history ADD COLUMN IF NOT EXISTS post_count BIGINT;
        ALTER TABLE crawl_logs ADD COLUMN IF NOT EXISTS log_messages TEXT;
        """

        await self._db.execute(create_sql)
        logger.info("Hashtag tables created/verified")

    async def register_sources(self, sources: Sequence[SourceConfig]) -> int:
        """
        Insert or update catalogue entries in hashtag_sources.

        Args:
            sources: Source configurations

        Returns:
            Number of sources written
        """
        if not sources:
            return 0

        sql = """
        INSERT INTO hashtag_sources (name, url, is_active)
        SELECT * FROM unnest($1::text[], $2::text[], $3::boolean[])
        ON CONFLICT (name) DO UPDATE SET
            url = EXCLUDED.url,
            is_active = EXCLUDED.is_active
        """
        await self._db.execute(
            sql,
            [s.name for s in sources],
            [s.url for s in sources],
            [s.enabled for s in sources],
        )
        logger.info(f"Registered {len(sources)} sources")
        return len(sources)

    @staticmethod
    async def _source_id(conn: asyncpg.Connection, source_name: str) -> int:
        sql = """
        INSERT INTO hashtag_sources (name) VALUES ($1)
        ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id
        """
        return await conn.fetchval(sql, source_name)

    async def record_crawl_log(self, report: SourceReport) -> None:
        """
        Store the outcome of one source crawl.

        Also stamps the source with last_crawled and last_error (cleared on
        success). Both writes commit together. The report's log messages are
        stored one per line.
        """
        log_sql = """
        INSERT INTO crawl_logs (
            source_name, country_code, started_at, completed_at,
            success, hashtags_collected, error_message, log_messages
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """
        status_sql = """
        INSERT INTO hashtag_sources (name, last_crawled, last_error)
        VALUES ($1, $2, $3)
        ON CONFLICT (name) DO UPDATE SET
            last_crawled = EXCLUDED.last_crawled,
            last_error = EXCLUDED.last_error
        """

        async with self._db.transaction() as conn:
            await conn.execute(
                log_sql,
                report.source_name,
                self._country_code,
                report.started_at,
                report.completed_at,
                report.success,
                report.item_count,
                report.error_message,
                "\n".join(report.log_messages) or None,
            )
            await conn.execute(
                status_sql,
                report.source_name,
                report.completed_at,
                None if report.success else report.error_message,
            )

    async def upsert_hashtag_records(
        self,
        items: Sequence[RawTagRecord],
        source_name: str,
    ) -> None:
        """
        Upsert tags and their ranks for one source.

        Each tag's total_appearances is incremented and last_seen moved
        forward. The history row for (tag, source, collected_date) keeps the
        latest rank, so re-running a crawl on the same day does not add rows.
        A known post count replaces the tag's latest_post_count; an unknown
        one leaves it alone.
        """
        if not items:
            return

        sql = """
        WITH input AS (
            SELECT * FROM unnest($1::text[], $2::text[], $3::int[], $4::date[], $7::bigint[])
                AS t(tag, tag_display, rank, collected_date, post_count)
        ),
        upserted AS (
            INSERT INTO hashtags (
                tag, tag_display, country_code, first_seen, last_seen, total_appearances,
                latest_post_count
            )
            SELECT tag, tag_display, $5, collected_date, collected_date, 1, post_count
            FROM input
            ON CONFLICT (tag, country_code) DO UPDATE SET
                tag_display = EXCLUDED.tag_display,
                last_seen = GREATEST(hashtags.last_seen, EXCLUDED.last_seen),
                total_appearances = hashtags.total_appearances + 1,
                latest_post_count = COALESCE(
                    EXCLUDED.latest_post_count, hashtags.latest_post_count
                )
            RETURNING id, tag
        )
        INSERT INTO hashtag_history (hashtag_id, source_id, rank, post_count, collected_date)
        SELECT u.id, $6, i.rank, i.post_count, i.collected_date
        FROM upserted u
        JOIN input i ON i.tag = u.tag
        ON CONFLICT (hashtag_id, source_id, collected_date) DO UPDATE SET
            rank = EXCLUDED.rank,
            post_count = EXCLUDED.post_count,
            collected_at = NOW()
        """

        async with self._db.transaction() as conn:
            source_id = await self._source_id(conn, source_name)
            await conn.execute(
                sql,
                [tag_key(item.tag) for item in items],
                [item.tag for item in items],
                [item.rank for item in items],
                [item.collected_date for item in items],
                self._country_code,
                source_id,
                [item.post_count for item in items],
            )

        logger.info(f"Upserted {len(items)} tags from {source_name} ({self._country_code})")
