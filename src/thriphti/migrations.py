from __future__ import annotations

import logging
from typing import Any, Callable

from .utils import utc_now_iso

Migration = Callable[[Any], None]


def apply_migrations(conn: Any) -> None:
    # Schema changes go through new versioned migrations only.
    logger = logging.getLogger("thriphti.migrations")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS content_sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            source_type TEXT NOT NULL DEFAULT 'rss',
            category TEXT NULL,
            geographic_focus TEXT NULL,
            keywords_json TEXT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            schedule TEXT NULL,
            description TEXT NULL,
            total_attempts INTEGER NOT NULL DEFAULT 0,
            successful_attempts INTEGER NOT NULL DEFAULT 0,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            success_rate REAL NOT NULL DEFAULT 0,
            last_error_message TEXT NULL,
            last_scraped TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS content_pipeline (
            id TEXT PRIMARY KEY,
            source_id TEXT NULL,
            stage TEXT NOT NULL,
            content_type TEXT NULL,
            raw_data_json TEXT NULL,
            processed_data_json TEXT NULL,
            relevance_score INTEGER NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS feed_validation_cache (
            url TEXT PRIMARY KEY,
            is_valid INTEGER NOT NULL,
            title TEXT NULL,
            description TEXT NULL,
            item_count INTEGER NOT NULL DEFAULT 0,
            error_message TEXT NULL,
            feed_items_json TEXT NULL,
            last_validated TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS events (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NULL,
            location TEXT NULL,
            venue TEXT NULL,
            event_date TEXT NULL,
            start_time TEXT NULL,
            end_time TEXT NULL,
            category TEXT NULL,
            neighborhood TEXT NULL,
            price_range TEXT NULL,
            featured INTEGER NOT NULL DEFAULT 0,
            source_url TEXT NULL,
            pipeline_item_id TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            excerpt TEXT NULL,
            body TEXT NULL,
            category TEXT NULL,
            tags_json TEXT NULL,
            author TEXT NULL,
            published_at TEXT NULL,
            source_url TEXT NULL,
            pipeline_item_id TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )


def _migration_pipeline_indexes(conn: Any) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_content_pipeline_status ON content_pipeline (status)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_content_pipeline_source ON content_pipeline (source_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_content_sources_active ON content_sources (active)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_pipeline_indexes", _migration_pipeline_indexes),
    ]
