from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import Any, Iterable

from .db import connect_db
from .errors import NotFoundError, PersistenceError, ValidationError
from .models import (
    PIPELINE_STATUSES,
    STATUS_TRANSITIONS,
    ArticleDraft,
    EventDraft,
    FeedItem,
    FeedValidationResult,
    PipelineItem,
    ProcessedContent,
)
from .utils import json_dumps, json_loads, log_event, utc_now_iso

logger = logging.getLogger("thriphti.storage")

_PIPELINE_COLUMNS = (
    "id, source_id, stage, content_type, raw_data_json, processed_data_json, "
    "relevance_score, status, created_at, updated_at"
)


def init_db(path: str):
    return connect_db(path)


def save_pipeline_item(
    conn: Any,
    content: ProcessedContent,
    source_id: str | None,
    status: str = "pending",
    stage: str = "processed",
) -> PipelineItem:
    _check_status(status)
    item_id = str(uuid.uuid4())
    now = utc_now_iso()
    try:
        conn.execute(
            f"""
            INSERT INTO content_pipeline ({_PIPELINE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item_id,
                source_id,
                stage,
                content.category,
                json_dumps(content.source_data),
                json_dumps(content.to_dict()),
                int(content.relevance_score),
                status,
                now,
                now,
            ),
        )
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"Failed to save pipeline item: {exc}") from exc
    return get_pipeline_item(conn, item_id)


def get_pipeline_item(conn: Any, item_id: str) -> PipelineItem | None:
    cursor = conn.execute(
        f"SELECT {_PIPELINE_COLUMNS} FROM content_pipeline WHERE id = ?",
        (item_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_pipeline_item(row)


def list_pipeline_items(
    conn: Any,
    status: str | None = None,
    source_id: str | None = None,
    limit: int | None = None,
) -> list[PipelineItem]:
    clauses: list[str] = []
    params: list[object] = []
    if status is not None:
        _check_status(status)
        clauses.append("status = ?")
        params.append(status)
    if source_id is not None:
        clauses.append("source_id = ?")
        params.append(source_id)
    sql = f"SELECT {_PIPELINE_COLUMNS} FROM content_pipeline"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC, id"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    cursor = conn.execute(sql, tuple(params))
    return [_row_to_pipeline_item(row) for row in cursor.fetchall()]


def update_pipeline_status(conn: Any, item_id: str, status: str) -> PipelineItem:
    _check_status(status)
    current = get_pipeline_item(conn, item_id)
    if current is None:
        raise NotFoundError(f"pipeline item not found: {item_id}")
    check_transition(current.status, status)
    try:
        conn.execute(
            "UPDATE content_pipeline SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now_iso(), item_id),
        )
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"Failed to update pipeline item {item_id}: {exc}") from exc
    log_event(
        logger,
        logging.INFO,
        "pipeline_status_updated",
        item_id=item_id,
        from_status=current.status,
        to_status=status,
    )
    return get_pipeline_item(conn, item_id)


def bulk_update_pipeline_status(
    conn: Any, item_ids: Iterable[str], status: str
) -> list[PipelineItem]:
    _check_status(status)
    ids = _unique_ids(item_ids)
    if not ids:
        return []
    current = _fetch_many(conn, ids)
    missing = [item_id for item_id in ids if item_id not in current]
    if missing:
        raise NotFoundError(f"pipeline items not found: {', '.join(missing)}")
    for item_id in ids:
        check_transition(current[item_id].status, status)
    placeholders = ", ".join("?" for _ in ids)
    # One statement for the whole batch; no row locking, last write wins.
    try:
        conn.execute(
            f"UPDATE content_pipeline SET status = ?, updated_at = ? WHERE id IN ({placeholders})",
            (status, utc_now_iso(), *ids),
        )
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"Failed to update pipeline items: {exc}") from exc
    log_event(
        logger, logging.INFO, "pipeline_bulk_status_updated", count=len(ids), status=status
    )
    updated = _fetch_many(conn, ids)
    return [updated[item_id] for item_id in ids]


def bulk_delete_pipeline_items(conn: Any, item_ids: Iterable[str]) -> int:
    ids = _unique_ids(item_ids)
    if not ids:
        return 0
    placeholders = ", ".join("?" for _ in ids)
    try:
        cursor = conn.execute(
            f"DELETE FROM content_pipeline WHERE id IN ({placeholders})", tuple(ids)
        )
        deleted = cursor.rowcount
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"Failed to delete pipeline items: {exc}") from exc
    log_event(logger, logging.INFO, "pipeline_bulk_deleted", requested=len(ids), deleted=deleted)
    return int(deleted)


def pipeline_stats(conn: Any) -> dict[str, int]:
    stats = {"total": 0, **{status: 0 for status in PIPELINE_STATUSES}}
    cursor = conn.execute("SELECT status, COUNT(*) FROM content_pipeline GROUP BY status")
    for status, count in cursor.fetchall():
        stats["total"] += int(count)
        if status in stats:
            stats[status] = int(count)
    return stats


def check_transition(current: str, target: str) -> None:
    allowed = STATUS_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise ValidationError(f"cannot move pipeline item from {current} to {target}")


def get_cached_validation(
    conn: Any, url: str, fresh_after: str
) -> FeedValidationResult | None:
    cursor = conn.execute(
        """
        SELECT is_valid, title, description, item_count, error_message,
               feed_items_json, last_validated
        FROM feed_validation_cache
        WHERE url = ? AND last_validated >= ?
        """,
        (url, fresh_after),
    )
    row = cursor.fetchone()
    if not row:
        return None
    is_valid, title, description, item_count, error_message, items_json, last_validated = row
    items = [
        FeedItem(
            title=str(item.get("title") or ""),
            description=str(item.get("description") or ""),
            link=str(item.get("link") or ""),
            pub_date=str(item.get("pub_date") or ""),
            category=item.get("category"),
        )
        for item in json_loads(items_json, [])
        if isinstance(item, dict)
    ]
    return FeedValidationResult(
        is_valid=bool(is_valid),
        title=title,
        description=description,
        items=items,
        item_count=int(item_count or 0),
        error=error_message,
        last_validated=last_validated,
        cached=True,
    )


def upsert_validation_cache(conn: Any, url: str, result: FeedValidationResult) -> None:
    try:
        conn.execute(
            """
            INSERT INTO feed_validation_cache
                (url, is_valid, title, description, item_count, error_message,
                 feed_items_json, last_validated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                is_valid=excluded.is_valid,
                title=excluded.title,
                description=excluded.description,
                item_count=excluded.item_count,
                error_message=excluded.error_message,
                feed_items_json=excluded.feed_items_json,
                last_validated=excluded.last_validated
            """,
            (
                url,
                1 if result.is_valid else 0,
                result.title,
                result.description,
                result.item_count,
                result.error,
                json_dumps(result.items),
                result.last_validated or utc_now_iso(),
            ),
        )
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"Failed to cache validation for {url}: {exc}") from exc


def insert_event(conn: Any, draft: EventDraft, pipeline_item_id: str) -> str:
    event_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO events
            (id, title, description, location, venue, event_date, start_time, end_time,
             category, neighborhood, price_range, featured, source_url,
             pipeline_item_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event_id,
            draft.title,
            draft.description,
            draft.location,
            draft.venue,
            draft.event_date,
            draft.start_time,
            draft.end_time,
            draft.category,
            draft.neighborhood,
            draft.price_range,
            1 if draft.featured else 0,
            draft.source_url,
            pipeline_item_id,
            utc_now_iso(),
        ),
    )
    return event_id


def insert_article(conn: Any, draft: ArticleDraft, pipeline_item_id: str) -> str:
    article_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO articles
            (id, title, slug, excerpt, body, category, tags_json, author,
             published_at, source_url, pipeline_item_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            article_id,
            draft.title,
            draft.slug,
            draft.excerpt,
            draft.body,
            draft.category,
            json_dumps(draft.tags),
            draft.author,
            draft.published_at,
            draft.source_url,
            pipeline_item_id,
            utc_now_iso(),
        ),
    )
    return article_id


def article_slug_exists(conn: Any, slug: str) -> bool:
    row = conn.execute("SELECT 1 FROM articles WHERE slug = ?", (slug,)).fetchone()
    return row is not None


def list_events(conn: Any) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT id, title, description, location, venue, event_date, start_time, end_time,
               category, neighborhood, price_range, featured, source_url, pipeline_item_id
        FROM events
        ORDER BY created_at DESC, id
        """
    )
    columns = [
        "id", "title", "description", "location", "venue", "event_date", "start_time",
        "end_time", "category", "neighborhood", "price_range", "featured", "source_url",
        "pipeline_item_id",
    ]
    rows = []
    for row in cursor.fetchall():
        data = dict(zip(columns, row))
        data["featured"] = bool(data["featured"])
        rows.append(data)
    return rows


def list_articles(conn: Any) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT id, title, slug, excerpt, body, category, tags_json, author,
               published_at, source_url, pipeline_item_id
        FROM articles
        ORDER BY created_at DESC, id
        """
    )
    rows = []
    for row in cursor.fetchall():
        (
            article_id,
            title,
            slug,
            excerpt,
            body,
            category,
            tags_json,
            author,
            published_at,
            source_url,
            pipeline_item_id,
        ) = row
        rows.append(
            {
                "id": article_id,
                "title": title,
                "slug": slug,
                "excerpt": excerpt,
                "body": body,
                "category": category,
                "tags": json_loads(tags_json, []),
                "author": author,
                "published_at": published_at,
                "source_url": source_url,
                "pipeline_item_id": pipeline_item_id,
            }
        )
    return rows


def db_errors(conn: Any) -> tuple[type[BaseException], ...]:
    if getattr(conn, "backend", "sqlite") == "postgres":
        import psycopg

        return (sqlite3.Error, psycopg.Error)
    return (sqlite3.Error,)


def _check_status(status: str) -> None:
    if status not in PIPELINE_STATUSES:
        raise ValidationError(f"unknown pipeline status: {status}")


def _unique_ids(item_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ids: list[str] = []
    for item_id in item_ids:
        value = str(item_id)
        if value and value not in seen:
            seen.add(value)
            ids.append(value)
    return ids


def _fetch_many(conn: Any, ids: list[str]) -> dict[str, PipelineItem]:
    placeholders = ", ".join("?" for _ in ids)
    cursor = conn.execute(
        f"SELECT {_PIPELINE_COLUMNS} FROM content_pipeline WHERE id IN ({placeholders})",
        tuple(ids),
    )
    items = [_row_to_pipeline_item(row) for row in cursor.fetchall()]
    return {item.id: item for item in items}


def _row_to_pipeline_item(row: tuple) -> PipelineItem:
    (
        item_id,
        source_id,
        stage,
        content_type,
        raw_data_json,
        processed_data_json,
        relevance_score,
        status,
        created_at,
        updated_at,
    ) = row
    return PipelineItem(
        id=item_id,
        source_id=source_id,
        stage=stage,
        content_type=content_type,
        raw_data=json_loads(raw_data_json, {}),
        processed_data=json_loads(processed_data_json, {}),
        relevance_score=int(relevance_score) if relevance_score is not None else None,
        status=status,
        created_at=created_at,
        updated_at=updated_at,
    )
