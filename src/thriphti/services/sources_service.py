from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Iterable

from ..errors import NotFoundError, PersistenceError, ValidationError
from ..health import health_status, summarize_health
from ..models import CONTENT_CATEGORIES, SOURCE_TYPES, ContentSource, SourceHealth
from ..storage import db_errors
from ..utils import json_dumps, log_event, utc_now

logger = logging.getLogger("thriphti.sources")

_SOURCE_COLUMNS = [
    "id",
    "name",
    "url",
    "source_type",
    "category",
    "geographic_focus",
    "keywords_json",
    "active",
    "schedule",
    "description",
    "total_attempts",
    "successful_attempts",
    "consecutive_failures",
    "success_rate",
    "last_error_message",
    "last_scraped",
    "created_at",
    "updated_at",
]

_EDITABLE_FIELDS = (
    "name",
    "url",
    "source_type",
    "category",
    "geographic_focus",
    "keywords",
    "active",
    "schedule",
    "description",
)


def list_sources(
    conn: Any,
    active_only: bool = False,
    source_type: str | None = None,
) -> list[ContentSource]:
    clauses: list[str] = []
    params: list[object] = []
    if active_only:
        clauses.append("active = 1")
    if source_type:
        clauses.append("source_type = ?")
        params.append(source_type)
    sql = f"SELECT {', '.join(_SOURCE_COLUMNS)} FROM content_sources"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC, id"
    cursor = conn.execute(sql, tuple(params))
    return [_row_to_source(row) for row in cursor.fetchall()]


def get_source(conn: Any, source_id: str) -> ContentSource | None:
    cursor = conn.execute(
        f"SELECT {', '.join(_SOURCE_COLUMNS)} FROM content_sources WHERE id = ?",
        (source_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_source(row)


def require_source(conn: Any, source_id: str) -> ContentSource:
    source = get_source(conn, source_id)
    if source is None:
        raise NotFoundError(f"source not found: {source_id}")
    return source


def create_source(conn: Any, payload: dict[str, Any]) -> ContentSource:
    source_id = str(payload.get("id") or "").strip() or str(uuid.uuid4())
    if get_source(conn, source_id) is not None:
        raise ValidationError(f"source already exists: {source_id}")
    fields = _clean_payload(payload, current=None)
    now = utc_now().isoformat()
    _write(
        conn,
        """
        INSERT INTO content_sources
            (id, name, url, source_type, category, geographic_focus, keywords_json,
             active, schedule, description, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source_id,
            fields["name"],
            fields["url"],
            fields["source_type"],
            fields["category"],
            fields["geographic_focus"],
            json_dumps(fields["keywords"]),
            1 if fields["active"] else 0,
            fields["schedule"],
            fields["description"],
            now,
            now,
        ),
        f"Failed to create source {fields['name']}",
    )
    log_event(logger, logging.INFO, "source_created", source_id=source_id, type=fields["source_type"])
    return require_source(conn, source_id)


def update_source(conn: Any, source_id: str, payload: dict[str, Any]) -> ContentSource:
    current = require_source(conn, source_id)
    fields = _clean_payload(payload, current=current)
    _write(
        conn,
        """
        UPDATE content_sources
        SET name = ?, url = ?, source_type = ?, category = ?, geographic_focus = ?,
            keywords_json = ?, active = ?, schedule = ?, description = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            fields["name"],
            fields["url"],
            fields["source_type"],
            fields["category"],
            fields["geographic_focus"],
            json_dumps(fields["keywords"]),
            1 if fields["active"] else 0,
            fields["schedule"],
            fields["description"],
            utc_now().isoformat(),
            source_id,
        ),
        f"Failed to update source {source_id}",
    )
    log_event(logger, logging.INFO, "source_updated", source_id=source_id)
    return require_source(conn, source_id)


def delete_source(conn: Any, source_id: str) -> None:
    require_source(conn, source_id)
    _write(
        conn,
        "DELETE FROM content_sources WHERE id = ?",
        (source_id,),
        f"Failed to delete source {source_id}",
    )
    log_event(logger, logging.INFO, "source_deleted", source_id=source_id)


def set_source_active(conn: Any, source_id: str, active: bool) -> ContentSource:
    require_source(conn, source_id)
    _write(
        conn,
        "UPDATE content_sources SET active = ?, updated_at = ? WHERE id = ?",
        (1 if active else 0, utc_now().isoformat(), source_id),
        f"Failed to update source {source_id}",
    )
    log_event(logger, logging.INFO, "source_active_changed", source_id=source_id, active=active)
    return require_source(conn, source_id)


def toggle_source_active(conn: Any, source_id: str) -> ContentSource:
    source = require_source(conn, source_id)
    return set_source_active(conn, source_id, not source.active)


def record_attempt(
    conn: Any,
    source_id: str,
    ok: bool,
    error: str | None = None,
    now: datetime | None = None,
) -> ContentSource:
    """Record one fetch attempt with a single UPDATE.

    Counters are incremented in SQL so concurrent runs cannot lose an attempt.
    The arithmetic matches ``health.apply_attempt``.
    """
    stamp = (now or utc_now()).isoformat()
    ok_flag = 1 if ok else 0
    cursor = _write(
        conn,
        """
        UPDATE content_sources
        SET total_attempts = total_attempts + 1,
            successful_attempts = successful_attempts + ?,
            consecutive_failures = CASE WHEN ? = 1 THEN 0 ELSE consecutive_failures + 1 END,
            success_rate = CAST(successful_attempts + ? AS DOUBLE PRECISION) / (total_attempts + 1),
            last_error_message = CASE WHEN ? = 1 THEN last_error_message ELSE ? END,
            last_scraped = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            ok_flag,
            ok_flag,
            ok_flag,
            ok_flag,
            error or "unknown error",
            stamp,
            stamp,
            source_id,
        ),
        f"Failed to record attempt for source {source_id}",
    )
    if cursor.rowcount == 0:
        raise NotFoundError(f"source not found: {source_id}")
    source = require_source(conn, source_id)
    log_event(
        logger,
        logging.INFO if ok else logging.WARNING,
        "source_attempt_recorded",
        source_id=source_id,
        ok=ok,
        consecutive_failures=source.health.consecutive_failures,
        status=health_status(source),
    )
    return source


def reset_source_errors(conn: Any, source_id: str) -> ContentSource:
    require_source(conn, source_id)
    _write(
        conn,
        """
        UPDATE content_sources
        SET consecutive_failures = 0, last_error_message = NULL, updated_at = ?
        WHERE id = ?
        """,
        (utc_now().isoformat(), source_id),
        f"Failed to reset source {source_id}",
    )
    log_event(logger, logging.INFO, "source_errors_reset", source_id=source_id)
    return require_source(conn, source_id)


def health_overview(conn: Any) -> dict[str, Any]:
    sources = list_sources(conn)
    sources.sort(key=lambda source: source.health.consecutive_failures, reverse=True)
    return {
        "summary": summarize_health(sources),
        "sources": [
            {**source_to_dict(source), "status": health_status(source)} for source in sources
        ],
    }


def import_sources(conn: Any, entries: Iterable[dict[str, Any]]) -> list[ContentSource]:
    imported: list[ContentSource] = []
    for entry in entries:
        source_id = str(entry.get("id") or "").strip()
        if source_id and get_source(conn, source_id) is not None:
            imported.append(update_source(conn, source_id, entry))
        else:
            imported.append(create_source(conn, entry))
    return imported


def source_to_dict(source: ContentSource) -> dict[str, Any]:
    return {
        "id": source.id,
        "name": source.name,
        "url": source.url,
        "source_type": source.source_type,
        "category": source.category,
        "geographic_focus": source.geographic_focus,
        "keywords": list(source.keywords),
        "active": source.active,
        "schedule": source.schedule,
        "description": source.description,
        "total_attempts": source.health.total_attempts,
        "successful_attempts": source.health.successful_attempts,
        "consecutive_failures": source.health.consecutive_failures,
        "success_rate": source.health.success_rate,
        "last_error_message": source.health.last_error_message,
        "last_scraped": source.health.last_scraped,
        "created_at": source.created_at,
        "updated_at": source.updated_at,
    }


def _clean_payload(payload: dict[str, Any], current: ContentSource | None) -> dict[str, Any]:
    base: dict[str, Any] = {
        "name": current.name if current else "",
        "url": current.url if current else "",
        "source_type": current.source_type if current else "rss",
        "category": current.category if current else None,
        "geographic_focus": current.geographic_focus if current else None,
        "keywords": list(current.keywords) if current else [],
        "active": current.active if current else True,
        "schedule": current.schedule if current else None,
        "description": current.description if current else None,
    }
    for key in _EDITABLE_FIELDS:
        if key in payload and payload[key] is not None:
            base[key] = payload[key]

    name = str(base["name"]).strip()
    if not name:
        raise ValidationError("name is required")
    url = str(base["url"]).strip()
    if not url:
        raise ValidationError("url is required")
    source_type = str(base["source_type"]).strip()
    if source_type not in SOURCE_TYPES:
        raise ValidationError(
            f"source_type must be one of: {', '.join(SOURCE_TYPES)}"
        )
    category = _optional_text(base["category"])
    if category is not None and category not in CONTENT_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(CONTENT_CATEGORIES)}"
        )
    return {
        "name": name,
        "url": url,
        "source_type": source_type,
        "category": category,
        "geographic_focus": _optional_text(base["geographic_focus"]),
        "keywords": _parse_keywords(base["keywords"]),
        "active": bool(base["active"]),
        # stored for display only; nothing schedules runs from it
        "schedule": _optional_text(base["schedule"]),
        "description": _optional_text(base["description"]),
    }


def _write(conn: Any, sql: str, params: tuple, context: str):
    try:
        cursor = conn.execute(sql, params)
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        raise PersistenceError(f"{context}: {exc}") from exc
    return cursor


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_keywords(keywords: Any) -> list[str]:
    if keywords is None:
        return []
    if isinstance(keywords, list):
        return [str(word).strip() for word in keywords if str(word).strip()]
    if isinstance(keywords, str):
        try:
            parsed = json.loads(keywords)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(word).strip() for word in parsed if str(word).strip()]
        return [item.strip() for item in keywords.split(",") if item.strip()]
    return []


def _row_to_source(row: tuple) -> ContentSource:
    data = dict(zip(_SOURCE_COLUMNS, row))
    return ContentSource(
        id=data["id"],
        name=data["name"],
        url=data["url"],
        source_type=data["source_type"],
        category=data["category"],
        geographic_focus=data["geographic_focus"],
        keywords=_parse_keywords(data["keywords_json"]),
        active=bool(data["active"]),
        schedule=data["schedule"],
        description=data["description"],
        health=SourceHealth(
            total_attempts=int(data["total_attempts"] or 0),
            successful_attempts=int(data["successful_attempts"] or 0),
            consecutive_failures=int(data["consecutive_failures"] or 0),
            success_rate=float(data["success_rate"] or 0.0),
            last_error_message=data["last_error_message"],
            last_scraped=data["last_scraped"],
        ),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )
