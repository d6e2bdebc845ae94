from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable

from .config import DEFAULT_CONFIG, PublishConfig
from .errors import NotFoundError, PersistenceError, PipelineError, ValidationError
from .models import (
    EVENT_CATEGORIES,
    ArticleDraft,
    BulkPublishResult,
    EventDraft,
    PipelineItem,
    PublishedRecord,
)
from .storage import (
    article_slug_exists,
    check_transition,
    db_errors,
    get_pipeline_item,
    insert_article,
    insert_event,
)
from .utils import log_event, slugify, utc_now

logger = logging.getLogger("thriphti.publish")

# first match wins, so more specific names come first
NEIGHBORHOODS = (
    "North Dallas",
    "Downtown",
    "Deep Ellum",
    "Bishop Arts",
    "Oak Cliff",
    "Uptown",
    "Design District",
    "Lower Greenville",
    "Lakewood",
    "Highland Park",
)
DEFAULT_NEIGHBORHOOD = "Other"

PRICE_RANGES = (
    ("free", ("free",)),
    ("under-5", ("under $5", "under 5", "less than $5")),
    ("5-15", ("$5-15", "$5-$15", "$5 - $15", "5-15")),
    ("15-25", ("$15-25", "$15-$25", "$15 - $25", "15-25")),
)
DEFAULT_PRICE_RANGE = "varies"

SLUG_SUFFIX_DIGITS = 6


def default_publish_config() -> PublishConfig:
    values = DEFAULT_CONFIG["publish"]
    return PublishConfig(
        author=values["author"],
        default_start_time=values["default_start_time"],
        default_end_time=values["default_end_time"],
        excerpt_length=values["excerpt_length"],
    )


def derive_neighborhood(location: str | None) -> str:
    text = (location or "").lower()
    for name in NEIGHBORHOODS:
        if name.lower() in text:
            return name
    return DEFAULT_NEIGHBORHOOD


def derive_price_range(details: str | None) -> str:
    text = (details or "").lower()
    for label, phrases in PRICE_RANGES:
        if any(phrase in text for phrase in phrases):
            return label
    return DEFAULT_PRICE_RANGE


def generate_slug(title: str, now: datetime | None = None) -> str:
    millis = int((now or utc_now()).timestamp() * 1000)
    return f"{slugify(title)}-{str(millis)[-SLUG_SUFFIX_DIGITS:]}"


def build_draft(
    item: PipelineItem,
    publish_config: PublishConfig | None = None,
    now: datetime | None = None,
) -> EventDraft | ArticleDraft:
    """Validate an item's processed data and shape it for its target table.

    Event categories become an EventDraft; everything else becomes an
    ArticleDraft. Raises ValidationError when the item has no title or no
    body text at all.
    """
    cfg = publish_config or default_publish_config()
    now = now or utc_now()
    data = item.processed_data or {}
    title = _text(data.get("title"))
    if not title:
        raise ValidationError(f"item {item.id} has no title")
    description = _text(data.get("description"))
    details = _text(data.get("actionable_details"))
    if not description and not details:
        raise ValidationError(f"item {item.id} has no description or actionable details")

    category = _text(data.get("category")) or _text(item.content_type) or "news"
    location = _text(data.get("location"))
    source_url = _source_url(item)

    if category in EVENT_CATEGORIES:
        return EventDraft(
            title=title,
            description=description or details,
            location=location,
            venue=_text(data.get("venue")) or location,
            event_date=_text(data.get("date")) or now.date().isoformat(),
            start_time=cfg.default_start_time,
            end_time=cfg.default_end_time,
            category=category,
            neighborhood=derive_neighborhood(location),
            price_range=derive_price_range(details),
            featured=False,
            source_url=source_url,
        )
    body = "\n\n".join(part for part in (description, details) if part)
    return ArticleDraft(
        title=title,
        slug=generate_slug(title, now),
        excerpt=description[: cfg.excerpt_length],
        body=body,
        category=category,
        tags=[category],
        author=cfg.author,
        published_at=now.isoformat(),
        source_url=source_url,
    )


def publish_item(
    conn: Any,
    item_id: str,
    publish_config: PublishConfig | None = None,
    now: datetime | None = None,
) -> PublishedRecord:
    item = get_pipeline_item(conn, item_id)
    if item is None:
        raise NotFoundError(f"pipeline item not found: {item_id}")
    if item.status != "processed":
        raise ValidationError(
            f"only processed items can be published (item {item_id} is {item.status})"
        )
    check_transition(item.status, "published")
    now = now or utc_now()
    draft = build_draft(item, publish_config, now)
    if isinstance(draft, ArticleDraft):
        draft = replace(draft, slug=_unique_slug(conn, draft.slug))
    table = "events" if isinstance(draft, EventDraft) else "articles"
    # the row insert and the status change commit together
    try:
        if isinstance(draft, EventDraft):
            record_id = insert_event(conn, draft, item_id)
        else:
            record_id = insert_article(conn, draft, item_id)
        conn.execute(
            "UPDATE content_pipeline SET status = ?, updated_at = ? WHERE id = ?",
            ("published", now.isoformat(), item_id),
        )
        conn.commit()
    except db_errors(conn) as exc:
        conn.rollback()
        log_event(logger, logging.ERROR, "publish_failed", item_id=item_id, error=exc)
        raise PersistenceError(f"Publishing failed: {exc}") from exc
    log_event(
        logger, logging.INFO, "item_published", item_id=item_id, table=table, record_id=record_id
    )
    return PublishedRecord(item_id=item_id, table=table, record_id=record_id)


def bulk_publish(
    conn: Any,
    item_ids: Iterable[str],
    publish_config: PublishConfig | None = None,
    now: datetime | None = None,
) -> BulkPublishResult:
    result = BulkPublishResult()
    # one at a time; a failed item never stops the rest
    for item_id in item_ids:
        try:
            publish_item(conn, item_id, publish_config, now)
        except PipelineError as exc:
            message = str(exc) or exc.__class__.__name__
            log_event(logger, logging.WARNING, "bulk_publish_item_failed", item_id=item_id, error=message)
            result.failed.append({"id": item_id, "error": message})
            continue
        result.success.append(item_id)
    log_event(
        logger,
        logging.INFO,
        "bulk_publish_complete",
        success=len(result.success),
        failed=len(result.failed),
    )
    return result


def _unique_slug(conn: Any, slug: str) -> str:
    # articles.slug is UNIQUE; equal titles at one timestamp get a counter
    candidate = slug
    counter = 2
    while article_slug_exists(conn, candidate):
        candidate = f"{slug}-{counter}"
        counter += 1
    return candidate


def _source_url(item: PipelineItem) -> str | None:
    for container in (item.raw_data, item.processed_data.get("source_data") or {}):
        if isinstance(container, dict) and container.get("url"):
            return str(container["url"])
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
