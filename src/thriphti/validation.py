from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import urlsplit

from .config import Config, HttpConfig
from .errors import FetchError, NetworkError, ParseError, PersistenceError
from .feeds import FeedFilters, parse_feed
from .fetcher import FetchResult, fetch_feed
from .models import FeedValidationResult
from .storage import get_cached_validation, upsert_validation_cache
from .utils import log_event, utc_now

logger = logging.getLogger("thriphti.validation")

INVALID_URL_MESSAGE = "Invalid URL format. Please provide a valid HTTP or HTTPS URL."

FetchFn = Callable[[str, HttpConfig], FetchResult]


def is_http_url(url: str) -> bool:
    split = urlsplit(url or "")
    return split.scheme in {"http", "https"} and bool(split.netloc)


def validate_feed(
    conn: Any,
    url: str,
    config: Config,
    fetch: FetchFn | None = None,
    now: datetime | None = None,
) -> FeedValidationResult:
    now = now or utc_now()
    fetch = fetch or fetch_feed
    url = (url or "").strip()
    fresh_after = now - timedelta(minutes=config.feeds.cache_ttl_minutes)
    cached = get_cached_validation(conn, url, fresh_after.isoformat())
    if cached is not None:
        log_event(logger, logging.INFO, "feed_validation_cache_hit", url=url)
        return cached

    result = _validate_uncached(url, config, fetch, now)
    try:
        upsert_validation_cache(conn, url, result)
    except PersistenceError as exc:
        log_event(logger, logging.ERROR, "feed_validation_cache_write_failed", url=url, error=exc)
    log_event(
        logger,
        logging.INFO,
        "feed_validated",
        url=url,
        valid=result.is_valid,
        items=result.item_count,
    )
    return result


def _validate_uncached(
    url: str, config: Config, fetch: FetchFn, now: datetime
) -> FeedValidationResult:
    validated_at = now.isoformat()
    if not is_http_url(url):
        return FeedValidationResult(
            is_valid=False, error=INVALID_URL_MESSAGE, last_validated=validated_at
        )
    try:
        response = fetch(url, config.http)
    except FetchError as exc:
        log_event(logger, logging.WARNING, "feed_fetch_failed", url=url, status=exc.status_code)
        return FeedValidationResult(
            is_valid=False,
            error=f"{exc}. The RSS feed URL returned an error.",
            last_validated=validated_at,
        )
    except NetworkError as exc:
        log_event(logger, logging.WARNING, "feed_fetch_failed", url=url, error=exc)
        return FeedValidationResult(is_valid=False, error=str(exc), last_validated=validated_at)
    try:
        parsed = parse_feed(
            response.content, FeedFilters.from_config(config.feeds), now=now
        )
    except ParseError as exc:
        log_event(logger, logging.WARNING, "feed_parse_failed", url=url, error=exc)
        return FeedValidationResult(
            is_valid=False,
            error=(
                f"Invalid RSS feed format: {exc}. Please ensure the URL points to a "
                "valid RSS or Atom feed."
            ),
            last_validated=validated_at,
        )
    return FeedValidationResult(
        is_valid=True,
        title=parsed.title,
        description=parsed.description,
        items=parsed.items,
        item_count=len(parsed.items),
        last_validated=validated_at,
    )
