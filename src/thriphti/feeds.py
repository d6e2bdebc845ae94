from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import parse_qs, urlsplit

import feedparser
from bs4 import BeautifulSoup

from .config import FeedsConfig
from .errors import ParseError
from .models import ContentSource, FeedItem, ParsedFeed, RawContentItem
from .utils import collapse_whitespace, decode_entities, parse_date_value, utc_now

GOOGLE_NEWS_HOSTS = ("news.google.com",)


@dataclass(frozen=True)
class FeedFilters:
    max_items: int = 10
    max_age_days: int = 30
    min_title_length: int = 10
    min_description_length: int = 20

    @classmethod
    def from_config(cls, feeds: FeedsConfig) -> "FeedFilters":
        return cls(
            max_items=feeds.max_items,
            max_age_days=feeds.max_age_days,
            min_title_length=feeds.min_title_length,
            min_description_length=feeds.min_description_length,
        )


def parse_feed(
    text: str | bytes,
    filters: FeedFilters | None = None,
    now: datetime | None = None,
) -> ParsedFeed:
    filters = filters or FeedFilters()
    now = now or utc_now()
    # bytes keep feedparser from treating the input as a URL to fetch
    if isinstance(text, str):
        text = text.encode("utf-8")
    parsed = feedparser.parse(text)
    version = parsed.get("version") or ""
    if not (version.startswith("rss") or version.startswith("atom")):
        raise ParseError("Not a valid RSS or Atom feed")

    kind = "atom" if version.startswith("atom") else "rss"
    feed_meta = parsed.feed or {}
    title = clean_text(feed_meta.get("title")) or "Untitled Feed"
    description = clean_text(feed_meta.get("subtitle") or feed_meta.get("description"))

    items: list[FeedItem] = []
    for entry in (parsed.entries or [])[: filters.max_items]:
        item = _entry_to_item(entry)
        if item is None:
            continue
        if not _passes_quality(item, filters):
            continue
        if not _is_fresh(entry, now, filters.max_age_days):
            continue
        items.append(item)
    return ParsedFeed(kind=kind, title=title, description=description, items=items)


def clean_text(value: Any) -> str:
    if not value:
        return ""
    text = str(value)
    if "<" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    return collapse_whitespace(decode_entities(text))


def _entry_to_item(entry: Any) -> FeedItem | None:
    title = clean_text(entry.get("title"))
    if not title:
        return None
    description = clean_text(_entry_body(entry))
    link = str(entry.get("link") or "").strip()
    pub_date = str(entry.get("published") or entry.get("updated") or "").strip()
    return FeedItem(
        title=title,
        description=description,
        link=link,
        pub_date=pub_date,
        category=_entry_category(entry),
    )


def _entry_body(entry: Any) -> str:
    summary = entry.get("summary") or entry.get("description")
    if summary:
        return summary
    content = entry.get("content") or []
    if content:
        return content[0].get("value") or ""
    return ""


def _entry_category(entry: Any) -> str | None:
    tags = entry.get("tags") or []
    for tag in tags:
        term = clean_text(tag.get("term") or tag.get("label"))
        if term:
            return term
    return None


def _passes_quality(item: FeedItem, filters: FeedFilters) -> bool:
    if len(item.title) < filters.min_title_length:
        return False
    return len(item.description) >= filters.min_description_length


def _is_fresh(entry: Any, now: datetime, max_age_days: int) -> bool:
    published = entry_published_at(entry)
    if published is None:
        return True
    return published >= now - timedelta(days=max_age_days)


def entry_published_at(entry: Any) -> datetime | None:
    return parse_date_value(
        entry.get("published_parsed")
        or entry.get("updated_parsed")
        or entry.get("published")
        or entry.get("updated")
    )


def unwrap_google_news_url(url: str) -> str:
    """Return the article URL behind a Google News redirect link.

    Only the ``url=`` redirect form can be resolved offline; the encoded
    ``/rss/articles/<id>`` form is returned unchanged.
    """
    if not url:
        return url
    split = urlsplit(url)
    if split.netloc.lower() not in GOOGLE_NEWS_HOSTS:
        return url
    target = parse_qs(split.query).get("url")
    if target and target[0].startswith(("http://", "https://")):
        return target[0]
    return url


def is_google_news_source(source: ContentSource) -> bool:
    host = urlsplit(source.url).netloc.lower()
    return host in GOOGLE_NEWS_HOSTS or "google.com/rss" in source.url


def to_raw_item(
    item: FeedItem,
    source: ContentSource,
    now: datetime | None = None,
    default_location: str = "Dallas, TX",
) -> RawContentItem:
    now = now or utc_now()
    published = parse_date_value(item.pub_date) or now
    link = item.link
    if link and is_google_news_source(source):
        link = unwrap_google_news_url(link)
    return RawContentItem(
        title=item.title,
        description=item.description,
        type=source.category or item.category or "news",
        source=source.name,
        scraped_at=now.isoformat(),
        location=source.geographic_focus or default_location,
        date=published.date().isoformat(),
        url=link or None,
    )
