from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

PIPELINE_STATUSES = ("pending", "processed", "published", "rejected")

# published and rejected are terminal
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processed", "rejected"}),
    "processed": frozenset({"published", "rejected"}),
    "published": frozenset(),
    "rejected": frozenset(),
}

SOURCE_TYPES = ("rss", "web_scrape", "api", "email", "calendar")

CONTENT_CATEGORIES = (
    "garage_sale",
    "estate_sale",
    "thrift_store",
    "flea_market",
    "vintage_shop",
    "tips",
    "news",
)

EVENT_CATEGORIES = frozenset({"garage_sale", "estate_sale", "flea_market"})


@dataclass(frozen=True)
class SourceHealth:
    total_attempts: int = 0
    successful_attempts: int = 0
    consecutive_failures: int = 0
    success_rate: float = 0.0
    last_error_message: str | None = None
    last_scraped: str | None = None


@dataclass(frozen=True)
class ContentSource:
    id: str
    name: str
    url: str
    source_type: str
    category: str | None
    geographic_focus: str | None
    keywords: list[str]
    active: bool
    schedule: str | None
    description: str | None
    health: SourceHealth
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class FeedItem:
    title: str
    description: str
    link: str
    pub_date: str
    category: str | None = None


@dataclass(frozen=True)
class ParsedFeed:
    kind: str
    title: str
    description: str
    items: list[FeedItem]


@dataclass(frozen=True)
class RawContentItem:
    title: str
    description: str
    type: str
    source: str
    scraped_at: str
    location: str | None = None
    date: str | None = None
    url: str | None = None
    price: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class ProcessedContent:
    title: str
    description: str
    category: str
    location: str
    relevance_score: int
    actionable_details: str
    date: str | None
    source_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("source_data")
        return data


@dataclass(frozen=True)
class PipelineItem:
    id: str
    source_id: str | None
    stage: str
    content_type: str | None
    raw_data: dict[str, Any]
    processed_data: dict[str, Any]
    relevance_score: int | None
    status: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class FeedValidationResult:
    is_valid: bool
    title: str | None = None
    description: str | None = None
    items: list[FeedItem] = field(default_factory=list)
    item_count: int = 0
    error: str | None = None
    last_validated: str | None = None
    cached: bool = False


@dataclass(frozen=True)
class EventDraft:
    title: str
    description: str
    location: str
    venue: str
    event_date: str
    start_time: str
    end_time: str
    category: str
    neighborhood: str
    price_range: str
    featured: bool
    source_url: str | None


@dataclass(frozen=True)
class ArticleDraft:
    title: str
    slug: str
    excerpt: str
    body: str
    category: str
    tags: list[str]
    author: str
    published_at: str
    source_url: str | None


@dataclass(frozen=True)
class PublishedRecord:
    item_id: str
    table: str
    record_id: str


@dataclass
class BulkPublishResult:
    success: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
