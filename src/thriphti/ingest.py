from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .config import Config, HttpConfig, LlmConfig, ScrapeConfig
from .errors import NotFoundError
from .feeds import FeedFilters, parse_feed, to_raw_item
from .fetcher import FetchResult, fetch_feed
from .models import ContentSource, PipelineItem, RawContentItem
from .relevance import (
    HARVEST_RELEVANCE_THRESHOLD,
    SOURCE_RELEVANCE_THRESHOLD,
    filter_content,
    prompt_variant_for,
)
from .scrape import ScrapedPage, extract_listings, scrape_url
from .services.sources_service import get_source, list_sources, record_attempt
from .storage import save_pipeline_item
from .utils import log_event, utc_now

logger = logging.getLogger("thriphti.ingest")

IMPLEMENTED_SOURCE_TYPES = ("rss", "web_scrape")

FetchFn = Callable[[str, HttpConfig], FetchResult]
CompleteFn = Callable[[LlmConfig, list[dict[str, str]]], str]
ScrapeFn = Callable[[str, ScrapeConfig], ScrapedPage]


@dataclass(frozen=True)
class SourceResult:
    source_id: str
    source_name: str
    status: str
    scraped: int = 0
    processed: int = 0
    saved: int = 0
    method: str | None = None
    error: str | None = None
    items: list[PipelineItem] = field(default_factory=list)


@dataclass
class HarvestReport:
    results: list[SourceResult] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return sum(result.saved for result in self.results)


def process_source(
    conn: Any,
    source_id: str,
    config: Config,
    threshold: int = SOURCE_RELEVANCE_THRESHOLD,
    fetch: FetchFn | None = None,
    complete: CompleteFn | None = None,
    scrape: ScrapeFn | None = None,
    now: datetime | None = None,
) -> SourceResult:
    source = get_source(conn, source_id)
    if source is None or not source.active:
        raise NotFoundError(f"Source not found or inactive: {source_id}")
    if source.source_type not in IMPLEMENTED_SOURCE_TYPES:
        log_event(
            logger,
            logging.WARNING,
            "source_not_implemented",
            source_id=source.id,
            source_type=source.source_type,
        )
        return SourceResult(
            source_id=source.id,
            source_name=source.name,
            status="not_implemented",
            error=f"{source.source_type} sources not implemented",
        )

    now = now or utc_now()
    log_event(logger, logging.INFO, "source_processing", source_id=source.id, type=source.source_type)
    try:
        raw_items = _collect_raw_items(source, config, fetch, complete, scrape, now)
        outcome = filter_content(
            raw_items, prompt_variant_for(source), threshold, config.llm, complete
        )
        saved = [save_pipeline_item(conn, item, source.id) for item in outcome.items]
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "source_processing_failed", source_id=source.id, error=exc)
        record_attempt(conn, source.id, ok=False, error=str(exc) or exc.__class__.__name__, now=now)
        raise
    record_attempt(conn, source.id, ok=True, now=now)
    log_event(
        logger,
        logging.INFO,
        "source_processed",
        source_id=source.id,
        scraped=len(raw_items),
        kept=len(outcome.items),
        saved=len(saved),
        method=outcome.method,
    )
    return SourceResult(
        source_id=source.id,
        source_name=source.name,
        status="ok",
        scraped=len(raw_items),
        processed=len(outcome.items),
        saved=len(saved),
        method=outcome.method,
        error=outcome.error,
        items=saved,
    )


def harvest_sources(
    conn: Any,
    config: Config,
    threshold: int = HARVEST_RELEVANCE_THRESHOLD,
    fetch: FetchFn | None = None,
    complete: CompleteFn | None = None,
    scrape: ScrapeFn | None = None,
    now: datetime | None = None,
) -> HarvestReport:
    report = HarvestReport()
    sources = list_sources(conn, active_only=True)
    log_event(logger, logging.INFO, "harvest_start", sources=len(sources), threshold=threshold)
    for source in sources:
        try:
            result = process_source(
                conn, source.id, config, threshold, fetch, complete, scrape, now
            )
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            report.errors.append({"source_id": source.id, "error": message})
            report.results.append(
                SourceResult(
                    source_id=source.id,
                    source_name=source.name,
                    status="error",
                    error=message,
                )
            )
            continue
        report.results.append(result)
    log_event(
        logger,
        logging.INFO,
        "harvest_complete",
        sources=len(sources),
        saved=report.saved,
        errors=len(report.errors),
    )
    return report


def _collect_raw_items(
    source: ContentSource,
    config: Config,
    fetch: FetchFn | None,
    complete: CompleteFn | None,
    scrape: ScrapeFn | None,
    now: datetime,
) -> list[RawContentItem]:
    default_location = config.feeds.default_location
    if source.source_type == "web_scrape":
        page = (scrape or scrape_url)(source.url, config.scrape)
        return extract_listings(page, source, config.llm, complete, now, default_location)
    response = (fetch or fetch_feed)(source.url, config.http)
    parsed = parse_feed(response.content, FeedFilters.from_config(config.feeds), now=now)
    return [to_raw_item(item, source, now, default_location) for item in parsed.items]
