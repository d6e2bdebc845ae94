from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .config import LlmConfig, ScrapeConfig
from .errors import UpstreamServiceError
from .llm.client import chat_completion, http_json_request, join_url, parse_json_content
from .models import ContentSource, RawContentItem
from .utils import log_event, utc_now

logger = logging.getLogger("thriphti.scrape")

INCLUDE_TAGS = ["title", "meta", "h1", "h2", "h3", "p", "div", "span", "address"]
EXCLUDE_TAGS = ["script", "style", "nav", "footer", "header"]
# keeps the extraction prompt inside the model's context window
MAX_PAGE_CHARS = 12000

EXTRACTION_PROMPT = (
    "You extract thrifting listings for the Dallas-Fort Worth area from a scraped "
    "web page. Return only a JSON array of objects with keys: title, description, "
    "location, date, price, url. Use null when a value is not on the page."
)

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["title", "description"],
        "properties": {
            "title": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "location": {"type": ["string", "null"]},
            "date": {"type": ["string", "null"]},
            "price": {"type": ["string", "null"]},
            "url": {"type": ["string", "null"]},
        },
    },
}


@dataclass(frozen=True)
class ScrapedPage:
    url: str
    markdown: str
    html: str
    metadata: dict[str, Any] = field(default_factory=dict)


def scrape_url(url: str, scrape_config: ScrapeConfig) -> ScrapedPage:
    api_key = scrape_config.api_key
    if not api_key:
        raise UpstreamServiceError(f"scrape api key missing ({scrape_config.api_key_env})")
    payload = {
        "url": url,
        "formats": ["markdown", "html"],
        "includeTags": INCLUDE_TAGS,
        "excludeTags": EXCLUDE_TAGS,
        "onlyMainContent": True,
    }
    response = http_json_request(
        "POST",
        join_url(scrape_config.base_url, "/scrape"),
        {"Authorization": f"Bearer {api_key}"},
        payload,
        scrape_config.timeout_seconds,
        "scrape",
    )
    if not response.get("success"):
        raise UpstreamServiceError(
            f"Failed to scrape website: {response.get('error') or 'unknown error'}"
        )
    data = response.get("data") or {}
    page = ScrapedPage(
        url=url,
        markdown=str(data.get("markdown") or ""),
        html=str(data.get("html") or ""),
        metadata=data.get("metadata") or {},
    )
    log_event(logger, logging.INFO, "scrape_ok", url=url, chars=len(page.markdown))
    return page


def extract_listings(
    page: ScrapedPage,
    source: ContentSource,
    llm_config: LlmConfig,
    complete: Callable[[LlmConfig, list[dict[str, str]]], str] | None = None,
    now: datetime | None = None,
    default_location: str = "Dallas, TX",
) -> list[RawContentItem]:
    """Turn a scraped page into raw items with the language model.

    There is no heuristic path here: any model failure propagates as
    UpstreamServiceError.
    """
    now = now or utc_now()
    complete = complete or chat_completion
    messages = [
        {"role": "system", "content": EXTRACTION_PROMPT},
        {
            "role": "user",
            "content": f"Page URL: {page.url}\n\n{page.markdown[:MAX_PAGE_CHARS]}",
        },
    ]
    parsed = parse_json_content(complete(llm_config, messages), EXTRACTION_SCHEMA)
    items = [
        RawContentItem(
            title=entry["title"].strip(),
            description=entry["description"].strip(),
            type=source.category or "news",
            source=source.name,
            scraped_at=now.isoformat(),
            location=entry.get("location") or source.geographic_focus or default_location,
            date=entry.get("date"),
            url=entry.get("url") or page.url,
            price=entry.get("price"),
        )
        for entry in parsed
    ]
    log_event(logger, logging.INFO, "scrape_extracted", source_id=source.id, items=len(items))
    return items
