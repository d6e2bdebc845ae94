from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .config import LlmConfig
from .errors import UpstreamServiceError
from .llm.client import chat_completion, parse_json_content
from .models import CONTENT_CATEGORIES, ContentSource, ProcessedContent, RawContentItem
from .utils import json_dumps, log_event

logger = logging.getLogger("thriphti.relevance")

SOURCE_RELEVANCE_THRESHOLD = 5
HARVEST_RELEVANCE_THRESHOLD = 7

MIN_SCORE = 1
MAX_SCORE = 10
KEYWORD_POINTS = 2
DEFAULT_LOCATION = "Dallas, TX"
# feed items without a category of their own arrive typed as news
DEFAULT_CATEGORY = "news"

THRIFT_KEYWORDS = (
    "thrift",
    "vintage",
    "antique",
    "estate sale",
    "garage sale",
    "yard sale",
    "flea market",
    "consignment",
    "resale",
    "secondhand",
    "second-hand",
    "goodwill",
    "salvation army",
    "collectible",
    "bargain",
)

GEOGRAPHY_KEYWORDS = (
    "dallas",
    "fort worth",
    "dfw",
    "plano",
    "arlington",
    "irving",
    "garland",
    "frisco",
    "mckinney",
    "denton",
    "richardson",
    "carrollton",
    "lewisville",
    "mesquite",
    "grand prairie",
    "deep ellum",
    "bishop arts",
    "oak cliff",
    "uptown",
    "lakewood",
    "highland park",
)

_CATEGORY_HINTS = (
    ("estate_sale", ("estate sale",)),
    ("garage_sale", ("garage sale", "yard sale", "moving sale")),
    ("flea_market", ("flea market", "swap meet")),
    ("vintage_shop", ("vintage", "antique")),
    ("thrift_store", ("thrift", "goodwill", "salvation army", "consignment", "resale")),
    ("tips", ("tips", "how to", "guide")),
)

BASE_PROMPT = (
    "You are a content processing assistant for Thriphti, a Dallas-Fort Worth "
    "thrifting editorial site.\n"
    "Process the raw content items and:\n"
    "1. Keep only items located in the Dallas-Fort Worth area\n"
    "2. Score relevance to thrifting from 1 to 10\n"
    "3. Remove duplicates\n"
    "4. Categorize each item as one of: " + ", ".join(CONTENT_CATEGORIES) + "\n"
    "5. Extract actionable details (address, hours, special items, prices)\n"
    "Return only a JSON array of objects with keys: title, description, category, "
    "location, relevance_score, actionable_details, date."
)

SOURCE_PROMPTS = {
    "reddit": (
        "The items are community posts from Reddit. Ignore questions, memes and "
        "personal hauls without a place or date; favour posts announcing sales or "
        "recommending specific stores."
    ),
    "google_news": (
        "The items are news headlines aggregated by Google News. Favour store "
        "openings, closings and local market coverage; discard national retail news "
        "with no DFW angle."
    ),
    "rss": (
        "The items come from a publisher RSS feed. Favour event listings and "
        "local guides over generic lifestyle content."
    ),
}

DEFAULT_SOURCE_PROMPT = "The items come from a general web source."

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["title", "relevance_score"],
        "properties": {
            "title": {"type": "string", "minLength": 1},
            "description": {"type": ["string", "null"]},
            "category": {"type": ["string", "null"]},
            "location": {"type": ["string", "null"]},
            "relevance_score": {"type": "number", "minimum": MIN_SCORE, "maximum": MAX_SCORE},
            "actionable_details": {"type": ["string", "null"]},
            "date": {"type": ["string", "null"]},
        },
    },
}

CompleteFn = Callable[[LlmConfig, list[dict[str, str]]], str]


@dataclass(frozen=True)
class RelevanceOutcome:
    method: str
    items: list[ProcessedContent] = field(default_factory=list)
    error: str | None = None

    @property
    def used_fallback(self) -> bool:
        return self.method == "fallback"


def build_system_prompt(source_type: str) -> str:
    variant = SOURCE_PROMPTS.get(source_type, DEFAULT_SOURCE_PROMPT)
    return f"{BASE_PROMPT}\n\n{variant}"


def prompt_variant_for(source: ContentSource) -> str:
    url = source.url.lower()
    if "reddit.com" in url:
        return "reddit"
    if "news.google.com" in url or "google.com/rss" in url:
        return "google_news"
    return source.source_type


def filter_content(
    items: Iterable[RawContentItem],
    source_type: str,
    threshold: int,
    llm_config: LlmConfig,
    complete: CompleteFn | None = None,
) -> RelevanceOutcome:
    raw_items = list(items)
    if not raw_items:
        return RelevanceOutcome(method="model", items=[])
    messages = [
        {"role": "system", "content": build_system_prompt(source_type)},
        {
            "role": "user",
            "content": "Process this raw content:\n\n"
            + json_dumps([item.to_dict() for item in raw_items]),
        },
    ]
    complete = complete or chat_completion
    try:
        raw = complete(llm_config, messages)
        parsed = parse_json_content(raw, RESPONSE_SCHEMA)
        scored = [_from_model(entry, raw_items) for entry in parsed]
        method, error = "model", None
    except UpstreamServiceError as exc:
        log_event(
            logger,
            logging.WARNING,
            "relevance_fallback",
            source_type=source_type,
            items=len(raw_items),
            error=str(exc),
        )
        scored = [heuristic_process(item) for item in raw_items]
        method, error = "fallback", str(exc)
    kept = [item for item in scored if item.relevance_score >= threshold]
    log_event(
        logger,
        logging.INFO,
        "relevance_filtered",
        method=method,
        source_type=source_type,
        scored=len(scored),
        kept=len(kept),
        threshold=threshold,
    )
    return RelevanceOutcome(method=method, items=kept, error=error)


def heuristic_score(item: RawContentItem) -> int:
    text = " ".join(
        part for part in (item.title, item.description, item.location or "") if part
    ).lower()
    score = MIN_SCORE
    score += KEYWORD_POINTS * sum(1 for keyword in THRIFT_KEYWORDS if keyword in text)
    score += KEYWORD_POINTS * sum(1 for keyword in GEOGRAPHY_KEYWORDS if keyword in text)
    return _clamp_score(score)


def heuristic_process(item: RawContentItem) -> ProcessedContent:
    location = item.location or DEFAULT_LOCATION
    return ProcessedContent(
        title=item.title,
        description=item.description,
        category=guess_category(item),
        location=location,
        relevance_score=heuristic_score(item),
        actionable_details=" - ".join(
            [
                item.location or "Dallas area",
                item.price or "Various prices",
                item.date or "This weekend",
            ]
        ),
        date=item.date,
        source_data=item.to_dict(),
    )


def guess_category(item: RawContentItem) -> str:
    if item.type in CONTENT_CATEGORIES and item.type != DEFAULT_CATEGORY:
        return item.type
    text = f"{item.title} {item.description}".lower()
    for category, hints in _CATEGORY_HINTS:
        if any(hint in text for hint in hints):
            return category
    return DEFAULT_CATEGORY


def _from_model(entry: dict[str, Any], raw_items: list[RawContentItem]) -> ProcessedContent:
    title = str(entry["title"]).strip()
    source = _match_source(title, raw_items)
    category = entry.get("category")
    if category not in CONTENT_CATEGORIES:
        category = guess_category(source) if source else DEFAULT_CATEGORY
    location = entry.get("location") or (source.location if source else None)
    return ProcessedContent(
        title=title,
        description=str(entry.get("description") or (source.description if source else "")),
        category=category,
        location=location or DEFAULT_LOCATION,
        relevance_score=_clamp_score(round(float(entry["relevance_score"]))),
        actionable_details=str(entry.get("actionable_details") or ""),
        date=entry.get("date") or (source.date if source else None),
        source_data=source.to_dict() if source else {},
    )


def _match_source(title: str, raw_items: list[RawContentItem]) -> RawContentItem | None:
    wanted = title.lower()
    for item in raw_items:
        if item.title.strip().lower() == wanted:
            return item
    if len(raw_items) == 1:
        return raw_items[0]
    return None


def _clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))



def preview_matches(
    items: Iterable[Any],
    keywords: Iterable[str],
    neighborhoods: Iterable[str],
) -> list[dict[str, Any]]:
    """Score feed items for the source-setup preview.

    Each matched keyword counts two points and each matched neighborhood one.
    Items with no match are left out.
    """
    keyword_list = [word for word in keywords if word.strip()]
    neighborhood_list = [name for name in neighborhoods if name.strip()]
    matches: list[dict[str, Any]] = []
    for item in items:
        content = f"{item.title} {item.description}".lower()
        hit_keywords = [word for word in keyword_list if word.lower() in content]
        hit_neighborhoods = [name for name in neighborhood_list if name.lower() in content]
        if not hit_keywords and not hit_neighborhoods:
            continue
        matches.append(
            {
                "title": item.title,
                "description": item.description,
                "link": item.link,
                "pub_date": item.pub_date,
                "relevance_score": len(hit_keywords) * 2 + len(hit_neighborhoods),
                "matched_keywords": hit_keywords + hit_neighborhoods,
            }
        )
    return matches
