import json

import pytest

from conftest import NOW, rss_document, rss_item
from thriphti.errors import FetchError, NotFoundError, UpstreamServiceError
from thriphti.fetcher import FetchResult
from thriphti.ingest import harvest_sources, process_source
from thriphti.scrape import EXTRACTION_PROMPT, ScrapedPage
from thriphti.services.sources_service import create_source, get_source, set_source_active
from thriphti.storage import list_pipeline_items

ESTATE = rss_item(
    "Estate sale in Deep Ellum this weekend",
    "Vintage furniture and antique lamps, everything priced to move.",
)
COUNCIL = rss_item(
    "City council budget meeting",
    "Council members discuss the annual budget for next year.",
)


def _fetch_returning(document):
    calls = []

    def fetch(url, http_config):
        calls.append(url)
        return FetchResult(url=url, status=200, content=document.encode("utf-8"), content_type="application/rss+xml")

    fetch.calls = calls
    return fetch


def _failing_fetch(url, http_config):
    raise FetchError(503, "HTTP 503: Service Unavailable")


@pytest.fixture
def plain_source(conn):
    return create_source(
        conn,
        {"id": "thrift-blog", "name": "Thrift Blog", "url": "https://example.com/blog.xml"},
    )


def test_rss_source_falls_back_to_heuristics_without_key(conn, config, plain_source):
    fetch = _fetch_returning(rss_document([ESTATE, COUNCIL]))

    result = process_source(conn, plain_source.id, config, fetch=fetch, now=NOW)

    assert fetch.calls == ["https://example.com/blog.xml"]
    assert result.status == "ok"
    assert result.method == "fallback"
    assert "api key missing" in result.error
    assert result.scraped == 2
    assert result.processed == 1
    assert result.saved == 1

    stored = list_pipeline_items(conn, source_id=plain_source.id)
    assert len(stored) == 1
    item = stored[0]
    assert item.status == "pending"
    assert item.processed_data["title"] == "Estate sale in Deep Ellum this weekend"
    assert item.processed_data["category"] == "estate_sale"
    assert item.relevance_score == 10
    assert item.raw_data["source"] == "Thrift Blog"

    health = get_source(conn, plain_source.id).health
    assert health.total_attempts == 1
    assert health.successful_attempts == 1


def test_rss_source_uses_model_scores(conn, config, plain_source):
    fetch = _fetch_returning(rss_document([ESTATE, COUNCIL]))
    seen = []

    def complete(llm_config, messages):
        seen.append(messages)
        return json.dumps(
            [
                {
                    "title": "Estate sale in Deep Ellum this weekend",
                    "description": "Furniture and lamps.",
                    "category": "estate_sale",
                    "location": "Deep Ellum",
                    "relevance_score": 9,
                    "actionable_details": "Sat 8am, cash only",
                    "date": "2025-06-21",
                },
                {"title": "City council budget meeting", "relevance_score": 2},
            ]
        )

    result = process_source(conn, plain_source.id, config, fetch=fetch, complete=complete, now=NOW)

    assert result.method == "model"
    assert result.error is None
    assert [item.processed_data["title"] for item in result.items] == [
        "Estate sale in Deep Ellum this weekend"
    ]
    assert "publisher RSS feed" in seen[0][0]["content"]
    assert result.items[0].processed_data["actionable_details"] == "Sat 8am, cash only"


def test_web_scrape_source_extracts_then_filters(conn, config):
    source = create_source(
        conn,
        {
            "id": "estate-listings",
            "name": "Estate Listings",
            "url": "https://example.com/sales",
            "source_type": "web_scrape",
            "category": "estate_sale",
        },
    )
    prompts = []

    def scrape(url, scrape_config):
        return ScrapedPage(url=url, markdown="# Sales\n\n- Big estate sale in Plano", html="")

    def complete(llm_config, messages):
        prompts.append(messages[0]["content"])
        if messages[0]["content"] == EXTRACTION_PROMPT:
            return json.dumps(
                [
                    {
                        "title": "Big estate sale in Plano",
                        "description": "Whole house of antiques.",
                        "location": "Plano, TX",
                        "date": "2025-06-20",
                        "price": "$5-15",
                        "url": None,
                    }
                ]
            )
        return '```json\n[{"title": "Big estate sale in Plano", "relevance_score": 8}]\n```'

    result = process_source(conn, source.id, config, scrape=scrape, complete=complete, now=NOW)

    assert len(prompts) == 2
    assert result.status == "ok"
    assert result.scraped == 1
    assert result.saved == 1
    item = result.items[0]
    assert item.raw_data["url"] == "https://example.com/sales"
    assert item.raw_data["price"] == "$5-15"
    assert item.processed_data["location"] == "Plano, TX"
    assert item.processed_data["category"] == "estate_sale"


def test_unimplemented_source_type(conn, config):
    source = create_source(
        conn,
        {"id": "sale-api", "name": "Sale API", "url": "https://example.com/api", "source_type": "api"},
    )
    result = process_source(conn, source.id, config, fetch=_failing_fetch)
    assert result.status == "not_implemented"
    assert get_source(conn, source.id).health.total_attempts == 0


def test_missing_or_inactive_source(conn, config, plain_source):
    with pytest.raises(NotFoundError):
        process_source(conn, "missing", config)
    set_source_active(conn, plain_source.id, False)
    with pytest.raises(NotFoundError):
        process_source(conn, plain_source.id, config)


def test_failure_records_health_and_reraises(conn, config, plain_source):
    with pytest.raises(FetchError):
        process_source(conn, plain_source.id, config, fetch=_failing_fetch, now=NOW)
    health = get_source(conn, plain_source.id).health
    assert health.total_attempts == 1
    assert health.consecutive_failures == 1
    assert health.last_error_message == "HTTP 503: Service Unavailable"


def test_scrape_without_key_is_a_failure(conn, config):
    source = create_source(
        conn,
        {"id": "no-key", "name": "No Key", "url": "https://example.com/x", "source_type": "web_scrape"},
    )
    with pytest.raises(UpstreamServiceError):
        process_source(conn, source.id, config, now=NOW)
    assert get_source(conn, source.id).health.consecutive_failures == 1


def test_harvest_continues_after_failure(conn, config, rss_source):
    create_source(
        conn,
        {"id": "broken-feed", "name": "Broken Feed", "url": "https://example.com/broken.xml"},
    )
    document = rss_document([ESTATE, COUNCIL]).encode("utf-8")

    def fetch(url, http_config):
        if "broken" in url:
            raise FetchError(500, "HTTP 500: Internal Server Error")
        return FetchResult(url=url, status=200, content=document, content_type="text/xml")

    report = harvest_sources(conn, config, fetch=fetch, now=NOW)

    assert report.errors == [{"source_id": "broken-feed", "error": "HTTP 500: Internal Server Error"}]
    statuses = {result.source_id: result.status for result in report.results}
    assert statuses == {"broken-feed": "error", rss_source.id: "ok"}
    # the council item scores 5 with the Dallas focus, below the harvest threshold
    assert report.saved == 1
    assert len(list_pipeline_items(conn, source_id=rss_source.id)) == 1
