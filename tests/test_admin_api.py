import pytest
from fastapi.testclient import TestClient

from conftest import rss_document, rss_item
from thriphti import admin, validation
from thriphti.admin import app
from thriphti.config import load_config
from thriphti.errors import FetchError
from thriphti.fetcher import FetchResult
from thriphti.models import ProcessedContent
from thriphti.storage import init_db, save_pipeline_item

SOURCE = {
    "id": "dallas-estate-sales",
    "name": "Dallas Estate Sales",
    "url": "https://example.com/estate.xml",
    "source_type": "rss",
    "category": "estate_sale",
}


@pytest.fixture
def client(config_path):
    return TestClient(app)


def _seed_item(title="Estate sale in Lakewood", category="estate_sale", status="processed"):
    conn = init_db(load_config().paths.state_db)
    try:
        item = save_pipeline_item(
            conn,
            ProcessedContent(
                title=title,
                description="Antique dressers and vintage dishes.",
                category=category,
                location="Lakewood, Dallas, TX",
                relevance_score=9,
                actionable_details="Sat 8am-1pm, free parking",
                date="2025-06-21",
            ),
            None,
            status=status,
        )
    finally:
        conn.close()
    return item.id


def test_health_and_root(client):
    assert client.get("/").json() == {"service": "Thriphti Admin API"}
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["version"]


def test_sources_crud(client):
    created = client.post("/sources", json=SOURCE)
    assert created.status_code == 200
    assert created.json()["id"] == SOURCE["id"]

    listed = client.get("/sources").json()
    assert [source["id"] for source in listed] == [SOURCE["id"]]

    patched = client.patch(f"/sources/{SOURCE['id']}", json={"name": "Estate Sales of Dallas"})
    assert patched.status_code == 200
    assert patched.json()["name"] == "Estate Sales of Dallas"
    assert patched.json()["url"] == SOURCE["url"]

    toggled = client.post(f"/sources/{SOURCE['id']}/toggle")
    assert toggled.json()["active"] is False
    assert client.get("/sources", params={"active": True}).json() == []

    health = client.get("/sources/health").json()
    assert health["summary"]["inactive"] == 1
    assert health["sources"][0]["status"] == "inactive"

    assert client.delete(f"/sources/{SOURCE['id']}").json() == {"status": "deleted"}
    assert client.get(f"/sources/{SOURCE['id']}").status_code == 404


def test_source_validation_errors(client):
    response = client.post("/sources", json={"name": "No url"})
    assert response.status_code == 400
    assert "url is required" in response.json()["detail"]

    response = client.post("/sources", json={**SOURCE, "source_type": "fax"})
    assert response.status_code == 400

    client.post("/sources", json=SOURCE)
    assert client.post("/sources", json=SOURCE).status_code == 400
    assert client.post("/sources/missing/reset-errors").status_code == 404


def test_admin_token_required_for_mutations(client, monkeypatch):
    monkeypatch.setenv("THRIPHTI_ADMIN_TOKEN", "secret")
    assert client.post("/sources", json=SOURCE).status_code == 401
    assert client.post("/sources", json=SOURCE, headers={"X-Admin-Token": "wrong"}).status_code == 401
    response = client.post("/sources", json=SOURCE, headers={"X-Admin-Token": "secret"})
    assert response.status_code == 200
    assert client.get("/sources").status_code == 200


def test_process_unimplemented_source(client):
    client.post("/sources", json={**SOURCE, "id": "email-digest", "source_type": "email"})
    response = client.post("/sources/email-digest/process")
    assert response.status_code == 200
    assert response.json()["status"] == "not_implemented"
    assert client.post("/sources/missing/process").status_code == 404


def test_pipeline_review_and_publish(client):
    event_id = _seed_item()
    article_id = _seed_item(title="Guide to Dallas resale shops", category="tips")
    pending_id = _seed_item(title="Garage sale in Garland", category="garage_sale", status="pending")

    stats = client.get("/pipeline/stats").json()
    assert stats == {"total": 3, "pending": 1, "processed": 2, "published": 0, "rejected": 0}

    processed = client.get("/pipeline", params={"status": "processed"}).json()
    assert {item["id"] for item in processed} == {event_id, article_id}
    assert client.get("/pipeline", params={"status": "archived"}).status_code == 400

    published = client.post(f"/pipeline/{event_id}/publish")
    assert published.status_code == 200
    assert published.json()["table"] == "events"
    event = client.get("/events").json()[0]
    assert event["neighborhood"] == "Lakewood"
    assert event["price_range"] == "free"

    assert client.post(f"/pipeline/{event_id}/publish").status_code == 400
    assert client.post(f"/pipeline/{pending_id}/publish").status_code == 400
    assert client.post("/pipeline/missing/publish").status_code == 404

    bulk = client.post("/pipeline/bulk/publish", json={"ids": [article_id, pending_id]}).json()
    assert bulk["success"] == [article_id]
    assert [failure["id"] for failure in bulk["failed"]] == [pending_id]
    assert client.get("/articles").json()[0]["category"] == "tips"


def test_pipeline_status_updates(client):
    first = _seed_item(status="pending")
    second = _seed_item(title="Flea market at Fair Park", category="flea_market", status="pending")

    response = client.patch(f"/pipeline/{first}/status", json={"status": "rejected"})
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert client.patch(f"/pipeline/{first}/status", json={"status": "pending"}).status_code == 400
    assert client.patch("/pipeline/missing/status", json={"status": "processed"}).status_code == 404

    bulk = client.post("/pipeline/bulk/status", json={"ids": [second], "status": "processed"})
    assert [item["status"] for item in bulk.json()] == ["processed"]
    assert client.get(f"/pipeline/{second}").json()["status"] == "processed"

    deleted = client.post("/pipeline/bulk/delete", json={"ids": [first, second, "missing"]})
    assert deleted.json() == {"deleted": 2}
    assert client.get(f"/pipeline/{first}").status_code == 404


def test_feed_validate_and_preview(client, monkeypatch):
    document = rss_document(
        [
            rss_item("Estate sale in Bishop Arts", "Vintage clothing and records, all weekend.", pub_date=None),
            rss_item("Weekend weather forecast", "Sunny skies across North Texas this weekend.", pub_date=None),
        ]
    )
    calls = []

    def fake_fetch(url, http_config):
        calls.append(url)
        return FetchResult(url=url, status=200, content=document.encode("utf-8"), content_type="text/xml")

    monkeypatch.setattr(validation, "fetch_feed", fake_fetch)

    first = client.post("/feeds/validate", json={"url": "https://example.com/feed.xml"}).json()
    assert first["is_valid"] is True
    assert first["title"] == "Dallas Thrift News"
    assert first["item_count"] == 2
    assert first["cached"] is False

    second = client.post("/feeds/validate", json={"url": "https://example.com/feed.xml"}).json()
    assert second["cached"] is True
    assert calls == ["https://example.com/feed.xml"]

    preview = client.post(
        "/feeds/preview",
        json={
            "url": "https://example.com/feed.xml",
            "keywords": ["estate sale", "vintage"],
            "neighborhoods": ["Bishop Arts"],
        },
    ).json()
    assert preview["total"] == 2
    assert preview["matched"] == 1
    assert preview["items"][0]["relevance_score"] == 5
    assert preview["items"][0]["matched_keywords"] == ["estate sale", "vintage", "Bishop Arts"]


def test_feed_validate_reports_fetch_errors(client, monkeypatch):
    def failing_fetch(url, http_config):
        raise FetchError(404, "HTTP 404: Not Found")

    monkeypatch.setattr(validation, "fetch_feed", failing_fetch)
    body = client.post("/feeds/validate", json={"url": "https://example.com/missing.xml"}).json()
    assert body["is_valid"] is False
    assert body["error"] == "HTTP 404: Not Found. The RSS feed URL returned an error."

    body = client.post("/feeds/validate", json={"url": "ftp://example.com/feed"}).json()
    assert body["is_valid"] is False
    assert "HTTP or HTTPS" in body["error"]


def test_process_reports_unexpected_errors(client, monkeypatch):
    client.post("/sources", json=SOURCE)

    def broken_process(conn, source_id, config):
        raise RuntimeError("scraper returned truncated chunked body")

    monkeypatch.setattr(admin, "process_source", broken_process)
    response = client.post(f"/sources/{SOURCE['id']}/process")
    assert response.status_code == 500
    assert response.json()["detail"] == "scraper returned truncated chunked body"
