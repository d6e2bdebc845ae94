import pytest

from thriphti.errors import NotFoundError, ValidationError
from thriphti.models import ProcessedContent
from thriphti.storage import (
    bulk_delete_pipeline_items,
    bulk_update_pipeline_status,
    get_pipeline_item,
    list_pipeline_items,
    pipeline_stats,
    save_pipeline_item,
    update_pipeline_status,
)


def _content(title: str = "Estate sale in Highland Park", category: str = "estate_sale", score: int = 8):
    return ProcessedContent(
        title=title,
        description="Mid-century furniture, vintage jewelry, and books.",
        category=category,
        location="Highland Park, Dallas, TX",
        relevance_score=score,
        actionable_details="4821 Swiss Ave, 8am-2pm",
        date="2025-06-14",
        source_data={"title": title, "url": "https://example.com/estate"},
    )


def test_save_and_read_pipeline_item(conn, rss_source):
    item = save_pipeline_item(conn, _content(), rss_source.id)
    loaded = get_pipeline_item(conn, item.id)
    assert loaded == item
    assert loaded.status == "pending"
    assert loaded.stage == "processed"
    assert loaded.content_type == "estate_sale"
    assert loaded.relevance_score == 8
    assert loaded.raw_data["url"] == "https://example.com/estate"
    assert loaded.processed_data["title"] == "Estate sale in Highland Park"
    assert "source_data" not in loaded.processed_data


def test_list_filters_by_status_and_source(conn, rss_source):
    first = save_pipeline_item(conn, _content("First estate sale listing"), rss_source.id)
    save_pipeline_item(conn, _content("Second estate sale listing"), None)
    update_pipeline_status(conn, first.id, "processed")

    assert [item.id for item in list_pipeline_items(conn, status="processed")] == [first.id]
    assert [item.id for item in list_pipeline_items(conn, source_id=rss_source.id)] == [first.id]
    assert len(list_pipeline_items(conn)) == 2
    with pytest.raises(ValidationError):
        list_pipeline_items(conn, status="Approved")


def test_status_transitions_are_forward_only(conn):
    item = save_pipeline_item(conn, _content(), None)
    with pytest.raises(ValidationError):
        update_pipeline_status(conn, item.id, "published")

    processed = update_pipeline_status(conn, item.id, "processed")
    assert processed.status == "processed"
    with pytest.raises(ValidationError):
        update_pipeline_status(conn, item.id, "pending")

    rejected = update_pipeline_status(conn, item.id, "rejected")
    assert rejected.status == "rejected"
    with pytest.raises(ValidationError):
        update_pipeline_status(conn, item.id, "processed")


def test_update_unknown_item_raises_not_found(conn):
    with pytest.raises(NotFoundError):
        update_pipeline_status(conn, "missing", "processed")


def test_bulk_update_returns_updated_rows(conn):
    ids = [save_pipeline_item(conn, _content(f"Estate sale listing {n}"), None).id for n in range(3)]
    updated = bulk_update_pipeline_status(conn, ids, "processed")
    assert [item.id for item in updated] == ids
    assert all(item.status == "processed" for item in updated)


def test_bulk_update_is_all_or_nothing(conn):
    pending = save_pipeline_item(conn, _content("Pending estate sale"), None)
    rejected = save_pipeline_item(conn, _content("Rejected estate sale"), None)
    update_pipeline_status(conn, rejected.id, "rejected")

    with pytest.raises(ValidationError):
        bulk_update_pipeline_status(conn, [pending.id, rejected.id], "processed")
    assert get_pipeline_item(conn, pending.id).status == "pending"

    with pytest.raises(NotFoundError):
        bulk_update_pipeline_status(conn, [pending.id, "missing"], "rejected")
    assert get_pipeline_item(conn, pending.id).status == "pending"


def test_bulk_delete_and_stats(conn):
    ids = [save_pipeline_item(conn, _content(f"Estate sale listing {n}"), None).id for n in range(4)]
    update_pipeline_status(conn, ids[0], "processed")
    update_pipeline_status(conn, ids[1], "rejected")

    assert pipeline_stats(conn) == {
        "total": 4,
        "pending": 2,
        "processed": 1,
        "published": 0,
        "rejected": 1,
    }
    assert bulk_delete_pipeline_items(conn, [ids[2], ids[3], ids[3]]) == 2
    assert bulk_delete_pipeline_items(conn, []) == 0
    assert pipeline_stats(conn)["total"] == 2
