from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from importlib import metadata
from typing import Any, Iterator

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .config import Config, ConfigError, load_config
from .errors import (
    NetworkError,
    NotFoundError,
    PipelineError,
    UpstreamServiceError,
    ValidationError,
)
from .ingest import harvest_sources, process_source
from .models import PipelineItem
from .publish import bulk_publish, publish_item
from .relevance import preview_matches
from .services.sources_service import (
    create_source,
    delete_source,
    health_overview,
    list_sources,
    require_source,
    reset_source_errors,
    source_to_dict,
    toggle_source_active,
    update_source,
)
from .storage import (
    bulk_delete_pipeline_items,
    bulk_update_pipeline_status,
    get_pipeline_item,
    init_db,
    list_articles,
    list_events,
    list_pipeline_items,
    pipeline_stats,
    update_pipeline_status,
)
from .utils import configure_logging, log_event
from .validation import validate_feed

app = FastAPI(title="Thriphti Admin API")

logger = logging.getLogger("thriphti.admin")


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("THRIPHTI_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _get_conn() -> Iterator[Any]:
    conn = init_db(_get_config().paths.state_db)
    try:
        yield conn
    finally:
        conn.close()


def _http_error(exc: PipelineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, (UpstreamServiceError, NetworkError)):
        status = 502
    else:
        status = 500
    log_event(logger, logging.WARNING, "admin_request_failed", status=status, error=exc)
    return HTTPException(status_code=status, detail=str(exc))


class SourceRequest(BaseModel):
    id: str | None = None
    name: str | None = None
    url: str | None = None
    source_type: str | None = None
    category: str | None = None
    geographic_focus: str | None = None
    keywords: list[str] | None = None
    active: bool | None = None
    schedule: str | None = None
    description: str | None = None


class FeedRequest(BaseModel):
    url: str


class FeedPreviewRequest(BaseModel):
    url: str
    keywords: list[str] = Field(default_factory=list)
    neighborhoods: list[str] = Field(default_factory=list)


class StatusRequest(BaseModel):
    status: str


class BulkStatusRequest(BaseModel):
    ids: list[str]
    status: str


class BulkIdsRequest(BaseModel):
    ids: list[str]


@app.on_event("startup")
def _startup() -> None:
    configure_logging("thriphti.admin")


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "Thriphti Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/sources")
def sources_list(
    active: bool | None = None,
    source_type: str | None = None,
    conn: Any = Depends(_get_conn),
) -> list[dict[str, object]]:
    sources = list_sources(conn, active_only=bool(active), source_type=source_type)
    return [source_to_dict(source) for source in sources]


@app.get("/sources/health")
def sources_health(conn: Any = Depends(_get_conn)) -> dict[str, object]:
    return health_overview(conn)


@app.post("/sources", dependencies=[Depends(_require_admin_token)])
def sources_create(payload: SourceRequest, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    try:
        return source_to_dict(create_source(conn, payload.model_dump(exclude_none=True)))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@app.get("/sources/{source_id}")
def sources_read(source_id: str, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    try:
        return source_to_dict(require_source(conn, source_id))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@app.put("/sources/{source_id}", dependencies=[Depends(_require_admin_token)])
@app.patch("/sources/{source_id}", dependencies=[Depends(_require_admin_token)])
def sources_update(
    source_id: str, payload: SourceRequest, conn: Any = Depends(_get_conn)
) -> dict[str, object]:
    try:
        updated = update_source(conn, source_id, payload.model_dump(exclude_unset=True))
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return source_to_dict(updated)


@app.delete("/sources/{source_id}", dependencies=[Depends(_require_admin_token)])
def sources_delete(source_id: str, conn: Any = Depends(_get_conn)) -> dict[str, str]:
    try:
        delete_source(conn, source_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return {"status": "deleted"}


@app.post("/sources/{source_id}/toggle", dependencies=[Depends(_require_admin_token)])
def sources_toggle(source_id: str, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    try:
        return source_to_dict(toggle_source_active(conn, source_id))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@app.post("/sources/{source_id}/reset-errors", dependencies=[Depends(_require_admin_token)])
def sources_reset_errors(source_id: str, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    try:
        return source_to_dict(reset_source_errors(conn, source_id))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@app.post("/sources/{source_id}/process", dependencies=[Depends(_require_admin_token)])
def sources_process(source_id: str, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    try:
        result = process_source(conn, source_id, _get_config())
    except PipelineError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "admin_request_failed", status=500, error=exc)
        raise HTTPException(status_code=500, detail=str(exc) or exc.__class__.__name__) from exc
    return {
        "source_id": result.source_id,
        "source_name": result.source_name,
        "status": result.status,
        "scraped": result.scraped,
        "processed": result.processed,
        "saved": result.saved,
        "method": result.method,
        "error": result.error,
    }


@app.post("/harvest", dependencies=[Depends(_require_admin_token)])
def harvest(conn: Any = Depends(_get_conn)) -> dict[str, object]:
    report = harvest_sources(conn, _get_config())
    return {
        "saved": report.saved,
        "errors": report.errors,
        "results": [
            {
                "source_id": result.source_id,
                "status": result.status,
                "saved": result.saved,
                "error": result.error,
            }
            for result in report.results
        ],
    }


@app.post("/feeds/validate")
def feeds_validate(payload: FeedRequest, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    result = validate_feed(conn, payload.url, _get_config())
    return _validation_to_dict(result)


@app.post("/feeds/preview")
def feeds_preview(
    payload: FeedPreviewRequest, conn: Any = Depends(_get_conn)
) -> dict[str, object]:
    result = validate_feed(conn, payload.url, _get_config())
    matches = preview_matches(result.items, payload.keywords, payload.neighborhoods)
    return {
        "is_valid": result.is_valid,
        "error": result.error,
        "total": result.item_count,
        "matched": len(matches),
        "items": matches,
    }


@app.get("/pipeline")
def pipeline_list(
    status: str | None = None,
    source_id: str | None = None,
    limit: int | None = None,
    conn: Any = Depends(_get_conn),
) -> list[dict[str, object]]:
    try:
        items = list_pipeline_items(conn, status=status, source_id=source_id, limit=limit)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return [_item_to_dict(item) for item in items]


@app.get("/pipeline/stats")
def pipeline_stats_view(conn: Any = Depends(_get_conn)) -> dict[str, int]:
    return pipeline_stats(conn)


@app.post("/pipeline/bulk/status", dependencies=[Depends(_require_admin_token)])
def pipeline_bulk_status(
    payload: BulkStatusRequest, conn: Any = Depends(_get_conn)
) -> list[dict[str, object]]:
    try:
        items = bulk_update_pipeline_status(conn, payload.ids, payload.status)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return [_item_to_dict(item) for item in items]


@app.post("/pipeline/bulk/delete", dependencies=[Depends(_require_admin_token)])
def pipeline_bulk_delete(
    payload: BulkIdsRequest, conn: Any = Depends(_get_conn)
) -> dict[str, int]:
    try:
        deleted = bulk_delete_pipeline_items(conn, payload.ids)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/pipeline/bulk/publish", dependencies=[Depends(_require_admin_token)])
def pipeline_bulk_publish(
    payload: BulkIdsRequest, conn: Any = Depends(_get_conn)
) -> dict[str, object]:
    result = bulk_publish(conn, payload.ids, _get_config().publish)
    return {"success": result.success, "failed": result.failed}


@app.get("/pipeline/{item_id}")
def pipeline_read(item_id: str, conn: Any = Depends(_get_conn)) -> dict[str, object]:
    item = get_pipeline_item(conn, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"pipeline item not found: {item_id}")
    return _item_to_dict(item)


@app.patch("/pipeline/{item_id}/status", dependencies=[Depends(_require_admin_token)])
def pipeline_status(
    item_id: str, payload: StatusRequest, conn: Any = Depends(_get_conn)
) -> dict[str, object]:
    try:
        return _item_to_dict(update_pipeline_status(conn, item_id, payload.status))
    except PipelineError as exc:
        raise _http_error(exc) from exc


@app.post("/pipeline/{item_id}/publish", dependencies=[Depends(_require_admin_token)])
def pipeline_publish(item_id: str, conn: Any = Depends(_get_conn)) -> dict[str, str]:
    try:
        record = publish_item(conn, item_id, _get_config().publish)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return {"item_id": record.item_id, "table": record.table, "record_id": record.record_id}


@app.get("/events")
def events_list(conn: Any = Depends(_get_conn)) -> list[dict[str, object]]:
    return list_events(conn)


@app.get("/articles")
def articles_list(conn: Any = Depends(_get_conn)) -> list[dict[str, object]]:
    return list_articles(conn)


def _item_to_dict(item: PipelineItem) -> dict[str, object]:
    return {
        "id": item.id,
        "source_id": item.source_id,
        "stage": item.stage,
        "content_type": item.content_type,
        "raw_data": item.raw_data,
        "processed_data": item.processed_data,
        "relevance_score": item.relevance_score,
        "status": item.status,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


def _validation_to_dict(result) -> dict[str, object]:
    return {
        "is_valid": result.is_valid,
        "title": result.title,
        "description": result.description,
        "items": [
            {
                "title": item.title,
                "description": item.description,
                "link": item.link,
                "pub_date": item.pub_date,
                "category": item.category,
            }
            for item in result.items
        ],
        "item_count": result.item_count,
        "error": result.error,
        "last_validated": result.last_validated,
        "cached": result.cached,
    }


def _get_version() -> str:
    try:
        return metadata.version("thriphti")
    except metadata.PackageNotFoundError:
        return "0.0.0"
