from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any

import uvicorn

from .config import Config, ConfigError, load_config, load_sources_file
from .errors import PipelineError
from .health import health_status
from .ingest import harvest_sources, process_source
from .models import PIPELINE_STATUSES, SOURCE_TYPES
from .publish import bulk_publish
from .services.sources_service import (
    create_source,
    get_source,
    health_overview,
    import_sources,
    list_sources,
    source_to_dict,
)
from .storage import (
    bulk_update_pipeline_status,
    init_db,
    list_pipeline_items,
    pipeline_stats,
)
from .utils import configure_logging, json_dumps, log_event
from .validation import validate_feed

DEFAULT_SOURCES_PATH = "/config/sources.yml"


def _open(args: argparse.Namespace, logger: logging.Logger) -> tuple[Config, Any] | None:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return config, init_db(config.paths.state_db)


def _cmd_sources_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    sources = list_sources(conn, active_only=args.active)
    if not sources:
        log_event(
            logger,
            logging.WARNING,
            "no_sources",
            hint="Import sources with `thriphti sources import /config/sources.yml`",
        )
        return 1
    for source in sources:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=source.id,
            name=source.name,
            type=source.source_type,
            active=source.active,
            url=source.url,
            health=health_status(source),
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(sources))
    return 0


def _cmd_sources_add(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    payload = {
        "id": args.id,
        "name": args.name,
        "url": args.url,
        "source_type": args.source_type,
        "category": args.category,
        "geographic_focus": args.geographic_focus,
        "keywords": args.keywords,
        "schedule": args.schedule,
        "description": args.description,
        "active": not args.inactive,
    }
    try:
        source = create_source(conn, payload)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "source_add_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "source_added", source_id=source.id)
    return 0


def _cmd_sources_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    source = get_source(conn, args.source_id)
    if source is None:
        log_event(logger, logging.ERROR, "source_not_found", source_id=args.source_id)
        return 1
    data = source_to_dict(source)
    data["status"] = health_status(source)
    logger.info(json.dumps(data, indent=2, sort_keys=True))
    return 0


def _cmd_sources_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    sources_path = args.path or DEFAULT_SOURCES_PATH
    if not os.path.exists(sources_path):
        log_event(logger, logging.ERROR, "sources_import_error", error="no sources file found", path=sources_path)
        return 1
    try:
        entries = load_sources_file(sources_path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        return 1
    if not entries:
        log_event(logger, logging.ERROR, "sources_import_error", error="no sources found")
        return 1
    try:
        imported = import_sources(conn, entries)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "sources_imported", count=len(imported), path=sources_path)
    return 0


def _cmd_validate_feed(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    config, conn = opened
    result = validate_feed(conn, args.url, config)
    log_event(
        logger,
        logging.INFO if result.is_valid else logging.ERROR,
        "feed_validation",
        url=args.url,
        valid=result.is_valid,
        items=result.item_count,
        cached=result.cached,
        error=result.error,
    )
    for item in result.items:
        log_event(logger, logging.INFO, "feed_item", title=item.title, link=item.link)
    return 0 if result.is_valid else 1


def _cmd_process_source(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    config, conn = opened
    try:
        result = process_source(conn, args.source_id, config)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "process_source_error", source_id=args.source_id, error=str(exc))
        return 1
    log_event(
        logger,
        logging.INFO,
        "process_source_result",
        source_id=result.source_id,
        status=result.status,
        scraped=result.scraped,
        saved=result.saved,
        method=result.method,
    )
    return 0 if result.status == "ok" else 1


def _cmd_harvest(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    config, conn = opened
    report = harvest_sources(conn, config)
    for error in report.errors:
        log_event(logger, logging.ERROR, "harvest_source_error", **error)
    log_event(
        logger,
        logging.INFO,
        "harvest_result",
        sources=len(report.results),
        saved=report.saved,
        errors=len(report.errors),
    )
    return 0 if not report.errors else 2


def _cmd_pipeline_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    items = list_pipeline_items(conn, status=args.status, source_id=args.source_id, limit=args.limit)
    for item in items:
        log_event(
            logger,
            logging.INFO,
            "pipeline_item",
            item_id=item.id,
            status=item.status,
            score=item.relevance_score,
            category=item.content_type,
            title=json.dumps(item.processed_data.get("title")),
        )
    log_event(logger, logging.INFO, "pipeline_listed", count=len(items))
    return 0


def _cmd_pipeline_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    log_event(logger, logging.INFO, "pipeline_stats", **pipeline_stats(conn))
    return 0


def _cmd_pipeline_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    try:
        updated = bulk_update_pipeline_status(conn, args.item_ids, args.status)
    except PipelineError as exc:
        log_event(logger, logging.ERROR, "pipeline_status_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "pipeline_status_updated", count=len(updated), status=args.status)
    return 0


def _cmd_publish(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    config, conn = opened
    result = bulk_publish(conn, args.item_ids, config.publish)
    for failure in result.failed:
        log_event(logger, logging.ERROR, "publish_failed", item_id=failure["id"], error=failure["error"])
    log_event(
        logger,
        logging.INFO,
        "publish_result",
        published=len(result.success),
        failed=len(result.failed),
    )
    return 0 if not result.failed else 1


def _cmd_health(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    _, conn = opened
    overview = health_overview(conn)
    for source in overview["sources"]:
        log_event(
            logger,
            logging.INFO,
            "source_health",
            source_id=source["id"],
            status=source["status"],
            consecutive_failures=source["consecutive_failures"],
            success_rate=f"{source['success_rate']:.2f}",
            last_error=json_dumps(source["last_error_message"]),
        )
    log_event(logger, logging.INFO, "health_summary", **overview["summary"])
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    init_db(config.paths.state_db)
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    log_event(logger, logging.INFO, "admin_serve", host=args.host, port=args.port)
    uvicorn.run("thriphti.admin:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thriphti", description="Thriphti content pipeline CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to THRIPHTI_CONFIG_PATH or /config/config.yml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sources_parser = subparsers.add_parser("sources", help="Manage content sources")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)

    sources_list = sources_subparsers.add_parser("list", help="List sources")
    sources_list.add_argument("--active", action="store_true", help="Only active sources")
    sources_list.set_defaults(func=_cmd_sources_list)

    sources_add = sources_subparsers.add_parser("add", help="Add a source")
    sources_add.add_argument("--id", default=None, help="Source id (generated when omitted)")
    sources_add.add_argument("--name", required=True, help="Source name")
    sources_add.add_argument("--url", required=True, help="Feed or page URL")
    sources_add.add_argument(
        "--type", dest="source_type", default="rss", choices=list(SOURCE_TYPES), help="Source type"
    )
    sources_add.add_argument("--category", default=None, help="Content category")
    sources_add.add_argument("--geographic-focus", default=None, help="Area the source covers")
    sources_add.add_argument(
        "--keyword", dest="keywords", action="append", default=[], help="Keyword (repeatable)"
    )
    sources_add.add_argument("--schedule", default=None, help="Cron expression (informational)")
    sources_add.add_argument("--description", default=None, help="Free-form description")
    sources_add.add_argument("--inactive", action="store_true", help="Create the source paused")
    sources_add.set_defaults(func=_cmd_sources_add)

    sources_show = sources_subparsers.add_parser("show", help="Show a source")
    sources_show.add_argument("source_id", help="Source id")
    sources_show.set_defaults(func=_cmd_sources_show)

    sources_import = sources_subparsers.add_parser("import", help="Import sources from YAML")
    sources_import.add_argument("path", nargs="?", help="Path to sources YAML file")
    sources_import.set_defaults(func=_cmd_sources_import)

    validate_parser = subparsers.add_parser("validate-feed", help="Validate an RSS/Atom feed URL")
    validate_parser.add_argument("url", help="Feed URL")
    validate_parser.set_defaults(func=_cmd_validate_feed)

    process_parser = subparsers.add_parser("process-source", help="Ingest one source now")
    process_parser.add_argument("source_id", help="Source id")
    process_parser.set_defaults(func=_cmd_process_source)

    harvest_parser = subparsers.add_parser("harvest", help="Ingest every active source")
    harvest_parser.set_defaults(func=_cmd_harvest)

    pipeline_parser = subparsers.add_parser("pipeline", help="Review pipeline items")
    pipeline_subparsers = pipeline_parser.add_subparsers(dest="pipeline_command", required=True)

    pipeline_list = pipeline_subparsers.add_parser("list", help="List pipeline items")
    pipeline_list.add_argument("--status", choices=list(PIPELINE_STATUSES), default=None)
    pipeline_list.add_argument("--source-id", default=None)
    pipeline_list.add_argument("--limit", type=int, default=50)
    pipeline_list.set_defaults(func=_cmd_pipeline_list)

    pipeline_stats_parser = pipeline_subparsers.add_parser("stats", help="Counts per status")
    pipeline_stats_parser.set_defaults(func=_cmd_pipeline_stats)

    pipeline_status = pipeline_subparsers.add_parser("status", help="Set status on items")
    pipeline_status.add_argument("status", choices=list(PIPELINE_STATUSES))
    pipeline_status.add_argument("item_ids", nargs="+", help="Pipeline item ids")
    pipeline_status.set_defaults(func=_cmd_pipeline_status)

    publish_parser = subparsers.add_parser("publish", help="Publish processed items")
    publish_parser.add_argument("item_ids", nargs="+", help="Pipeline item ids")
    publish_parser.set_defaults(func=_cmd_publish)

    health_parser = subparsers.add_parser("health", help="Source health overview")
    health_parser.set_defaults(func=_cmd_health)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    serve_parser = subparsers.add_parser("serve", help="Run the admin API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8001)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = configure_logging("thriphti")
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
