from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime

import pytest
import yaml

from thriphti.config import load_config
from thriphti.services.sources_service import create_source
from thriphti.storage import init_db

NOW = datetime(2025, 6, 14, 15, 0, tzinfo=timezone.utc)


def _write_config(tmp_path, overrides=None):
    config = {
        "app": {"name": "Thriphti Test", "timezone": "UTC"},
        "llm": {"api_key_env": "THRIPHTI_TEST_OPENAI_KEY"},
        "scrape": {"api_key_env": "THRIPHTI_TEST_FIRECRAWL_KEY"},
    }
    for key, value in (overrides or {}).items():
        config.setdefault(key, {}).update(value)
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return cfg_path


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("THRIPHTI_DB_URL", raising=False)
    monkeypatch.delenv("THRIPHTI_ADMIN_TOKEN", raising=False)
    monkeypatch.delenv("THRIPHTI_TEST_OPENAI_KEY", raising=False)
    monkeypatch.delenv("THRIPHTI_TEST_FIRECRAWL_KEY", raising=False)
    cfg_path = _write_config(tmp_path)
    monkeypatch.setenv("THRIPHTI_CONFIG_PATH", str(cfg_path))
    monkeypatch.setenv("THRIPHTI_DATA_DIR", str(tmp_path / "data"))
    return cfg_path


@pytest.fixture
def config(config_path):
    return load_config()


@pytest.fixture
def conn(config):
    conn = init_db(config.paths.state_db)
    yield conn
    conn.close()


@pytest.fixture
def rss_source(conn):
    return create_source(
        conn,
        {
            "id": "dallas-thrift-news",
            "name": "Dallas Thrift News",
            "url": "https://example.com/feed.xml",
            "source_type": "rss",
            "category": "estate_sale",
            "geographic_focus": "Dallas, Deep Ellum",
        },
    )


def rss_item(title, description, pub_date=NOW, link="https://example.com/post", category=None):
    parts = [f"<title>{title}</title>", f"<description>{description}</description>"]
    parts.append(f"<link>{link}</link>")
    if pub_date is not None:
        parts.append(f"<pubDate>{format_datetime(pub_date)}</pubDate>")
    if category:
        parts.append(f"<category>{category}</category>")
    return "<item>" + "".join(parts) + "</item>"


def rss_document(items, title="Dallas Thrift News", description="Thrifting around DFW"):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://example.com</link>"
        f"<description>{description}</description>"
        + "".join(items)
        + "</channel></rss>"
    )
