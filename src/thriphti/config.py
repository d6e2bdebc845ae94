from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str
    accept: str


@dataclass(frozen=True)
class FeedsConfig:
    max_items: int
    max_age_days: int
    min_title_length: int
    min_description_length: int
    cache_ttl_minutes: int
    default_location: str


@dataclass(frozen=True)
class LlmConfig:
    enabled: bool
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: int
    api_key_env: str

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class ScrapeConfig:
    base_url: str
    api_key_env: str
    timeout_seconds: int

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class PublishConfig:
    author: str
    default_start_time: str
    default_end_time: str
    excerpt_length: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    http: HttpConfig
    feeds: FeedsConfig
    llm: LlmConfig
    scrape: ScrapeConfig
    publish: PublishConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "Thriphti",
        "timezone": "America/Chicago",
    },
    "paths": {
        "data_dir": "/data",
        "state_db": "/data/thriphti.sqlite3",
    },
    "http": {
        "timeout_seconds": 10,
        "user_agent": "Thriphti RSS Validator/1.0",
        "accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
    },
    "feeds": {
        "max_items": 10,
        "max_age_days": 30,
        "min_title_length": 10,
        "min_description_length": 20,
        "cache_ttl_minutes": 60,
        "default_location": "Dallas, TX",
    },
    "llm": {
        "enabled": True,
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "temperature": 0.2,
        "max_tokens": 2000,
        "timeout_seconds": 30,
        "api_key_env": "OPENAI_API_KEY",
    },
    "scrape": {
        "base_url": "https://api.firecrawl.dev/v1",
        "api_key_env": "FIRECRAWL_API_KEY",
        "timeout_seconds": 30,
    },
    "publish": {
        "author": "Thriphti Editorial",
        "default_start_time": "09:00",
        "default_end_time": "17:00",
        "excerpt_length": 200,
    },
}

DEFAULT_CONFIG_PATH = "/config/config.yml"


def load_config(path: str | None = None) -> Config:
    explicit = path or os.environ.get("THRIPHTI_CONFIG_PATH")
    cfg_path = explicit or DEFAULT_CONFIG_PATH
    overrides: dict[str, Any] = {}
    if os.path.exists(cfg_path):
        overrides = _read_yaml_mapping(cfg_path)
    elif explicit:
        raise ConfigError(f"config file not found: {cfg_path}")
    cfg = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), overrides)
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def load_sources_file(path: str) -> list[dict[str, Any]]:
    if not os.path.exists(path):
        raise ConfigError(f"sources file not found: {path}")
    data = _read_yaml_mapping(path)
    sources = data.get("sources")
    if not isinstance(sources, list):
        raise ConfigError("sources file must contain a 'sources' list")
    for index, source in enumerate(sources):
        if not isinstance(source, dict):
            raise ConfigError(f"sources[{index}] must be an object")
    return sources


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def _read_yaml_mapping(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    data_dir = os.environ.get("THRIPHTI_DATA_DIR")
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
        cfg["paths"]["state_db"] = os.path.join(data_dir, "thriphti.sqlite3")


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg["app"]
    paths_cfg = cfg["paths"]
    http_cfg = cfg["http"]
    feeds_cfg = cfg["feeds"]
    llm_cfg = cfg["llm"]
    scrape_cfg = cfg["scrape"]
    publish_cfg = cfg["publish"]

    return Config(
        app=AppConfig(name=str(app_cfg["name"]), timezone=str(app_cfg["timezone"])),
        paths=PathsConfig(
            data_dir=str(paths_cfg["data_dir"]),
            state_db=str(paths_cfg["state_db"]),
        ),
        http=HttpConfig(
            timeout_seconds=int(http_cfg["timeout_seconds"]),
            user_agent=str(http_cfg["user_agent"]),
            accept=str(http_cfg["accept"]),
        ),
        feeds=FeedsConfig(
            max_items=int(feeds_cfg["max_items"]),
            max_age_days=int(feeds_cfg["max_age_days"]),
            min_title_length=int(feeds_cfg["min_title_length"]),
            min_description_length=int(feeds_cfg["min_description_length"]),
            cache_ttl_minutes=int(feeds_cfg["cache_ttl_minutes"]),
            default_location=str(feeds_cfg["default_location"]),
        ),
        llm=LlmConfig(
            enabled=bool(llm_cfg["enabled"]),
            base_url=str(llm_cfg["base_url"]),
            model=str(llm_cfg["model"]),
            temperature=float(llm_cfg["temperature"]),
            max_tokens=int(llm_cfg["max_tokens"]),
            timeout_seconds=int(llm_cfg["timeout_seconds"]),
            api_key_env=str(llm_cfg["api_key_env"]),
        ),
        scrape=ScrapeConfig(
            base_url=str(scrape_cfg["base_url"]),
            api_key_env=str(scrape_cfg["api_key_env"]),
            timeout_seconds=int(scrape_cfg["timeout_seconds"]),
        ),
        publish=PublishConfig(
            author=str(publish_cfg["author"]),
            default_start_time=str(publish_cfg["default_start_time"]),
            default_end_time=str(publish_cfg["default_end_time"]),
            excerpt_length=int(publish_cfg["excerpt_length"]),
        ),
    )
