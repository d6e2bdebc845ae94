from __future__ import annotations

import os
import re
import sqlite3
from typing import Any, Iterable

from .migrations import apply_migrations

DB_URL_ENV = "THRIPHTI_DB_URL"

# quoted literals match first so a ? inside them is kept
_PLACEHOLDER_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?")

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


class DBConn:
    """One connection API over sqlite3 and psycopg; SQL is always written with ``?``."""

    def __init__(self, conn: Any, backend: str) -> None:
        self._conn = conn
        self.backend = backend

    def execute(self, sql: str, params: Iterable[Any] | None = None):
        if self.backend == "postgres":
            sql = to_pyformat(sql)
        cursor = self._conn.cursor()
        cursor.execute(sql, tuple(params or ()))
        return cursor

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


def to_pyformat(sql: str) -> str:
    return _PLACEHOLDER_RE.sub(
        lambda match: "%s" if match.group(0) == "?" else match.group(0), sql
    )


def postgres_url() -> str | None:
    url = os.environ.get(DB_URL_ENV, "").strip()
    if url.startswith(("postgres://", "postgresql://")):
        return url
    return None


def connect_db(path: str) -> DBConn:
    """Open the configured database and bring its schema up to date.

    ``THRIPHTI_DB_URL`` pointing at PostgreSQL wins over the SQLite ``path``.
    """
    url = postgres_url()
    if url:
        try:
            import psycopg
        except ImportError as exc:  # pragma: no cover - depends on env
            raise RuntimeError("psycopg is required for PostgreSQL support") from exc
        conn = DBConn(psycopg.connect(url), "postgres")
    else:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        raw = sqlite3.connect(path, check_same_thread=False)
        for pragma in _SQLITE_PRAGMAS:
            raw.execute(pragma)
        conn = DBConn(raw, "sqlite")
    apply_migrations(conn)
    return conn
