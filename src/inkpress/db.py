"""SQLite access: connections, schema and transactions.

Every connection runs in autocommit mode, so a single statement is its own
atomic unit. Multi-statement units go through :func:`transaction`, which
takes the write lock up front (``BEGIN IMMEDIATE``) and either commits or
rolls back. Concurrent writers from different connections queue on the
busy timeout instead of failing with ``database is locked``.
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

log = structlog.get_logger()

_CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS cache (
    kind        TEXT    NOT NULL,
    id          TEXT    NOT NULL,
    data        TEXT    NOT NULL,
    created_at  INTEGER NOT NULL,
    expires_at  INTEGER NOT NULL,
    PRIMARY KEY (kind, id)
)
"""

_CREATE_ARTICLE_TABLE = """
CREATE TABLE IF NOT EXISTS article (
    id                TEXT    PRIMARY KEY,
    title             TEXT    NOT NULL,
    excerpt           TEXT    NOT NULL,
    markdown_content  TEXT    NOT NULL,
    plain_content     TEXT    NOT NULL,
    password          TEXT,
    status            TEXT    NOT NULL,
    created_at        INTEGER NOT NULL,
    updated_at        INTEGER NOT NULL,
    published_at      INTEGER
)
"""

_CREATE_ARTICLE_STATS_TABLE = """
CREATE TABLE IF NOT EXISTS article_stats (
    id          TEXT    PRIMARY KEY,
    article_id  TEXT    NOT NULL UNIQUE,
    pv          INTEGER NOT NULL DEFAULT 0,
    uv          INTEGER NOT NULL DEFAULT 0
)
"""

_CREATE_ARTICLE_ATTACHMENT_TABLE = """
CREATE TABLE IF NOT EXISTS article_attachment (
    id           TEXT    PRIMARY KEY,
    article_id   TEXT    NOT NULL,
    resource_id  TEXT    NOT NULL,
    created_at   INTEGER NOT NULL
)
"""

_CREATE_RESOURCE_TABLE = """
CREATE TABLE IF NOT EXISTS resource (
    id          TEXT    PRIMARY KEY,
    name        TEXT    NOT NULL,
    extension   TEXT    NOT NULL,
    path        TEXT    NOT NULL,
    size        INTEGER NOT NULL,
    mime_type   TEXT    NOT NULL,
    is_public   INTEGER NOT NULL,
    sha256      TEXT    NOT NULL,
    created_at  INTEGER NOT NULL
)
"""

_SCHEMA = (
    _CREATE_CACHE_TABLE,
    "CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache(expires_at)",
    _CREATE_ARTICLE_TABLE,
    "CREATE INDEX IF NOT EXISTS idx_article_published ON article(published_at, updated_at)",
    _CREATE_ARTICLE_STATS_TABLE,
    _CREATE_ARTICLE_ATTACHMENT_TABLE,
    "CREATE INDEX IF NOT EXISTS idx_attachment_article ON article_attachment(article_id)",
    _CREATE_RESOURCE_TABLE,
    "CREATE INDEX IF NOT EXISTS idx_resource_hash ON resource(sha256, size)",
    "CREATE INDEX IF NOT EXISTS idx_resource_path ON resource(path)",
)

_UNIQUE_VIOLATION_CODES = frozenset(
    {sqlite3.SQLITE_CONSTRAINT_PRIMARYKEY, sqlite3.SQLITE_CONSTRAINT_UNIQUE}
)


class Database:
    """Opens configured connections to one SQLite database file."""

    def __init__(self, path: str, busy_timeout_ms: int = 5000) -> None:
        self._path = path
        self._busy_timeout = busy_timeout_ms / 1000

    @property
    def path(self) -> str:
        return self._path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(
            self._path, timeout=self._busy_timeout, isolation_level=None
        ) as conn:
            conn.row_factory = sqlite3.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn

    async def init_schema(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        if self._path != ":memory:":
            Path(self._path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        async with self.connect() as conn:
            await conn.execute("PRAGMA journal_mode = WAL")
            async with transaction(conn):
                for statement in _SCHEMA:
                    await conn.execute(statement)
        log.info("database_ready", path=self._path)


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the body in one transaction: commit on success, roll back on any error."""
    await conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        await conn.execute("ROLLBACK")
        raise
    await conn.execute("COMMIT")


def is_unique_violation(exc: BaseException) -> bool:
    return (
        isinstance(exc, sqlite3.IntegrityError)
        and getattr(exc, "sqlite_errorcode", None) in _UNIQUE_VIOLATION_CODES
    )


def escape_like(text: str) -> str:
    """Escape LIKE wildcards for use with ``ESCAPE '\\'``."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
