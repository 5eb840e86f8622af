"""Unit tests for inkpress.db."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from inkpress.db import escape_like, is_unique_violation, transaction

if TYPE_CHECKING:
    from inkpress.db import Database


async def _article_stats_rows(database: Database) -> int:
    async with database.connect() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM article_stats")
        row = await cursor.fetchone()
    return row[0]


class TestSchema:
    async def test_tables_exist(self, database: Database) -> None:
        async with database.connect() as conn:
            cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            names = {row["name"] for row in await cursor.fetchall()}
        assert {"cache", "article", "article_stats", "article_attachment", "resource"} <= names

    async def test_init_is_idempotent(self, database: Database) -> None:
        await database.init_schema()

    async def test_wal_mode(self, database: Database) -> None:
        async with database.connect() as conn:
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
        assert row[0] == "wal"


class TestTransaction:
    async def test_commit(self, database: Database) -> None:
        async with database.connect() as conn, transaction(conn):
            await conn.execute(
                "INSERT INTO article_stats (id, article_id, pv, uv) VALUES ('s1', 'a1', 0, 0)"
            )
        assert await _article_stats_rows(database) == 1

    async def test_rollback_on_error(self, database: Database) -> None:
        with pytest.raises(RuntimeError):
            async with database.connect() as conn, transaction(conn):
                await conn.execute(
                    "INSERT INTO article_stats (id, article_id, pv, uv) VALUES ('s1', 'a1', 0, 0)"
                )
                raise RuntimeError("abort")
        assert await _article_stats_rows(database) == 0

    async def test_unique_violation_is_classified(self, database: Database) -> None:
        async with database.connect() as conn:
            await conn.execute(
                "INSERT INTO article_stats (id, article_id, pv, uv) VALUES ('s1', 'a1', 0, 0)"
            )
            with pytest.raises(sqlite3.IntegrityError) as exc_info:
                await conn.execute(
                    "INSERT INTO article_stats (id, article_id, pv, uv) VALUES ('s2', 'a1', 0, 0)"
                )
        assert is_unique_violation(exc_info.value)

    async def test_not_null_violation_is_not_unique(self, database: Database) -> None:
        async with database.connect() as conn:
            with pytest.raises(sqlite3.IntegrityError) as exc_info:
                await conn.execute(
                    "INSERT INTO article_stats (id, article_id, pv, uv) VALUES ('s1', NULL, 0, 0)"
                )
        assert not is_unique_violation(exc_info.value)


class TestEscapeLike:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("plain", "plain"),
            ("100%", "100\\%"),
            ("a_b", "a\\_b"),
            ("back\\slash", "back\\\\slash"),
        ],
    )
    def test_escape(self, text: str, expected: str) -> None:
        assert escape_like(text) == expected
