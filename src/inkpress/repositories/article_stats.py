from __future__ import annotations

from typing import TYPE_CHECKING

from inkpress.models.article import ArticleStats

if TYPE_CHECKING:
    import aiosqlite


async def create(stats: ArticleStats, conn: aiosqlite.Connection) -> None:
    await conn.execute(
        "INSERT INTO article_stats (id, article_id, pv, uv) VALUES (?, ?, ?, ?)",
        (stats.id, stats.article_id, stats.pv, stats.uv),
    )


async def remove_by_article_id(article_id: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("DELETE FROM article_stats WHERE article_id = ?", (article_id,))
    return cursor.rowcount


async def find_by_article_id(
    article_id: str, conn: aiosqlite.Connection
) -> ArticleStats | None:
    cursor = await conn.execute(
        "SELECT id, article_id, pv, uv FROM article_stats WHERE article_id = ?", (article_id,)
    )
    row = await cursor.fetchone()
    return None if row is None else ArticleStats.model_validate(dict(row))


async def increment_by_article_id(
    article_id: str, pv_add: int, uv_add: int, conn: aiosqlite.Connection
) -> int:
    """Atomically add to the counters; returns the number of rows touched."""
    cursor = await conn.execute(
        "UPDATE article_stats SET pv = pv + ?, uv = uv + ? WHERE article_id = ?",
        (pv_add, uv_add, article_id),
    )
    return cursor.rowcount
