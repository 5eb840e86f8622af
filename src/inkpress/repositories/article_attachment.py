from __future__ import annotations

from typing import TYPE_CHECKING

from inkpress.models.article import ArticleAttachment

if TYPE_CHECKING:
    import aiosqlite

_COLUMNS = "id, article_id, resource_id, created_at"


async def create(attachment: ArticleAttachment, conn: aiosqlite.Connection) -> None:
    await conn.execute(
        f"INSERT INTO article_attachment ({_COLUMNS}) VALUES (?, ?, ?, ?)",
        (attachment.id, attachment.article_id, attachment.resource_id, attachment.created_at),
    )


async def remove(attachment_id: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("DELETE FROM article_attachment WHERE id = ?", (attachment_id,))
    return cursor.rowcount


async def remove_by_article_id(article_id: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute(
        "DELETE FROM article_attachment WHERE article_id = ?", (article_id,)
    )
    return cursor.rowcount


async def find(attachment_id: str, conn: aiosqlite.Connection) -> ArticleAttachment | None:
    cursor = await conn.execute(
        f"SELECT {_COLUMNS} FROM article_attachment WHERE id = ?", (attachment_id,)
    )
    row = await cursor.fetchone()
    return None if row is None else ArticleAttachment.model_validate(dict(row))


async def list_by_article_id(
    article_id: str, conn: aiosqlite.Connection
) -> list[ArticleAttachment]:
    cursor = await conn.execute(
        f"SELECT {_COLUMNS} FROM article_attachment WHERE article_id = ?", (article_id,)
    )
    rows = await cursor.fetchall()
    return [ArticleAttachment.model_validate(dict(row)) for row in rows]
