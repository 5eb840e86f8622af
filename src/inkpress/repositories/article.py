from __future__ import annotations

from typing import TYPE_CHECKING, Any

from inkpress.db import escape_like
from inkpress.models.article import Article, ArticleSearchParams

if TYPE_CHECKING:
    import aiosqlite

    from inkpress.pagination import Offset

_COLUMNS = (
    "id, title, excerpt, markdown_content, plain_content, password, "
    "status, created_at, updated_at, published_at"
)


async def create(article: Article, conn: aiosqlite.Connection) -> None:
    await conn.execute(
        f"INSERT INTO article ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            article.id,
            article.title,
            article.excerpt,
            article.markdown_content,
            article.plain_content,
            article.password,
            article.status.value,
            article.created_at,
            article.updated_at,
            article.published_at,
        ),
    )


async def update(article: Article, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute(
        "UPDATE article SET "
        "title = ?, excerpt = ?, markdown_content = ?, plain_content = ?, password = ?, "
        "status = ?, created_at = ?, updated_at = ?, published_at = ? "
        "WHERE id = ?",
        (
            article.title,
            article.excerpt,
            article.markdown_content,
            article.plain_content,
            article.password,
            article.status.value,
            article.created_at,
            article.updated_at,
            article.published_at,
            article.id,
        ),
    )
    return cursor.rowcount


async def remove(article_id: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("DELETE FROM article WHERE id = ?", (article_id,))
    return cursor.rowcount


async def find(article_id: str, conn: aiosqlite.Connection) -> Article | None:
    cursor = await conn.execute(f"SELECT {_COLUMNS} FROM article WHERE id = ?", (article_id,))
    row = await cursor.fetchone()
    return None if row is None else Article.model_validate(dict(row))


async def search(
    params: ArticleSearchParams,
    offset: Offset,
    full_text_limit: int,
    conn: aiosqlite.Connection,
) -> list[Article]:
    where, args = _where_clause(params, full_text_limit)
    cursor = await conn.execute(
        f"SELECT {_COLUMNS} FROM article{where} "
        "ORDER BY published_at DESC NULLS FIRST, updated_at DESC LIMIT ? OFFSET ?",
        (*args, offset.size, offset.offset),
    )
    rows = await cursor.fetchall()
    return [Article.model_validate(dict(row)) for row in rows]


async def search_count(
    params: ArticleSearchParams, full_text_limit: int, conn: aiosqlite.Connection
) -> int:
    where, args = _where_clause(params, full_text_limit)
    cursor = await conn.execute(f"SELECT COUNT(*) FROM article{where}", args)
    row = await cursor.fetchone()
    return 0 if row is None else row[0]


def _where_clause(params: ArticleSearchParams, full_text_limit: int) -> tuple[str, list[Any]]:
    conditions: list[str] = []
    args: list[Any] = []

    full_text = params.full_text.strip() if params.full_text else ""
    if full_text:
        pattern = f"%{escape_like(full_text)}%"
        conditions.append(
            "id IN (SELECT id FROM article "
            "WHERE title LIKE ? ESCAPE '\\' OR plain_content LIKE ? ESCAPE '\\' LIMIT ?)"
        )
        args += [pattern, pattern, full_text_limit]
    if params.status is not None:
        conditions.append("status = ?")
        args.append(params.status.value)
    if params.published_at_ge is not None:
        conditions.append("published_at >= ?")
        args.append(params.published_at_ge)
    if params.published_at_lt is not None:
        conditions.append("published_at < ?")
        args.append(params.published_at_lt)
    if params.need_password is not None:
        conditions.append("password IS NOT NULL" if params.need_password else "password IS NULL")

    if not conditions:
        return "", args
    return " WHERE " + " AND ".join(conditions), args
