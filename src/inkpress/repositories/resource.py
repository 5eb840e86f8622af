from __future__ import annotations

from typing import TYPE_CHECKING

from inkpress.models.resource import Resource

if TYPE_CHECKING:
    from collections.abc import Sequence

    import aiosqlite

_COLUMNS = "id, name, extension, path, size, mime_type, is_public, sha256, created_at"


async def create(resource: Resource, conn: aiosqlite.Connection) -> None:
    await conn.execute(
        f"INSERT INTO resource ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            resource.id,
            resource.name,
            resource.extension,
            resource.path,
            resource.size,
            resource.mime_type,
            int(resource.is_public),
            resource.sha256,
            resource.created_at,
        ),
    )


async def remove(resource_id: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("DELETE FROM resource WHERE id = ?", (resource_id,))
    return cursor.rowcount


async def find(resource_id: str, conn: aiosqlite.Connection) -> Resource | None:
    cursor = await conn.execute(f"SELECT {_COLUMNS} FROM resource WHERE id = ?", (resource_id,))
    row = await cursor.fetchone()
    return None if row is None else Resource.model_validate(dict(row))


async def find_duplicate(sha256: str, size: int, conn: aiosqlite.Connection) -> Resource | None:
    """Most recent resource with the same content hash and size."""
    cursor = await conn.execute(
        f"SELECT {_COLUMNS} FROM resource WHERE sha256 = ? AND size = ? "
        "ORDER BY created_at DESC LIMIT 1",
        (sha256, size),
    )
    row = await cursor.fetchone()
    return None if row is None else Resource.model_validate(dict(row))


async def count_by_path(path: str, conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("SELECT COUNT(*) FROM resource WHERE path = ?", (path,))
    row = await cursor.fetchone()
    return 0 if row is None else row[0]


async def list_by_ids(ids: Sequence[str], conn: aiosqlite.Connection) -> list[Resource]:
    if not ids:
        return []
    placeholders = ", ".join("?" for _ in ids)
    cursor = await conn.execute(
        f"SELECT {_COLUMNS} FROM resource WHERE id IN ({placeholders})", tuple(ids)
    )
    rows = await cursor.fetchall()
    return [Resource.model_validate(dict(row)) for row in rows]
