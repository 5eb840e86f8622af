"""TTL key/value cache on top of the ``cache`` table.

Records are addressed by ``(kind, id)``, where ``kind`` comes from the payload
type. Reads only ever see active records (``expires_at >= now``); expired rows
stay in the table until :meth:`CacheStore.remove_all_expired` sweeps them.

Storage failures (``aiosqlite.Error``, payload validation) propagate to the
caller. A lost race under ``ONLY_IF_NOT_EXISTS`` is a normal ``False`` result,
not an error: the ``(kind, id)`` primary key decides the winner.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

import aiosqlite
import structlog

from inkpress.db import escape_like, is_unique_violation, transaction
from inkpress.models.cache import CacheData, CacheRecord
from inkpress.utils import unix_now

if TYPE_CHECKING:
    from inkpress.db import Database

log = structlog.get_logger()

T = TypeVar("T", bound=CacheData)


class CacheSetMode(Enum):
    OVERWRITE = "overwrite"
    """Upsert regardless of any existing record."""
    ONLY_IF_NOT_EXISTS = "only_if_not_exists"
    """Insert only when no active record holds the key."""
    ONLY_IF_EXISTS = "only_if_exists"
    """Update only an active record."""


class CacheStore:
    """SQLite-backed TTL cache. One short-lived connection per operation."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, data_type: type[T], cache_id: str) -> CacheRecord[T] | None:
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "SELECT id, kind, data, created_at, expires_at FROM cache "
                "WHERE kind = ? AND id = ? AND expires_at >= ?",
                (data_type.kind, cache_id, unix_now()),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return CacheRecord[data_type](  # type: ignore[valid-type]
            id=row["id"],
            kind=row["kind"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            data=data_type.model_validate_json(row["data"]),
        )

    async def get_expires_at(self, data_type: type[T], cache_id: str) -> int | None:
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "SELECT expires_at FROM cache WHERE kind = ? AND id = ? AND expires_at >= ?",
                (data_type.kind, cache_id, unix_now()),
            )
            row = await cursor.fetchone()
        return None if row is None else row[0]

    async def get_ttl(self, data_type: type[T], cache_id: str) -> timedelta | None:
        """Remaining lifetime of an active record; ``None`` when absent or at zero."""
        expires_at = await self.get_expires_at(data_type, cache_id)
        if expires_at is None:
            return None
        remaining = expires_at - unix_now()
        if remaining <= 0:
            return None
        return timedelta(seconds=remaining)

    async def exists(self, data_type: type[T], cache_id: str) -> bool:
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM cache WHERE kind = ? AND id = ? AND expires_at >= ?",
                (data_type.kind, cache_id, unix_now()),
            )
            row = await cursor.fetchone()
        return row is not None and row[0] != 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set(
        self, record: CacheRecord[T], mode: CacheSetMode = CacheSetMode.OVERWRITE
    ) -> bool:
        """Write ``record`` according to ``mode``. Returns whether it was stored."""
        params = (
            record.id,
            record.kind,
            record.data.model_dump_json(),
            record.created_at,
            record.expires_at,
        )
        async with self._db.connect() as conn:
            if mode is CacheSetMode.OVERWRITE:
                cursor = await conn.execute(
                    "INSERT INTO cache (id, kind, data, created_at, expires_at) "
                    "VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT (kind, id) DO UPDATE SET "
                    "data = excluded.data, "
                    "created_at = excluded.created_at, "
                    "expires_at = excluded.expires_at",
                    params,
                )
                return cursor.rowcount == 1

            if mode is CacheSetMode.ONLY_IF_NOT_EXISTS:
                return await self._insert_if_absent(conn, params)

            cursor = await conn.execute(
                "UPDATE cache SET data = ?, created_at = ?, expires_at = ? "
                "WHERE kind = ? AND id = ? AND expires_at >= ?",
                (params[2], params[3], params[4], record.kind, record.id, unix_now()),
            )
            return cursor.rowcount == 1

    async def _insert_if_absent(
        self, conn: aiosqlite.Connection, params: tuple[str, str, str, int, int]
    ) -> bool:
        cache_id, kind = params[0], params[1]
        async with transaction(conn):
            # An expired row still owns the primary key; free it first.
            await conn.execute(
                "DELETE FROM cache WHERE kind = ? AND id = ? AND expires_at < ?",
                (kind, cache_id, unix_now()),
            )
            try:
                await conn.execute(
                    "INSERT INTO cache (id, kind, data, created_at, expires_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    params,
                )
            except aiosqlite.IntegrityError as exc:
                if not is_unique_violation(exc):
                    raise
                return False
        return True

    async def set_expires_at(self, data_type: type[T], cache_id: str, expires_at: int) -> bool:
        """Move the expiry of an active record. ``False`` when none is active."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "UPDATE cache SET expires_at = ? WHERE kind = ? AND id = ? AND expires_at >= ?",
                (expires_at, data_type.kind, cache_id, unix_now()),
            )
            return cursor.rowcount == 1

    async def set_ttl(self, data_type: type[T], cache_id: str, ttl: timedelta) -> bool:
        return await self.set_expires_at(
            data_type, cache_id, unix_now() + int(ttl.total_seconds())
        )

    async def remove(self, data_type: type[T], cache_id: str) -> None:
        async with self._db.connect() as conn:
            await conn.execute(
                "DELETE FROM cache WHERE kind = ? AND id = ?", (data_type.kind, cache_id)
            )

    async def batch_remove(self, data_type: type[T], id_prefix: str) -> int:
        """Delete every record of ``data_type`` whose id starts with ``id_prefix``."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM cache WHERE kind = ? AND id LIKE ? ESCAPE '\\'",
                (data_type.kind, escape_like(id_prefix) + "%"),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def remove_all_expired(self, limit: int) -> int:
        """Delete up to ``limit`` expired records, oldest expiry first."""
        async with self._db.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM cache WHERE rowid IN ("
                "SELECT rowid FROM cache WHERE expires_at < ? ORDER BY expires_at LIMIT ?"
                ")",
                (unix_now(), limit),
            )
            return cursor.rowcount
