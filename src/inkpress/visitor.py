"""Anonymous visitor identities and their per-article cache records.

A visitor identity lives for ``VISITOR_TTL`` and slides forward whenever a
request arrives with less than ``VISITOR_KEEP_THRESHOLD`` left. Unlock permits
and view-dedup records are keyed ``"{visitor_id}:{article_id}"``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from http.cookies import SimpleCookie
from typing import TYPE_CHECKING

import structlog

from inkpress.cache import CacheSetMode
from inkpress.errors import InternalError
from inkpress.models.cache import (
    ArticleAccessPermit,
    ArticleViewRecord,
    CacheRecord,
    VisitorData,
)
from inkpress.utils import new_id

if TYPE_CHECKING:
    from inkpress.cache import CacheStore

log = structlog.get_logger()

VISITOR_TTL = timedelta(days=7)
VISITOR_KEEP_THRESHOLD = timedelta(days=1)
ARTICLE_VIEW_TTL = timedelta(hours=24)
VISITOR_COOKIE_KEY = "x-visitor-id"

_VISITOR_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class Visitor:
    record: CacheRecord[VisitorData]

    @property
    def visitor_id(self) -> str:
        return self.record.data.visitor_id

    @property
    def created_at(self) -> int:
        return self.record.created_at

    @property
    def expires_at(self) -> int:
        return self.record.expires_at


def visitor_cookie_header(visitor_id: str, *, secure: bool = False) -> str:
    """``Set-Cookie`` value that pins ``visitor_id`` in the browser for ``VISITOR_TTL``."""
    cookie: SimpleCookie = SimpleCookie()
    cookie[VISITOR_COOKIE_KEY] = visitor_id
    morsel = cookie[VISITOR_COOKIE_KEY]
    morsel["path"] = "/"
    morsel["expires"] = int(VISITOR_TTL.total_seconds())
    morsel["httponly"] = True
    morsel["samesite"] = "Lax"
    if secure:
        morsel["secure"] = True
    return morsel.OutputString()


class VisitorService:
    def __init__(
        self, cache: CacheStore, access_ttl: timedelta, *, cookie_secure: bool = False
    ) -> None:
        self._cache = cache
        self._access_ttl = access_ttl
        self._cookie_secure = cookie_secure

    def cookie_header(self, visitor: Visitor) -> str:
        return visitor_cookie_header(visitor.visitor_id, secure=self._cookie_secure)

    async def resolve(self, cookie_value: str | None) -> Visitor:
        """Visitor for a request, given the raw cookie value (if any)."""
        if cookie_value is None or not _VISITOR_ID_RE.match(cookie_value):
            return await self.create_and_cache()
        return await self.keep_or_create(cookie_value)

    async def create_and_cache(self) -> Visitor:
        for _ in range(_CREATE_ATTEMPTS):
            record = VisitorData(visitor_id=new_id()).with_ttl(VISITOR_TTL)
            if await self._cache.set(record, CacheSetMode.ONLY_IF_NOT_EXISTS):
                break
            log.warning("visitor_id_collision", visitor_id=record.id)
        else:
            raise InternalError(context="could not allocate a unique visitor id")
        # Drop permits left behind under the same id.
        await self._cache.batch_remove(ArticleAccessPermit, f"{record.id}:")
        log.debug("visitor_created", visitor_id=record.id)
        return Visitor(record=record)

    async def from_cache(self, visitor_id: str) -> Visitor | None:
        record = await self._cache.get(VisitorData, visitor_id)
        return None if record is None else Visitor(record=record)

    async def keep(self, visitor_id: str) -> bool:
        """Renew the visitor TTL when it is about to run out.

        Returns whether an active identity exists for ``visitor_id``.
        """
        ttl = await self._cache.get_ttl(VisitorData, visitor_id)
        if ttl is None:
            return False
        if ttl <= VISITOR_KEEP_THRESHOLD:
            return await self._cache.set_ttl(VisitorData, visitor_id, VISITOR_TTL)
        return True

    async def keep_or_create(self, visitor_id: str) -> Visitor:
        """Keep the presented identity alive, or mint a new one.

        A dead ``visitor_id`` is never reused; the new identity gets a fresh id.
        """
        if await self.keep(visitor_id):
            visitor = await self.from_cache(visitor_id)
            if visitor is not None:
                return visitor
        return await self.create_and_cache()

    async def add_article_permit(self, visitor: Visitor, article_id: str) -> None:
        permit = ArticleAccessPermit(visitor_id=visitor.visitor_id, article_id=article_id)
        await self._cache.set(permit.with_ttl(self._access_ttl), CacheSetMode.OVERWRITE)

    async def has_article_permit(self, visitor: Visitor, article_id: str) -> bool:
        permit = ArticleAccessPermit(visitor_id=visitor.visitor_id, article_id=article_id)
        return await self._cache.exists(ArticleAccessPermit, permit.cache_id())

    async def record_article_view(self, visitor: Visitor, article_id: str) -> bool:
        """Mark the article viewed by ``visitor``. True only for the first view per TTL."""
        view = ArticleViewRecord(visitor_id=visitor.visitor_id, article_id=article_id)
        return await self._cache.set(
            view.with_ttl(ARTICLE_VIEW_TTL), CacheSetMode.ONLY_IF_NOT_EXISTS
        )
