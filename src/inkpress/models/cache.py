from __future__ import annotations

from datetime import timedelta
from typing import ClassVar, Generic, Self, TypeVar

from pydantic import BaseModel

from inkpress.utils import new_id, unix_now


class CacheData(BaseModel):
    """A payload storable in the cache table.

    Subclasses set ``kind`` (namespaces ids within the shared table) and may
    override :meth:`cache_id` to derive a deterministic id from their fields.
    """

    kind: ClassVar[str]

    def cache_id(self) -> str:
        return new_id()

    def with_ttl(self, ttl: timedelta) -> CacheRecord[Self]:
        return CacheRecord.with_ttl(self, ttl)


T = TypeVar("T", bound=CacheData)


class CacheRecord(BaseModel, Generic[T]):
    """Envelope around a payload; active while ``expires_at >= now``."""

    id: str
    kind: str
    created_at: int  # unix seconds
    expires_at: int  # unix seconds
    data: T

    @classmethod
    def with_ttl(cls, data: T, ttl: timedelta) -> CacheRecord[T]:
        now = unix_now()
        return CacheRecord[type(data)](  # type: ignore[misc]
            id=data.cache_id(),
            kind=data.kind,
            created_at=now,
            expires_at=now + int(ttl.total_seconds()),
            data=data,
        )

    def is_expired(self) -> bool:
        return unix_now() > self.expires_at


class VisitorData(CacheData):
    """Anonymous visitor identity. The cache id is the visitor id itself."""

    kind: ClassVar[str] = "visitor"

    visitor_id: str

    def cache_id(self) -> str:
        return self.visitor_id


class _VisitorArticleKey(CacheData):
    visitor_id: str
    article_id: str

    def cache_id(self) -> str:
        return f"{self.visitor_id}:{self.article_id}"


class ArticleAccessPermit(_VisitorArticleKey):
    """Presence means the visitor supplied the article's password."""

    kind: ClassVar[str] = "visitor_article_access_permit"


class ArticleViewRecord(_VisitorArticleKey):
    """Presence means the visitor's view was already counted as unique."""

    kind: ClassVar[str] = "visitor_article_access_record"
