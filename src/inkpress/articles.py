"""Article lifecycle, search and the visitor access policy.

Visibility rules for a request without an admin:
  - Draft articles are reported as absent (``None``), exactly like a missing id.
  - A password-protected article raises ``ArticleLockedError`` until the
    visitor holds an unlock permit.
  - Each successful read counts a page view; the unique-visitor counter moves
    at most once per visitor and article per ``ARTICLE_VIEW_TTL``. Counting is
    best effort and never fails the read.

Mutations that touch several tables run in one transaction.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from inkpress.db import transaction
from inkpress.errors import (
    ArticleLockedError,
    BadRequestError,
    InternalError,
    NotFoundError,
)
from inkpress.models.article import (
    AdminArticleDetails,
    Article,
    ArticleAttachment,
    ArticleDetails,
    ArticleList,
    ArticleListItem,
    ArticleSearchParams,
    ArticleStats,
    ArticleStatus,
    AttachmentDetails,
    CreateArticleInput,
    SearchArticleInput,
    UpdateArticleInput,
    VisitorArticleDetails,
)
from inkpress.models.resource import Resource, ResourceDescriptor, UploadResourceOptions
from inkpress.pagination import OptionalPage, PageData
from inkpress.repositories import article as article_repo
from inkpress.repositories import article_attachment as attachment_repo
from inkpress.repositories import article_stats as stats_repo
from inkpress.repositories import resource as resource_repo
from inkpress.utils import new_id, unix_now

if TYPE_CHECKING:
    import aiosqlite

    from inkpress.config import ArticleSettings, PaginationSettings
    from inkpress.db import Database
    from inkpress.models.auth import Admin
    from inkpress.models.resource import UploadResource
    from inkpress.resources import ResourceService
    from inkpress.visitor import Visitor, VisitorService

log = structlog.get_logger()

_HTML_TAG_RE = re.compile(r"<[^>]+>")
# Anything but letters, digits, whitespace and CJK sentence punctuation.
_SPECIAL_SYMBOLS_RE = re.compile(r"[^\w\s，。！？：；]|_")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_markdown_content(markdown: str) -> str:
    """Plain searchable text: HTML tags and markup symbols become single spaces."""
    plain = _HTML_TAG_RE.sub(" ", markdown)
    plain = _SPECIAL_SYMBOLS_RE.sub(" ", plain)
    plain = _WHITESPACE_RE.sub(" ", plain)
    return plain.strip()


def truncate_excerpt(plain_content: str, max_size: int) -> str:
    return plain_content[:max_size]


class ArticleService:
    def __init__(
        self,
        db: Database,
        visitors: VisitorService,
        resources: ResourceService,
        article_settings: ArticleSettings,
        pagination_settings: PaginationSettings,
    ) -> None:
        self._db = db
        self._visitors = visitors
        self._resources = resources
        self._settings = article_settings
        self._pagination = pagination_settings

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------

    async def create_article(self, data: CreateArticleInput) -> Article:
        plain_content = clean_markdown_content(data.markdown_content)
        now = unix_now()
        article = Article(
            id=new_id(),
            title=data.title,
            excerpt=truncate_excerpt(plain_content, self._settings.excerpt_max_size),
            markdown_content=data.markdown_content,
            plain_content=plain_content,
            password=data.password,
            status=data.status,
            created_at=now,
            updated_at=now,
            published_at=now if data.status is ArticleStatus.PUBLISHED else None,
        )
        stats = ArticleStats(id=new_id(), article_id=article.id)
        async with self._db.connect() as conn, transaction(conn):
            await article_repo.create(article, conn)
            await stats_repo.create(stats, conn)
        log.info("article_created", article_id=article.id, status=article.status.value)
        return article

    async def update_article(self, data: UpdateArticleInput) -> Article:
        async with self._db.connect() as conn:
            article = await article_repo.find(data.article_id, conn)
            if article is None:
                raise NotFoundError("Article does not exist and cannot be edited")

            now = unix_now()
            changes: dict[str, object] = {
                "title": data.title,
                "markdown_content": data.markdown_content,
                "password": data.password,
                "status": data.status,
                "updated_at": now,
            }
            if article.markdown_content != data.markdown_content:
                plain_content = clean_markdown_content(data.markdown_content)
                changes["plain_content"] = plain_content
                changes["excerpt"] = truncate_excerpt(
                    plain_content, self._settings.excerpt_max_size
                )
            # First publication sticks; unpublishing keeps the original date.
            if article.published_at is None and data.status is ArticleStatus.PUBLISHED:
                changes["published_at"] = now

            article = article.model_copy(update=changes)
            await article_repo.update(article, conn)
        log.info("article_updated", article_id=article.id, status=article.status.value)
        return article

    async def remove_article(self, article_id: str) -> None:
        """Delete the article with its stats, attachments and their files. Missing is a no-op."""
        async with self._db.connect() as conn, transaction(conn):
            article = await article_repo.find(article_id, conn)
            if article is None:
                return
            attachments = await attachment_repo.list_by_article_id(article.id, conn)
            await article_repo.remove(article.id, conn)
            await stats_repo.remove_by_article_id(article.id, conn)
            await attachment_repo.remove_by_article_id(article.id, conn)
            # Attachment resources are private to their article.
            orphaned: list[str] = []
            for attachment in attachments:
                path = await self._resources.remove_resource(attachment.resource_id, conn)
                if path is not None:
                    orphaned.append(path)
        await self._resources.remove_files(orphaned)
        log.info("article_removed", article_id=article_id, attachments=len(attachments))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search_articles(self, admin: Admin | None, query: SearchArticleInput) -> ArticleList:
        page = (
            OptionalPage(page=query.page, size=query.size)
            .with_defaults(self._pagination.default_page, self._pagination.default_size)
            .validate(
                range(self._pagination.page_min, self._pagination.page_max),
                self._pagination.allowed_sizes,
            )
        )
        offset = page.to_offset()

        full_text = query.trimmed_full_text()
        params = ArticleSearchParams(
            full_text=full_text,
            status=query.status if admin is not None else ArticleStatus.PUBLISHED,
            published_at_ge=query.published_at_ge,
            published_at_lt=query.published_at_lt,
            # Content search must not reveal text of locked articles.
            need_password=False if full_text is not None and admin is None else None,
        )
        limit = self._settings.full_text_search_limit
        async with self._db.connect() as conn:
            articles = await article_repo.search(params, offset, limit, conn)
            total = await article_repo.search_count(params, limit, conn)

        items = [ArticleListItem.from_article(article) for article in articles]
        return ArticleList(data=PageData.from_items(items).with_total(total), page=page)

    async def get_article(
        self,
        admin: Admin | None,
        visitor: Visitor,
        article_id: str,
        *,
        ignore_status: bool = False,
    ) -> ArticleDetails | None:
        """Article details, or ``None`` when the article is not visible to the caller.

        Raises:
            ArticleLockedError: Password-protected and ``visitor`` holds no permit.
            InternalError: The stats row or an attachment's resource row is missing.
        """
        async with self._db.connect() as conn:
            article = await article_repo.find(article_id, conn)
            if article is None:
                return None
            if admin is None and not ignore_status and article.status is ArticleStatus.DRAFT:
                return None
            if admin is None and article.password is not None:
                await self._ensure_permit(visitor, article.id)

            attachments = await self._list_attachments(article.id, conn)
            stats = await stats_repo.find_by_article_id(article.id, conn)
            if stats is None:
                raise InternalError(
                    "Failed to load article statistics",
                    context=f"missing article_stats row, article_id: {article.id}",
                )

        if admin is None:
            try:
                await self._record_view(visitor, article.id)
            except Exception:
                log.error(
                    "article_view_record_error",
                    article_id=article.id,
                    visitor_id=visitor.visitor_id,
                    exc_info=True,
                )

        fields = {
            "id": article.id,
            "title": article.title,
            "excerpt": article.excerpt,
            "markdown_content": article.markdown_content,
            "need_password": article.password is not None,
            "published_at": article.published_at,
            "updated_at": article.updated_at,
            "pv": stats.pv,
            "uv": stats.uv,
            "attachments": attachments,
        }
        if admin is not None:
            return AdminArticleDetails(
                **fields,
                password=article.password,
                status=article.status,
                created_at=article.created_at,
            )
        return VisitorArticleDetails(**fields)

    async def unlock_article(self, visitor: Visitor, article_id: str, password: str) -> None:
        async with self._db.connect() as conn:
            article = await article_repo.find(article_id, conn)
        if article is None or article.status is ArticleStatus.DRAFT:
            raise NotFoundError("Article does not exist")
        if article.password is None:
            raise BadRequestError("This article does not require a password")
        if password != article.password:
            raise BadRequestError("Incorrect article password")
        await self._visitors.add_article_permit(visitor, article.id)
        log.info("article_unlocked", article_id=article.id, visitor_id=visitor.visitor_id)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def upload_attachment(
        self, article_id: str, upload: UploadResource
    ) -> AttachmentDetails:
        async with self._db.connect() as conn, transaction(conn):
            article = await article_repo.find(article_id, conn)
            if article is None:
                raise NotFoundError("Article does not exist; cannot upload attachment")

            attachment = ArticleAttachment(
                id=new_id(),
                article_id=article.id,
                resource_id=new_id(),
                created_at=unix_now(),
            )
            await attachment_repo.create(attachment, conn)
            options = UploadResourceOptions(resource_id=attachment.resource_id, is_public=False)
            descriptor = await self._resources.upload_resource_with_options(
                upload, options, conn
            )
        log.info("attachment_uploaded", article_id=article.id, attachment_id=attachment.id)
        return AttachmentDetails(
            attachment_id=attachment.id,
            article_id=attachment.article_id,
            resource=descriptor,
            created_at=attachment.created_at,
        )

    async def remove_attachment(self, article_id: str, attachment_id: str) -> None:
        async with self._db.connect() as conn, transaction(conn):
            attachment = await attachment_repo.find(attachment_id, conn)
            if attachment is None:
                return
            if attachment.article_id != article_id:
                raise BadRequestError("Attachment does not belong to this article")
            await attachment_repo.remove(attachment.id, conn)
            orphaned = await self._resources.remove_resource(attachment.resource_id, conn)
        if orphaned is not None:
            await self._resources.remove_files([orphaned])
        log.info("attachment_removed", article_id=article_id, attachment_id=attachment_id)

    async def download_attachment(
        self,
        admin: Admin | None,
        visitor: Visitor,
        article_id: str,
        attachment_id: str,
    ) -> Resource | None:
        """Resource backing an attachment.

        ``None`` when the attachment is not this article's, or the article is a
        draft and the caller is not an admin.
        """
        async with self._db.connect() as conn:
            attachment = await attachment_repo.find(attachment_id, conn)
            if attachment is None or attachment.article_id != article_id:
                return None
            article = await article_repo.find(article_id, conn)
            if article is None:
                raise InternalError(
                    "The article of this attachment does not exist",
                    context=f"attachment_id: {attachment.id}, article_id: {attachment.article_id}",
                )
            if admin is None and article.status is ArticleStatus.DRAFT:
                return None
            if admin is None and article.password is not None:
                await self._ensure_permit(visitor, article.id)
            resource = await resource_repo.find(attachment.resource_id, conn)
        if resource is None:
            raise InternalError(
                "The resource of this attachment does not exist",
                context=(
                    f"article_id: {attachment.article_id}, attachment_id: {attachment.id}, "
                    f"resource_id: {attachment.resource_id}"
                ),
            )
        return resource

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_permit(self, visitor: Visitor, article_id: str) -> None:
        if not await self._visitors.has_article_permit(visitor, article_id):
            raise ArticleLockedError(article_id)

    async def _record_view(self, visitor: Visitor, article_id: str) -> None:
        unique = await self._visitors.record_article_view(visitor, article_id)
        async with self._db.connect() as conn:
            await stats_repo.increment_by_article_id(article_id, 1, 1 if unique else 0, conn)

    async def _list_attachments(
        self, article_id: str, conn: aiosqlite.Connection
    ) -> list[AttachmentDetails]:
        """Attachments joined to their resources, newest first."""
        attachments = await attachment_repo.list_by_article_id(article_id, conn)
        resources = await resource_repo.list_by_ids(
            [attachment.resource_id for attachment in attachments], conn
        )
        by_id = {resource.id: resource for resource in resources}

        details: list[AttachmentDetails] = []
        for attachment in attachments:
            resource = by_id.get(attachment.resource_id)
            if resource is None:
                raise InternalError(
                    "The resource of this attachment does not exist",
                    context=(
                        f"article_id: {article_id}, attachment_id: {attachment.id}, "
                        f"resource_id: {attachment.resource_id}"
                    ),
                )
            details.append(
                AttachmentDetails(
                    attachment_id=attachment.id,
                    article_id=attachment.article_id,
                    resource=ResourceDescriptor.from_resource(resource),
                    created_at=attachment.created_at,
                )
            )
        details.sort(key=lambda d: d.attachment_id)
        details.sort(key=lambda d: d.created_at, reverse=True)
        return details
