from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, field_validator

from inkpress.models.resource import ResourceDescriptor
from inkpress.pagination import Page, PageData


class ArticleStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


class Article(BaseModel):
    """Row of the ``article`` table."""

    id: str
    title: str
    excerpt: str
    markdown_content: str
    plain_content: str  # Markdown with tags and symbols stripped
    password: str | None = None
    status: ArticleStatus
    created_at: int
    updated_at: int
    published_at: int | None = None


class ArticleStats(BaseModel):
    id: str
    article_id: str
    pv: int = 0
    uv: int = 0


class ArticleAttachment(BaseModel):
    id: str
    article_id: str
    resource_id: str
    created_at: int


@dataclass(frozen=True)
class ArticleSearchParams:
    full_text: str | None = None
    status: ArticleStatus | None = None
    published_at_ge: int | None = None
    published_at_lt: int | None = None
    need_password: bool | None = None


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class _ArticleContentInput(BaseModel):
    title: str
    markdown_content: str
    password: str | None = None
    status: ArticleStatus = ArticleStatus.DRAFT

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str | None) -> str | None:
        # An empty password means "no password".
        return v or None


class CreateArticleInput(_ArticleContentInput):
    pass


class UpdateArticleInput(_ArticleContentInput):
    article_id: str


class SearchArticleInput(BaseModel):
    full_text: str | None = None
    status: ArticleStatus | None = None
    published_at_ge: int | None = None
    published_at_lt: int | None = None
    page: int | None = None
    size: int | None = None

    def trimmed_full_text(self) -> str | None:
        if self.full_text is None:
            return None
        return self.full_text.strip() or None


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


class AttachmentDetails(BaseModel):
    attachment_id: str
    article_id: str
    resource: ResourceDescriptor
    created_at: int


class VisitorArticleDetails(BaseModel):
    id: str
    title: str
    excerpt: str
    markdown_content: str
    need_password: bool
    published_at: int | None
    updated_at: int
    pv: int
    uv: int
    attachments: list[AttachmentDetails]


class AdminArticleDetails(VisitorArticleDetails):
    password: str | None
    status: ArticleStatus
    created_at: int


ArticleDetails = AdminArticleDetails | VisitorArticleDetails


class ArticleListItem(BaseModel):
    id: str
    title: str
    excerpt: str
    status: ArticleStatus
    need_password: bool
    created_at: int
    updated_at: int
    published_at: int | None

    @classmethod
    def from_article(cls, article: Article) -> ArticleListItem:
        return cls(
            id=article.id,
            title=article.title,
            excerpt=article.excerpt,
            status=article.status,
            need_password=article.password is not None,
            created_at=article.created_at,
            updated_at=article.updated_at,
            published_at=article.published_at,
        )


@dataclass(frozen=True)
class ArticleList:
    data: PageData[ArticleListItem]
    page: Page
