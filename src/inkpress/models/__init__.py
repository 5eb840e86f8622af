from __future__ import annotations

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
from inkpress.models.auth import Admin
from inkpress.models.cache import (
    ArticleAccessPermit,
    ArticleViewRecord,
    CacheData,
    CacheRecord,
    VisitorData,
)
from inkpress.models.resource import (
    Resource,
    ResourceDescriptor,
    UploadResource,
    UploadResourceMeta,
    UploadResourceOptions,
)

__all__ = [
    # cache
    "CacheData",
    "CacheRecord",
    "VisitorData",
    "ArticleAccessPermit",
    "ArticleViewRecord",
    # auth
    "Admin",
    # article
    "ArticleStatus",
    "Article",
    "ArticleStats",
    "ArticleAttachment",
    "ArticleSearchParams",
    "CreateArticleInput",
    "UpdateArticleInput",
    "SearchArticleInput",
    "AttachmentDetails",
    "VisitorArticleDetails",
    "AdminArticleDetails",
    "ArticleDetails",
    "ArticleListItem",
    "ArticleList",
    # resource
    "Resource",
    "ResourceDescriptor",
    "UploadResource",
    "UploadResourceMeta",
    "UploadResourceOptions",
]
