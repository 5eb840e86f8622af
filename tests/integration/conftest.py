"""Integration test fixtures.

Provides a fully wired AppState on a throwaway database file and upload
directory, plus a resolved anonymous visitor.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from inkpress.config import DatabaseSettings, ResourceSettings, Settings
from inkpress.models.article import ArticleStatus, CreateArticleInput
from inkpress.models.auth import Admin
from inkpress.models.resource import UploadResource, UploadResourceMeta
from inkpress.state import AppState, create_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from pathlib import Path

    from inkpress.models.article import Article
    from inkpress.visitor import Visitor


@pytest.fixture()
async def app_state(tmp_path: Path) -> AppState:
    settings = Settings(
        database=DatabaseSettings(db_path=str(tmp_path / "data" / "inkpress.db")),
        resource=ResourceSettings(
            upload_dir=str(tmp_path / "uploads"),
            temp_dir=str(tmp_path / "tmp"),
            upload_file_max_size=1024 * 1024,
        ),
    )
    return await create_app_state(settings)


@pytest.fixture()
async def visitor(app_state: AppState) -> Visitor:
    return await app_state.visitors.resolve(None)


@pytest.fixture()
def admin() -> Admin:
    return Admin(username="owner")


@pytest.fixture()
def make_article(app_state: AppState) -> Callable[..., Awaitable[Article]]:
    async def _make(
        title: str = "Hello",
        markdown_content: str = "# Hello\n\nSome **content**.",
        *,
        status: ArticleStatus = ArticleStatus.PUBLISHED,
        password: str | None = None,
    ) -> Article:
        return await app_state.articles.create_article(
            CreateArticleInput(
                title=title,
                markdown_content=markdown_content,
                status=status,
                password=password,
            )
        )

    return _make


@pytest.fixture()
def make_upload() -> Callable[..., UploadResource]:
    def _make(
        data: bytes, name: str = "attachment.bin", sha256: str | None = None
    ) -> UploadResource:
        meta = UploadResourceMeta(
            name=name,
            size=len(data),
            mime_type="application/octet-stream",
            sha256=sha256 or hashlib.sha256(data).hexdigest(),
        )

        async def stream() -> AsyncIterator[bytes]:
            yield data

        return UploadResource(meta=meta, data=stream())

    return _make
