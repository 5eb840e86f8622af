"""Unit-specific fixtures (SQLite file under tmp_path, no HTTP)."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from inkpress.cache import CacheStore
from inkpress.config import ResourceSettings
from inkpress.db import Database
from inkpress.resources import ResourceService
from inkpress.visitor import VisitorService

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
async def database(tmp_path: Path) -> Database:
    """Fresh database file; every operation opens its own connection, so no :memory:."""
    db = Database(str(tmp_path / "inkpress.db"))
    await db.init_schema()
    return db


@pytest.fixture()
def cache(database: Database) -> CacheStore:
    return CacheStore(database)


@pytest.fixture()
def visitors(cache: CacheStore) -> VisitorService:
    return VisitorService(cache, access_ttl=timedelta(hours=24))


@pytest.fixture()
def resource_settings(tmp_path: Path) -> ResourceSettings:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return ResourceSettings(
        upload_dir=str(tmp_path / "uploads"),
        upload_file_max_size=1024,
        temp_dir=str(temp_dir),
    )


@pytest.fixture()
def resources(resource_settings: ResourceSettings) -> ResourceService:
    return ResourceService(resource_settings)
