"""AppState: the explicitly wired set of services an HTTP layer hands to its handlers.

Construction order matters (database before the cache store, cache store
before visitors, and so on); :func:`create_app_state` encodes it. Nothing in
the package keeps a module-level instance.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import structlog

from inkpress.articles import ArticleService
from inkpress.cache import CacheStore
from inkpress.config import Settings
from inkpress.db import Database
from inkpress.maintenance import run_cache_cleanup
from inkpress.resources import ResourceService
from inkpress.visitor import VisitorService

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    database: Database
    cache: CacheStore
    visitors: VisitorService
    resources: ResourceService
    articles: ArticleService

    def start_cache_cleanup(self) -> asyncio.Task[None]:
        """Schedule the periodic expired-cache sweep; cancel the task to stop it."""
        return asyncio.create_task(
            run_cache_cleanup(
                self.cache,
                self.settings.cache.cleanup_interval,
                self.settings.cache.cleanup_batch_limit,
            ),
            name="cache_cleanup",
        )


async def create_app_state(settings: Settings) -> AppState:
    """Create storage directories, initialise the schema and wire every service."""
    Path(settings.resource.upload_dir).expanduser().mkdir(parents=True, exist_ok=True)
    if settings.resource.temp_dir is not None:
        Path(settings.resource.temp_dir).expanduser().mkdir(parents=True, exist_ok=True)

    database = Database(
        str(Path(settings.database.db_path).expanduser()),
        busy_timeout_ms=settings.database.busy_timeout_ms,
    )
    await database.init_schema()

    cache = CacheStore(database)
    visitors = VisitorService(
        cache, settings.article.access_ttl, cookie_secure=settings.security.cookie_secure
    )
    resources = ResourceService(settings.resource)
    articles = ArticleService(
        database, visitors, resources, settings.article, settings.pagination
    )
    log.info(
        "app_state_ready",
        db_path=database.path,
        upload_dir=settings.resource.upload_dir,
    )
    return AppState(
        settings=settings,
        database=database,
        cache=cache,
        visitors=visitors,
        resources=resources,
        articles=articles,
    )
