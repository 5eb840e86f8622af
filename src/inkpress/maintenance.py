"""Periodic housekeeping for the cache table."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiosqlite
import structlog

if TYPE_CHECKING:
    from datetime import timedelta

    from inkpress.cache import CacheStore

log = structlog.get_logger()


async def prune_expired_cache(cache: CacheStore, limit: int) -> int:
    """One sweep: delete up to ``limit`` expired cache rows."""
    removed = await cache.remove_all_expired(limit)
    log.info("cache_pruned", removed=removed)
    return removed


async def run_cache_cleanup(cache: CacheStore, interval: timedelta, limit: int) -> None:
    """Sweep every ``interval`` until cancelled. A failed sweep does not stop the loop."""
    log.info("cache_cleanup_started", interval_seconds=interval.total_seconds(), limit=limit)
    try:
        while True:
            try:
                await prune_expired_cache(cache, limit)
            except aiosqlite.Error:
                log.warning("cache_prune_error", exc_info=True)
            await asyncio.sleep(interval.total_seconds())
    except asyncio.CancelledError:
        log.info("cache_cleanup_stopped")
        raise
