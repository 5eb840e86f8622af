"""Content-addressed resource uploads.

An upload is streamed into a fresh temp file while being hashed, checked
against the client-declared size and SHA-256, then either deduplicated onto an
existing file with the same ``(sha256, size)`` or moved to a sharded path under
the upload directory. Every file this module creates is owned by a
:class:`TempFileGuard` until the metadata row is written, so no failure path
(including task cancellation) leaves a temp file or a half-placed file behind.

Service methods take the connection to run on so that callers can fold an
upload or removal into their own transaction.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import shutil
import tempfile
from contextlib import AsyncExitStack
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os
import structlog

from inkpress.errors import BadRequestError, DataTooLargeError
from inkpress.models.resource import (
    Resource,
    ResourceDescriptor,
    UploadResource,
    UploadResourceOptions,
)
from inkpress.repositories import resource as resource_repo
from inkpress.utils import file_extension, new_id, unix_now

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    import aiosqlite

    from inkpress.config import ResourceSettings

log = structlog.get_logger()


class TempFileGuard:
    """Owns one file path and deletes the file on exit unless :meth:`keep` was called."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._armed = True

    @classmethod
    async def create_new(cls, path: str) -> TempFileGuard:
        """Create an empty file at ``path`` (failing if one exists) and guard it."""
        async with aiofiles.open(path, "xb"):
            pass
        return cls(path)

    @property
    def path(self) -> str:
        return self._path

    def keep(self) -> None:
        """Release ownership; the file survives the guard. Allowed once."""
        if not self._armed:
            raise RuntimeError(f"guard for {self._path} is already released")
        self._armed = False

    async def discard(self) -> None:
        if not self._armed:
            return
        self._armed = False
        try:
            await aiofiles.os.remove(self._path)
        except FileNotFoundError:
            pass
        except OSError:
            log.warning("temp_file_remove_error", path=self._path, exc_info=True)

    async def move_to(self, dest: str) -> TempFileGuard:
        """Move the guarded file to ``dest`` and return a guard owning ``dest``.

        ``dest`` must not exist yet. The rename falls back to a copy across
        filesystems, in which case this guard still owns (and later deletes)
        the source.
        """
        await aiofiles.os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)
        placed = await TempFileGuard.create_new(dest)
        try:
            try:
                await aiofiles.os.replace(self._path, dest)
            except OSError:
                await asyncio.to_thread(shutil.copyfile, self._path, dest)
            else:
                self.keep()
        except BaseException:
            await placed.discard()
            raise
        return placed

    async def __aenter__(self) -> TempFileGuard:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.discard()


class ResourceService:
    def __init__(self, settings: ResourceSettings) -> None:
        self._settings = settings

    async def upload_resource(
        self, upload: UploadResource, conn: aiosqlite.Connection
    ) -> ResourceDescriptor:
        """Upload a public resource under a fresh id."""
        options = UploadResourceOptions(resource_id=new_id(), is_public=True)
        return await self.upload_resource_with_options(upload, options, conn)

    async def upload_resource_with_options(
        self,
        upload: UploadResource,
        options: UploadResourceOptions,
        conn: aiosqlite.Connection,
    ) -> ResourceDescriptor:
        meta = upload.meta
        limit = self._settings.upload_file_max_size
        if meta.size > limit:
            raise DataTooLargeError(limit)

        async with AsyncExitStack() as stack:
            temp = await stack.enter_async_context(
                await TempFileGuard.create_new(self._temp_path())
            )
            await self._write_verified(upload, temp.path)

            placed: TempFileGuard | None = None
            duplicate = await resource_repo.find_duplicate(meta.sha256, meta.size, conn)
            if duplicate is not None and await aiofiles.os.path.isfile(duplicate.path):
                path = duplicate.path
            else:
                path = self._storage_path()
                placed = await stack.enter_async_context(await temp.move_to(path))

            resource = Resource(
                id=options.resource_id,
                name=meta.name,
                extension=file_extension(meta.name),
                path=path,
                size=meta.size,
                mime_type=meta.mime_type,
                is_public=options.is_public,
                sha256=meta.sha256,
                created_at=unix_now(),
            )
            await resource_repo.create(resource, conn)
            if placed is not None:
                placed.keep()

        log.info(
            "resource_uploaded",
            resource_id=resource.id,
            size=resource.size,
            deduplicated=placed is None,
        )
        return ResourceDescriptor.from_resource(resource)

    async def find_resource(
        self, resource_id: str, conn: aiosqlite.Connection
    ) -> Resource | None:
        """Resource row whose backing file is present, else ``None``."""
        resource = await resource_repo.find(resource_id, conn)
        if resource is None:
            return None
        if not await aiofiles.os.path.isfile(resource.path):
            log.warning("resource_file_missing", resource_id=resource.id, path=resource.path)
            return None
        return resource

    async def remove_resource(
        self, resource_id: str, conn: aiosqlite.Connection
    ) -> str | None:
        """Delete the row and return its file path once no other row references it.

        The file itself is left in place; pass the returned path to
        :meth:`remove_files` after the surrounding transaction has committed.
        """
        resource = await resource_repo.find(resource_id, conn)
        if resource is None:
            return None
        await resource_repo.remove(resource.id, conn)
        if await resource_repo.count_by_path(resource.path, conn) > 0:
            return None
        return resource.path

    async def remove_files(self, paths: Iterable[str]) -> None:
        for path in paths:
            try:
                await aiofiles.os.remove(path)
            except OSError:
                log.warning("resource_file_remove_error", path=path, exc_info=True)

    async def _write_verified(self, upload: UploadResource, path: str) -> None:
        """Stream the upload into ``path``, enforcing the declared size and hash."""
        remaining = upload.meta.size
        hasher = hashlib.sha256()
        async with aiofiles.open(path, "wb") as f:
            async for chunk in upload.data:
                if len(chunk) > remaining:
                    raise BadRequestError(
                        "Uploaded data is larger than the declared file size; "
                        "check the file and upload it again"
                    )
                remaining -= len(chunk)
                await f.write(chunk)
                hasher.update(chunk)
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())

        if remaining != 0:
            raise BadRequestError(
                "Uploaded data is incomplete; the connection may have been interrupted"
            )
        if hasher.hexdigest() != upload.meta.sha256:
            raise BadRequestError(
                "SHA-256 verification failed; check the file and its declared hash"
            )

    def _storage_path(self) -> str:
        # Two-level fan-out keeps directory sizes bounded.
        name = new_id()
        return str(Path(self._settings.upload_dir).expanduser() / name[:2] / name[2:4] / name)

    def _temp_path(self) -> str:
        return str(Path(self._settings.temp_dir or tempfile.gettempdir()) / new_id())
