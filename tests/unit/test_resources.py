"""Unit tests for inkpress.resources and upload metadata parsing."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from inkpress.errors import BadRequestError, DataTooLargeError
from inkpress.models.resource import UploadResource, UploadResourceMeta, UploadResourceOptions
from inkpress.resources import TempFileGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from inkpress.config import ResourceSettings
    from inkpress.db import Database
    from inkpress.resources import ResourceService


def _upload(
    data: bytes,
    *,
    name: str = "notes.txt",
    size: int | None = None,
    sha256: str | None = None,
    chunk_size: int = 4,
) -> UploadResource:
    meta = UploadResourceMeta(
        name=name,
        size=len(data) if size is None else size,
        mime_type="text/plain",
        sha256=sha256 or hashlib.sha256(data).hexdigest(),
    )

    async def stream() -> AsyncIterator[bytes]:
        for i in range(0, len(data), chunk_size):
            yield data[i : i + chunk_size]

    return UploadResource(meta=meta, data=stream())


def _files(directory: str) -> list[Path]:
    root = Path(directory)
    if not root.exists():
        return []
    return [p for p in root.rglob("*") if p.is_file()]


async def _resource_rows(database: Database) -> int:
    async with database.connect() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM resource")
        row = await cursor.fetchone()
    return row[0]


# ---------------------------------------------------------------------------
# Upload pipeline
# ---------------------------------------------------------------------------


class TestUpload:
    async def test_upload_stores_file_and_row(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        data = b"hello inkpress"
        async with database.connect() as conn:
            descriptor = await resources.upload_resource(_upload(data), conn)
            resource = await resources.find_resource(descriptor.resource_id, conn)

        assert descriptor.name == "notes.txt"
        assert descriptor.extension == "txt"
        assert descriptor.size == len(data)
        assert descriptor.sha256 == hashlib.sha256(data).hexdigest()
        assert descriptor.url == f"/resources/{descriptor.resource_id}"

        assert resource is not None
        assert resource.is_public is True
        path = Path(resource.path)
        assert path.read_bytes() == data
        # Sharded as <upload_dir>/<id[0:2]>/<id[2:4]>/<id>
        assert path.parent.parent.parent == Path(resource_settings.upload_dir)
        assert path.parent.name == path.name[2:4]
        assert path.parent.parent.name == path.name[:2]
        assert _files(resource_settings.temp_dir or "") == []

    async def test_upload_with_options(
        self, resources: ResourceService, database: Database
    ) -> None:
        options = UploadResourceOptions(resource_id="private-1", is_public=False)
        async with database.connect() as conn:
            descriptor = await resources.upload_resource_with_options(
                _upload(b"secret"), options, conn
            )
            resource = await resources.find_resource("private-1", conn)

        assert descriptor.resource_id == "private-1"
        assert resource is not None
        assert resource.is_public is False

    async def test_empty_upload(self, resources: ResourceService, database: Database) -> None:
        async with database.connect() as conn:
            descriptor = await resources.upload_resource(_upload(b""), conn)
        assert descriptor.size == 0

    async def test_hash_mismatch_leaves_nothing_behind(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        upload = _upload(b"tampered", sha256=hashlib.sha256(b"original").hexdigest())
        async with database.connect() as conn:
            with pytest.raises(BadRequestError, match="SHA-256"):
                await resources.upload_resource(upload, conn)

        assert await _resource_rows(database) == 0
        assert _files(resource_settings.temp_dir or "") == []
        assert _files(resource_settings.upload_dir) == []

    async def test_declared_size_over_limit_fails_before_reading(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        consumed = False

        async def stream() -> AsyncIterator[bytes]:
            nonlocal consumed
            consumed = True
            yield b"x"

        meta = UploadResourceMeta(
            name="big.bin", size=4096, mime_type="application/octet-stream", sha256="0" * 64
        )
        async with database.connect() as conn:
            with pytest.raises(DataTooLargeError) as exc_info:
                await resources.upload_resource(UploadResource(meta=meta, data=stream()), conn)

        assert exc_info.value.limit == resource_settings.upload_file_max_size
        assert consumed is False
        assert _files(resource_settings.temp_dir or "") == []

    async def test_more_data_than_declared(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        async with database.connect() as conn:
            with pytest.raises(BadRequestError, match="larger than the declared"):
                await resources.upload_resource(_upload(b"12345678", size=3), conn)
        assert _files(resource_settings.temp_dir or "") == []

    async def test_less_data_than_declared(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        async with database.connect() as conn:
            with pytest.raises(BadRequestError, match="incomplete"):
                await resources.upload_resource(_upload(b"12345", size=10), conn)
        assert _files(resource_settings.temp_dir or "") == []

    async def test_cancelled_stream_cleans_temp_file(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        async def stream() -> AsyncIterator[bytes]:
            yield b"part"
            raise asyncio.CancelledError

        meta = UploadResourceMeta(
            name="a.txt", size=8, mime_type="text/plain", sha256="0" * 64
        )
        async with database.connect() as conn:
            with pytest.raises(asyncio.CancelledError):
                await resources.upload_resource(UploadResource(meta=meta, data=stream()), conn)

        assert _files(resource_settings.temp_dir or "") == []
        assert await _resource_rows(database) == 0


class TestDeduplication:
    async def test_same_content_shares_one_file(
        self,
        resources: ResourceService,
        resource_settings: ResourceSettings,
        database: Database,
    ) -> None:
        data = b"shared bytes"
        async with database.connect() as conn:
            first = await resources.upload_resource(_upload(data, name="a.txt"), conn)
            second = await resources.upload_resource(_upload(data, name="b.txt"), conn)
            first_row = await resources.find_resource(first.resource_id, conn)
            second_row = await resources.find_resource(second.resource_id, conn)

            assert first_row is not None
            assert second_row is not None
            assert first_row.path == second_row.path
            assert len(_files(resource_settings.upload_dir)) == 1

            assert await resources.remove_resource(first.resource_id, conn) is None
            assert Path(second_row.path).exists()

            orphaned = await resources.remove_resource(second.resource_id, conn)
            assert orphaned == second_row.path
            # Unlinking waits for the caller.
            assert Path(second_row.path).exists()

        await resources.remove_files([orphaned])
        assert not Path(second_row.path).exists()

        assert await _resource_rows(database) == 0

    async def test_missing_file_is_not_reused(
        self, resources: ResourceService, database: Database
    ) -> None:
        data = b"will vanish"
        async with database.connect() as conn:
            first = await resources.upload_resource(_upload(data), conn)
            first_row = await resources.find_resource(first.resource_id, conn)
            assert first_row is not None
            Path(first_row.path).unlink()

            second = await resources.upload_resource(_upload(data), conn)
            second_row = await resources.find_resource(second.resource_id, conn)

        assert second_row is not None
        assert second_row.path != first_row.path
        assert Path(second_row.path).read_bytes() == data


class TestFindAndRemove:
    async def test_find_unknown(self, resources: ResourceService, database: Database) -> None:
        async with database.connect() as conn:
            assert await resources.find_resource("nope", conn) is None

    async def test_find_with_missing_file(
        self, resources: ResourceService, database: Database
    ) -> None:
        async with database.connect() as conn:
            descriptor = await resources.upload_resource(_upload(b"abc"), conn)
            resource = await resources.find_resource(descriptor.resource_id, conn)
            assert resource is not None
            Path(resource.path).unlink()
            assert await resources.find_resource(descriptor.resource_id, conn) is None

    async def test_remove_unknown_is_noop(
        self, resources: ResourceService, database: Database
    ) -> None:
        async with database.connect() as conn:
            assert await resources.remove_resource("nope", conn) is None

    async def test_remove_with_missing_file_still_drops_row(
        self, resources: ResourceService, database: Database
    ) -> None:
        async with database.connect() as conn:
            descriptor = await resources.upload_resource(_upload(b"abc"), conn)
            resource = await resources.find_resource(descriptor.resource_id, conn)
            assert resource is not None
            Path(resource.path).unlink()

            orphaned = await resources.remove_resource(descriptor.resource_id, conn)

        assert await _resource_rows(database) == 0
        with capture_logs() as logs:
            await resources.remove_files([orphaned])
        assert [entry["event"] for entry in logs] == ["resource_file_remove_error"]


# ---------------------------------------------------------------------------
# TempFileGuard
# ---------------------------------------------------------------------------


class TestTempFileGuard:
    async def test_exit_deletes_file(self, tmp_path: Path) -> None:
        path = tmp_path / "guarded"
        async with await TempFileGuard.create_new(str(path)):
            assert path.exists()
        assert not path.exists()

    async def test_error_exit_deletes_file(self, tmp_path: Path) -> None:
        path = tmp_path / "guarded"
        with pytest.raises(RuntimeError, match="boom"):
            async with await TempFileGuard.create_new(str(path)):
                raise RuntimeError("boom")
        assert not path.exists()

    async def test_keep_preserves_file(self, tmp_path: Path) -> None:
        path = tmp_path / "guarded"
        async with await TempFileGuard.create_new(str(path)) as guard:
            guard.keep()
        assert path.exists()

    async def test_keep_twice_fails(self, tmp_path: Path) -> None:
        guard = await TempFileGuard.create_new(str(tmp_path / "guarded"))
        guard.keep()
        with pytest.raises(RuntimeError):
            guard.keep()

    async def test_create_new_refuses_existing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "taken"
        path.write_bytes(b"keep me")
        with pytest.raises(FileExistsError):
            await TempFileGuard.create_new(str(path))
        assert path.read_bytes() == b"keep me"

    async def test_move_to(self, tmp_path: Path) -> None:
        source = tmp_path / "source"
        dest = tmp_path / "a" / "b" / "dest"
        async with await TempFileGuard.create_new(str(source)) as guard:
            source.write_bytes(b"payload")
            async with await guard.move_to(str(dest)) as placed:
                placed.keep()

        assert not source.exists()
        assert dest.read_bytes() == b"payload"

    async def test_move_to_unkept_destination_is_deleted(self, tmp_path: Path) -> None:
        source = tmp_path / "source"
        dest = tmp_path / "dest"
        async with await TempFileGuard.create_new(str(source)) as guard:
            async with await guard.move_to(str(dest)):
                assert dest.exists()
        assert not dest.exists()
        assert not source.exists()

    async def test_move_to_existing_destination_fails(self, tmp_path: Path) -> None:
        source = tmp_path / "source"
        dest = tmp_path / "dest"
        dest.write_bytes(b"occupied")
        async with await TempFileGuard.create_new(str(source)) as guard:
            with pytest.raises(FileExistsError):
                await guard.move_to(str(dest))
            assert source.exists()
        assert dest.read_bytes() == b"occupied"
        assert not source.exists()


# ---------------------------------------------------------------------------
# Upload metadata headers
# ---------------------------------------------------------------------------


class TestUploadMetaFromHeaders:
    _SHA = "AB" * 32

    def _headers(self, **overrides: str) -> dict[str, str]:
        headers = {
            "X-File-Name": "%E7%AC%94%E8%AE%B0.md",
            "X-File-Size": "128",
            "X-File-Mime-Type": "text/markdown",
            "X-File-Sha256": self._SHA,
        }
        headers.update(overrides)
        return headers

    def test_parses_headers(self) -> None:
        meta = UploadResourceMeta.from_headers(self._headers())
        assert meta.name == "笔记.md"
        assert meta.size == 128
        assert meta.mime_type == "text/markdown"
        assert meta.sha256 == "ab" * 32

    def test_missing_header(self) -> None:
        headers = self._headers()
        del headers["X-File-Sha256"]
        with pytest.raises(BadRequestError, match="x-file-sha256"):
            UploadResourceMeta.from_headers(headers)

    @pytest.mark.parametrize("size", ["-1", "abc", "1.5", ""])
    def test_invalid_size(self, size: str) -> None:
        with pytest.raises(BadRequestError):
            UploadResourceMeta.from_headers(self._headers(**{"X-File-Size": size}))

    def test_invalid_sha256(self) -> None:
        with pytest.raises(BadRequestError):
            UploadResourceMeta.from_headers(self._headers(**{"X-File-Sha256": "xyz"}))

    def test_name_not_utf8(self) -> None:
        with pytest.raises(BadRequestError, match="UTF-8"):
            UploadResourceMeta.from_headers(self._headers(**{"X-File-Name": "%FF%FE"}))

    def test_blank_name(self) -> None:
        with pytest.raises(BadRequestError):
            UploadResourceMeta.from_headers(self._headers(**{"X-File-Name": "%20"}))
