from __future__ import annotations

import re
from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass
from urllib.parse import unquote

from pydantic import BaseModel, ValidationError, computed_field, field_validator

from inkpress.errors import BadRequestError

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")

HEADER_FILE_NAME = "x-file-name"
HEADER_FILE_SIZE = "x-file-size"
HEADER_FILE_MIME_TYPE = "x-file-mime-type"
HEADER_FILE_SHA256 = "x-file-sha256"


class Resource(BaseModel):
    """Row of the ``resource`` table. Several rows may share one ``path``."""

    id: str
    name: str
    extension: str
    path: str
    size: int
    mime_type: str
    is_public: bool
    sha256: str
    created_at: int


class UploadResourceMeta(BaseModel):
    """Client-declared facts about an upload, verified while streaming."""

    name: str
    size: int
    mime_type: str
    sha256: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("file name must not be empty")
        if len(v) > 255:
            raise ValueError("file name must not exceed 255 characters")
        return v

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: int) -> int:
        if v < 0:
            raise ValueError("file size must be >= 0")
        return v

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("mime type must not be empty")
        return v

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str) -> str:
        v = v.strip().lower()
        if not _SHA256_RE.match(v):
            raise ValueError("sha256 must be 64 hexadecimal characters")
        return v

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> UploadResourceMeta:
        """Read the ``x-file-*`` request headers. The file name is percent-encoded UTF-8."""
        lowered = {key.lower(): value for key, value in headers.items()}
        values: dict[str, str] = {}
        for field, header in (
            ("name", HEADER_FILE_NAME),
            ("size", HEADER_FILE_SIZE),
            ("mime_type", HEADER_FILE_MIME_TYPE),
            ("sha256", HEADER_FILE_SHA256),
        ):
            value = lowered.get(header)
            if value is None:
                raise BadRequestError(f"Missing request header: {header}")
            values[field] = value
        try:
            values["name"] = unquote(values["name"], errors="strict")
        except UnicodeDecodeError as exc:
            raise BadRequestError(
                "File name must be UTF-8 encoded and then percent-encoded"
            ) from exc
        if not values["size"].strip().isdigit():
            raise BadRequestError(f"Invalid {HEADER_FILE_SIZE} header: {values['size']!r}")
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            message = "; ".join(error["msg"] for error in exc.errors())
            raise BadRequestError(f"Invalid upload metadata: {message}") from exc


class UploadResourceOptions(BaseModel):
    resource_id: str
    is_public: bool


@dataclass
class UploadResource:
    meta: UploadResourceMeta
    data: AsyncIterable[bytes]


class ResourceDescriptor(BaseModel):
    """Public view of a resource, as returned to API clients."""

    resource_id: str
    name: str
    extension: str
    size: int
    mime_type: str
    sha256: str
    created_at: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def url(self) -> str:
        return f"/resources/{self.resource_id}"

    @classmethod
    def from_resource(cls, resource: Resource) -> ResourceDescriptor:
        return cls(
            resource_id=resource.id,
            name=resource.name,
            extension=resource.extension,
            size=resource.size,
            mime_type=resource.mime_type,
            sha256=resource.sha256,
            created_at=resource.created_at,
        )
