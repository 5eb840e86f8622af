"""Error taxonomy shared by every service.

``InkpressError`` carries a user-facing ``message`` and an optional
log-only ``context``. The HTTP layer maps ``code`` to a status and renders
``to_dict()``; ``ArticleLockedError`` is rendered as an unlock prompt rather
than an error page.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    ARTICLE_LOCKED = "ARTICLE_LOCKED"
    DATA_TOO_LARGE = "DATA_TOO_LARGE"
    INTERNAL = "INTERNAL"


_DEFAULT_MESSAGES = {
    ErrorCode.BAD_REQUEST: "Bad request",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.ARTICLE_LOCKED: "This article is password protected",
    ErrorCode.DATA_TOO_LARGE: "Data too large",
    ErrorCode.INTERNAL: "Internal server error",
}


class InkpressError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(
        self,
        message: str | None = None,
        *,
        context: str | None = None,
        recoverable: bool = False,
        code: ErrorCode | None = None,
    ) -> None:
        if code is not None:
            self.code = code
        self.message = message or _DEFAULT_MESSAGES[self.code]
        self.context = context
        self.recoverable = recoverable
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }

    def to_log_string(self) -> str:
        text = f"{self.code.value}: {self.message}"
        if self.__cause__ is not None:
            text += f" | SOURCE: {self.__cause__}"
        if self.context:
            text += f" | CONTEXT: {self.context}"
        return text


class BadRequestError(InkpressError):
    code = ErrorCode.BAD_REQUEST


class NotFoundError(InkpressError):
    code = ErrorCode.NOT_FOUND


class InternalError(InkpressError):
    code = ErrorCode.INTERNAL


class ArticleLockedError(InkpressError):
    """The visitor holds no unlock permit for a password-protected article."""

    code = ErrorCode.ARTICLE_LOCKED

    def __init__(self, article_id: str) -> None:
        super().__init__(recoverable=True, context=f"article_id: {article_id}")
        self.article_id = article_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["error"]["article_id"] = self.article_id
        return data


class DataTooLargeError(InkpressError):
    code = ErrorCode.DATA_TOO_LARGE

    def __init__(self, limit: int) -> None:
        super().__init__(f"Data exceeds the size limit of {limit} bytes")
        self.limit = limit
