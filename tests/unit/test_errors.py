"""Unit tests for the error envelope."""

from __future__ import annotations

import pytest

from inkpress.errors import (
    ArticleLockedError,
    BadRequestError,
    DataTooLargeError,
    ErrorCode,
    InkpressError,
    InternalError,
    NotFoundError,
)


class TestErrorEnvelope:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (BadRequestError(), ErrorCode.BAD_REQUEST),
            (NotFoundError(), ErrorCode.NOT_FOUND),
            (InternalError(), ErrorCode.INTERNAL),
            (DataTooLargeError(10), ErrorCode.DATA_TOO_LARGE),
            (ArticleLockedError("a1"), ErrorCode.ARTICLE_LOCKED),
        ],
    )
    def test_codes(self, error: InkpressError, code: ErrorCode) -> None:
        assert error.code is code
        assert error.to_dict()["error"]["code"] == code.value

    def test_default_message(self) -> None:
        assert NotFoundError().message == "Not found"

    def test_to_dict_hides_context(self) -> None:
        error = InternalError("Something broke", context="row 42 is missing")
        assert error.to_dict() == {
            "error": {"code": "INTERNAL", "message": "Something broke", "recoverable": False}
        }

    def test_log_string_includes_context_and_cause(self) -> None:
        try:
            try:
                raise KeyError("resource-1")
            except KeyError as exc:
                raise InternalError("Lookup failed", context="resource_id: resource-1") from exc
        except InternalError as error:
            text = error.to_log_string()

        assert text.startswith("INTERNAL: Lookup failed")
        assert "SOURCE: 'resource-1'" in text
        assert "CONTEXT: resource_id: resource-1" in text

    def test_article_locked_is_recoverable(self) -> None:
        error = ArticleLockedError("a1")
        assert error.recoverable is True
        assert error.to_dict()["error"]["article_id"] == "a1"

    def test_data_too_large_mentions_limit(self) -> None:
        error = DataTooLargeError(1024)
        assert error.limit == 1024
        assert "1024" in error.message

    def test_explicit_code_override(self) -> None:
        assert InkpressError("nope", code=ErrorCode.NOT_FOUND).code is ErrorCode.NOT_FOUND
