"""Tests for error handling classes."""

import pytest

from mediagen.core.errors import (
    ConcurrentLimitExceededError,
    ErrorCode,
    ForbiddenError,
    GenerationNotFoundError,
    InvalidGenerationStateError,
    InvalidRequestError,
    MediaGenError,
    ModelNotFoundError,
    ProviderNotFoundError,
    TooManyRequestsError,
    UnauthorizedError,
    UpstreamUnavailableError,
)


class TestConcurrentLimitExceededError:
    """Tests for ConcurrentLimitExceededError."""

    def test_is_mediagen_error(self) -> None:
        exc = ConcurrentLimitExceededError(5)
        assert isinstance(exc, MediaGenError)

    def test_status_and_code(self) -> None:
        exc = ConcurrentLimitExceededError(5)
        assert exc.status_code == 429
        assert exc.code == ErrorCode.CONCURRENT_LIMIT_EXCEEDED

    def test_default_message_names_limit(self) -> None:
        """Default message mentions the configured limit."""
        exc = ConcurrentLimitExceededError(3)
        assert exc.limit == 3
        assert "Maximum 3 concurrent generations" in exc.message

    def test_custom_message(self) -> None:
        exc = ConcurrentLimitExceededError(3, "Slow down")
        assert exc.message == "Slow down"


class TestTooManyRequestsError:
    def test_carries_retry_after(self) -> None:
        exc = TooManyRequestsError(retry_after=42)
        assert exc.retry_after == 42
        assert exc.status_code == 429
        assert exc.code == ErrorCode.TOO_MANY_REQUESTS


class TestToResponse:
    def test_to_response_shape(self) -> None:
        """to_response() wraps code and message under "error"."""
        resp = GenerationNotFoundError().to_response()

        assert resp.model_dump() == {
            "error": {"code": "GENERATION_NOT_FOUND", "message": "Generation not found"}
        }


class TestOtherErrors:
    """Status codes and error codes for every error class."""

    @pytest.mark.parametrize(
        "exc_class,status_code,error_code",
        [
            (UnauthorizedError, 401, ErrorCode.UNAUTHORIZED),
            (ForbiddenError, 403, ErrorCode.FORBIDDEN),
            (GenerationNotFoundError, 404, ErrorCode.GENERATION_NOT_FOUND),
            (ModelNotFoundError, 404, ErrorCode.MODEL_NOT_FOUND),
            (ProviderNotFoundError, 404, ErrorCode.PROVIDER_NOT_FOUND),
            (InvalidRequestError, 400, ErrorCode.INVALID_REQUEST),
            (InvalidGenerationStateError, 400, ErrorCode.INVALID_STATE),
            (UpstreamUnavailableError, 502, ErrorCode.UPSTREAM_UNAVAILABLE),
        ],
    )
    def test_error_classes(
        self, exc_class: type[MediaGenError], status_code: int, error_code: ErrorCode
    ) -> None:
        exc = exc_class()
        assert exc.status_code == status_code
        assert exc.code == error_code
        assert str(exc) == exc.message
