"""Error handling module for mediagen.

Error Response Format:
{
    "error": {
        "code": "GENERATION_NOT_FOUND",
        "message": "Generation not found"
    }
}

Usage:
    from mediagen.core.errors import GenerationNotFoundError, ForbiddenError

    raise GenerationNotFoundError()
    raise ForbiddenError("Cannot access this generation")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    GENERATION_NOT_FOUND = "GENERATION_NOT_FOUND"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_STATE = "INVALID_STATE"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    CONCURRENT_LIMIT_EXCEEDED = "CONCURRENT_LIMIT_EXCEEDED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class MediaGenError(Exception):
    """Base exception for mediagen.

    Subclasses are turned into ErrorResponse JSON by the application
    exception handler.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class UnauthorizedError(MediaGenError):
    """401 Unauthorized - Authentication required."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class ForbiddenError(MediaGenError):
    """403 Forbidden - Permission denied."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class GenerationNotFoundError(MediaGenError):
    """404 Not Found - Generation not found."""

    def __init__(self, message: str = "Generation not found") -> None:
        super().__init__(ErrorCode.GENERATION_NOT_FOUND, message, 404)


class ModelNotFoundError(MediaGenError):
    """404 Not Found - Unknown model id."""

    def __init__(self, message: str = "Model not found") -> None:
        super().__init__(ErrorCode.MODEL_NOT_FOUND, message, 404)


class ProviderNotFoundError(MediaGenError):
    """404 Not Found - Unknown or webhook-less provider."""

    def __init__(self, message: str = "Provider not found") -> None:
        super().__init__(ErrorCode.PROVIDER_NOT_FOUND, message, 404)


class InvalidRequestError(MediaGenError):
    """400 Bad Request - Request is well-formed but not acceptable."""

    def __init__(self, message: str = "Invalid request") -> None:
        super().__init__(ErrorCode.INVALID_REQUEST, message, 400)


class InvalidGenerationStateError(MediaGenError):
    """400 Bad Request - Operation not allowed in the current status."""

    def __init__(self, message: str = "Operation not allowed in current status") -> None:
        super().__init__(ErrorCode.INVALID_STATE, message, 400)


class TooManyRequestsError(MediaGenError):
    """429 Too Many Requests - Rate limit exceeded."""

    def __init__(
        self, retry_after: int, message: str = "Too many failed attempts"
    ) -> None:
        self.retry_after = retry_after
        super().__init__(ErrorCode.TOO_MANY_REQUESTS, message, 429)


class ConcurrentLimitExceededError(MediaGenError):
    """429 Too Many Requests - Too many active generations for the user."""

    def __init__(
        self, limit: int, message: str | None = None
    ) -> None:
        self.limit = limit
        super().__init__(
            ErrorCode.CONCURRENT_LIMIT_EXCEEDED,
            message or f"Maximum {limit} concurrent generations. Wait for the current ones to finish",
            429,
        )


class UpstreamUnavailableError(MediaGenError):
    """502 Bad Gateway - Generation provider unavailable."""

    def __init__(self, message: str = "Upstream service unavailable") -> None:
        super().__init__(ErrorCode.UPSTREAM_UNAVAILABLE, message, 502)
