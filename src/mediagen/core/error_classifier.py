"""Provider error message classification.

Providers report failures as free text. These helpers bucket the text into a
small set of categories (for api_logs, metrics and auto-retry decisions) and
turn it into something safe to show to end users.
"""

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    NSFW = "nsfw"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    INVALID_INPUT = "invalid_input"
    STORAGE = "storage"
    MODEL_UNAVAILABLE = "model_unavailable"
    MEMORY = "memory"
    NETWORK = "network"
    UNKNOWN = "unknown"
    # api_logs only (fallback notices)
    WARNING = "warning"


# Order matters: first match wins.
_PATTERNS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.NSFW, ("nsfw", "safety", "content policy", "harmful")),
    (ErrorCategory.TIMEOUT, ("timeout", "timed out", "deadline exceeded")),
    (
        ErrorCategory.RATE_LIMIT,
        ("rate limit", "too many requests", "overloaded", "overload", "429"),
    ),
    (
        ErrorCategory.AUTH,
        ("unauthorized", "forbidden", "invalid api key", "billing", "credits", "401", "403"),
    ),
    (ErrorCategory.INVALID_INPUT, ("invalid input", "invalid parameter", "validation")),
    (ErrorCategory.STORAGE, ("storage", "upload failed", "download failed", "bucket")),
    (
        ErrorCategory.MODEL_UNAVAILABLE,
        ("model not found", "not available", "404", "model is warming"),
    ),
    (ErrorCategory.MEMORY, ("out of memory", "oom", "resource exhausted")),
    (
        ErrorCategory.NETWORK,
        ("connection", "network", "socket", "econnrefused", "fetch failed"),
    ),
)

# Failures worth handing to the next provider in the chain.
RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.MODEL_UNAVAILABLE,
    ErrorCategory.MEMORY,
    ErrorCategory.NETWORK,
})

SENSITIVE_KEYS = (
    "apikey",
    "api_key",
    "token",
    "secret",
    "password",
    "authorization",
    "cookie",
    "session",
    "credentials",
    "private_key",
    "access_token",
    "refresh_token",
)

REDACTED = "[REDACTED]"


def classify_error_message(message: str | None) -> ErrorCategory | None:
    """Bucket a provider error message. Returns None for an empty message."""
    if not message:
        return None
    lowered = message.lower()
    for category, needles in _PATTERNS:
        if any(needle in lowered for needle in needles):
            return category
    return ErrorCategory.UNKNOWN


def is_retryable_message(message: str | None) -> bool:
    return classify_error_message(message) in RETRYABLE_CATEGORIES


def user_friendly_message(error: str | None) -> str:
    """Map a raw provider error to a message suitable for end users."""
    lowered = (error or "").lower()

    if "nsfw" in lowered or "safety" in lowered:
        return "Content blocked by safety filter. Try changing your prompt"
    if "timeout" in lowered:
        return "Generation timed out. Try reducing resolution"
    if "memory" in lowered or "oom" in lowered:
        return "Not enough resources. Try reducing resolution"
    if "overload" in lowered or "rate limit" in lowered:
        return "Server overloaded. Try again in a few minutes"
    if "invalid" in lowered or "validation" in lowered:
        return "Invalid parameters. Check your settings"
    if not error or error == "null":
        return "Generation failed. Try a different model"
    if len(error) > 150 or "stack" in error or "Error:" in error:
        return "An error occurred. Please try again"
    return error


def sanitize_payload(body: Any) -> Any:
    """Recursively redact values whose key looks like a credential.

    Non-dict values are returned unchanged; lists are sanitized element-wise.
    """
    if isinstance(body, dict):
        sanitized: dict[str, Any] = {}
        for key, value in body.items():
            if any(sk in str(key).lower() for sk in SENSITIVE_KEYS):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_payload(value)
        return sanitized
    if isinstance(body, list):
        return [sanitize_payload(item) for item in body]
    return body


def truncate(text: str | None, max_len: int) -> str | None:
    if not text:
        return None
    return text[:max_len] + "..." if len(text) > max_len else text
