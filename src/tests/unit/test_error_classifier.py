"""Tests for provider error message classification."""

import pytest

from mediagen.core.error_classifier import (
    REDACTED,
    ErrorCategory,
    classify_error_message,
    is_retryable_message,
    sanitize_payload,
    truncate,
    user_friendly_message,
)


class TestClassifyErrorMessage:
    @pytest.mark.parametrize(
        "message,category",
        [
            ("NSFW content detected", ErrorCategory.NSFW),
            ("Prediction timed out", ErrorCategory.TIMEOUT),
            ("replicate HTTP 429: Too Many Requests", ErrorCategory.RATE_LIMIT),
            ("Model is overloaded", ErrorCategory.RATE_LIMIT),
            ("Invalid API key", ErrorCategory.AUTH),
            ("Input validation failed", ErrorCategory.INVALID_INPUT),
            ("Upload failed to bucket", ErrorCategory.STORAGE),
            ("model not found", ErrorCategory.MODEL_UNAVAILABLE),
            ("CUDA out of memory", ErrorCategory.MEMORY),
            ("connection reset by peer", ErrorCategory.NETWORK),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, message: str, category: ErrorCategory) -> None:
        assert classify_error_message(message) == category

    def test_first_match_wins(self) -> None:
        """A safety rejection that also mentions a timeout is NSFW."""
        assert classify_error_message("safety check timed out") == ErrorCategory.NSFW

    @pytest.mark.parametrize("message", [None, ""])
    def test_empty_message(self, message: str | None) -> None:
        assert classify_error_message(message) is None


class TestIsRetryableMessage:
    def test_transient_categories_are_retryable(self) -> None:
        assert is_retryable_message("Request timeout") is True
        assert is_retryable_message("rate limit exceeded") is True
        assert is_retryable_message("fetch failed") is True

    def test_content_and_auth_are_not(self) -> None:
        assert is_retryable_message("NSFW content detected") is False
        assert is_retryable_message("401 Unauthorized") is False
        assert is_retryable_message(None) is False


class TestUserFriendlyMessage:
    @pytest.mark.parametrize(
        "error,expected",
        [
            ("NSFW detected", "Content blocked by safety filter. Try changing your prompt"),
            ("Request timeout", "Generation timed out. Try reducing resolution"),
            ("CUDA out of memory", "Not enough resources. Try reducing resolution"),
            ("Server overloaded", "Server overloaded. Try again in a few minutes"),
            ("invalid aspect ratio", "Invalid parameters. Check your settings"),
            (None, "Generation failed. Try a different model"),
            ("null", "Generation failed. Try a different model"),
        ],
    )
    def test_known_patterns(self, error: str | None, expected: str) -> None:
        assert user_friendly_message(error) == expected

    def test_long_or_technical_errors_are_hidden(self) -> None:
        assert user_friendly_message("x" * 151) == "An error occurred. Please try again"
        assert user_friendly_message("TypeError: undefined is not a function") == "An error occurred. Please try again"

    def test_short_plain_error_passes_through(self) -> None:
        assert user_friendly_message("Prompt too short") == "Prompt too short"


class TestSanitizePayload:
    def test_redacts_sensitive_keys_recursively(self) -> None:
        body = {
            "prompt": "a cat",
            "Authorization": "Bearer abc",
            "nested": {"api_key": "k", "items": [{"access_token": "t", "ok": 1}]},
        }

        result = sanitize_payload(body)

        assert result == {
            "prompt": "a cat",
            "Authorization": REDACTED,
            "nested": {"api_key": REDACTED, "items": [{"access_token": REDACTED, "ok": 1}]},
        }
        # Input is not mutated
        assert body["Authorization"] == "Bearer abc"

    def test_scalars_unchanged(self) -> None:
        assert sanitize_payload("text") == "text"
        assert sanitize_payload(None) is None


class TestTruncate:
    def test_truncates_with_ellipsis(self) -> None:
        assert truncate("abcdef", 3) == "abc..."

    def test_short_text_unchanged(self) -> None:
        assert truncate("abc", 3) == "abc"

    def test_empty_is_none(self) -> None:
        assert truncate("", 10) is None
        assert truncate(None, 10) is None
