"""Tests for provider output parsing."""

import pytest

from mediagen.providers.media import (
    FAL_MEDIA_HOSTS,
    extract_fal_media_urls,
    extract_replicate_media_urls,
    extract_text_output,
    is_media_url,
    media_type_info,
)


class TestIsMediaUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/out.png",
            "https://example.com/video.MP4?sig=1",
            "https://replicate.delivery/xezq/abc/output",
        ],
    )
    def test_media_urls(self, url: str) -> None:
        assert is_media_url(url) is True

    @pytest.mark.parametrize(
        "value",
        [None, "", 42, "ftp://example.com/a.png", "https://example.com/page", "not a url"],
    )
    def test_non_media(self, value) -> None:
        assert is_media_url(value) is False

    def test_data_uri_only_when_allowed(self) -> None:
        uri = "data:image/png;base64,AAAA"
        assert is_media_url(uri) is False
        assert is_media_url(uri, allow_data=True) is True

    def test_host_list_is_respected(self) -> None:
        assert is_media_url("https://v3.fal.media/files/x", FAL_MEDIA_HOSTS) is True
        assert is_media_url("https://replicate.delivery/x", FAL_MEDIA_HOSTS) is False


class TestReplicateUrls:
    def test_single_url(self) -> None:
        assert extract_replicate_media_urls("https://replicate.delivery/a.webp") == [
            "https://replicate.delivery/a.webp"
        ]

    def test_list_filters_non_media(self) -> None:
        output = ["https://replicate.delivery/a.png", "hello", None, "https://x.com/b.jpg"]
        assert extract_replicate_media_urls(output) == [
            "https://replicate.delivery/a.png",
            "https://x.com/b.jpg",
        ]

    @pytest.mark.parametrize("field", ["url", "video", "output", "result"])
    def test_object_fields(self, field: str) -> None:
        assert extract_replicate_media_urls({field: "https://x.com/v.mp4"}) == ["https://x.com/v.mp4"]

    def test_empty(self) -> None:
        assert extract_replicate_media_urls(None) == []
        assert extract_replicate_media_urls({"text": "no media"}) == []


class TestFalUrls:
    def test_video(self) -> None:
        payload = {"video": {"url": "https://v3.fal.media/files/v.mp4"}}
        assert extract_fal_media_urls(payload) == ["https://v3.fal.media/files/v.mp4"]

    def test_images(self) -> None:
        payload = {
            "images": [
                {"url": "https://v3.fal.media/files/a.png"},
                {"url": "https://v3.fal.media/files/b.png"},
                {"content_type": "image/png"},
            ]
        }
        assert extract_fal_media_urls(payload) == [
            "https://v3.fal.media/files/a.png",
            "https://v3.fal.media/files/b.png",
        ]

    def test_single_image(self) -> None:
        payload = {"image": {"url": "https://fal.media/files/cut.png"}}
        assert extract_fal_media_urls(payload) == ["https://fal.media/files/cut.png"]

    def test_list_of_urls_and_objects(self) -> None:
        payload = ["https://fal.media/a.png", {"url": "https://fal.media/b.png"}, 3]
        assert extract_fal_media_urls(payload) == ["https://fal.media/a.png", "https://fal.media/b.png"]

    def test_unknown_shape(self) -> None:
        assert extract_fal_media_urls({"seed": 1}) == []
        assert extract_fal_media_urls(None) == []


class TestTextOutput:
    def test_streamed_tokens_are_joined(self) -> None:
        assert extract_text_output(["A ", "cat ", "on a mat. "]) == "A cat on a mat."

    def test_plain_string(self) -> None:
        assert extract_text_output("  a caption  ") == "a caption"

    def test_object_field(self) -> None:
        assert extract_text_output({"seed": 3, "caption": "a dog"}) == "a dog"

    def test_nested_list(self) -> None:
        assert extract_text_output([{"text": ""}, {"answer": "42"}]) == "42"

    @pytest.mark.parametrize("output", [None, "", "   ", [], {"seed": 1}])
    def test_no_text(self, output) -> None:
        assert extract_text_output(output) is None


class TestMediaTypeInfo:
    @pytest.mark.parametrize(
        "url,content_type,expected",
        [
            ("https://x.com/a.png", None, ("png", "image/png", False)),
            ("https://x.com/a.jpeg", None, ("jpg", "image/jpeg", False)),
            ("https://x.com/a.webp", None, ("webp", "image/webp", False)),
            ("https://x.com/a.svg", None, ("svg", "image/svg+xml", False)),
            ("https://x.com/a.mp4", None, ("mp4", "video/mp4", True)),
            ("https://x.com/a.webm", None, ("webm", "video/webm", True)),
            ("https://x.com/blob", "video/quicktime", ("mov", "video/quicktime", True)),
            ("https://x.com/blob", "image/jpeg; charset=binary", ("jpg", "image/jpeg", False)),
            ("https://x.com/blob", None, ("png", "image/png", False)),
        ],
    )
    def test_detection(self, url: str, content_type: str | None, expected: tuple) -> None:
        assert media_type_info(url, content_type) == expected
