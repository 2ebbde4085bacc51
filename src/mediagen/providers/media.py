"""Provider output parsing helpers.

Providers return media as URLs buried in differently shaped payloads.
These helpers pull the URLs (or, for analyze models, the text) out.
"""

from typing import Any

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")
_VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".avi", ".mkv")

REPLICATE_MEDIA_HOSTS = (
    "replicate.delivery",
    "pbxt.replicate.delivery",
    "luma-labs",
    "cdn.luma.ai",
    "runway",
    "fal.media",
    "storage.googleapis.com",
)

FAL_MEDIA_HOSTS = (
    "fal.media",
    "fal.run",
    "fal-cdn",
    "storage.googleapis.com",
)

TEXT_OUTPUT_FIELDS = (
    "text",
    "caption",
    "description",
    "prompt",
    "output",
    "result",
    "content",
    "answer",
)


def is_media_url(
    value: Any,
    hosts: tuple[str, ...] = REPLICATE_MEDIA_HOSTS,
    allow_data: bool = False,
) -> bool:
    """True if value is an http(s) URL that looks like an image or video.

    A URL qualifies by a known media extension anywhere in it or by a known
    provider CDN host. data: URIs qualify only with allow_data.
    """
    if not value or not isinstance(value, str):
        return False

    if value.startswith("data:"):
        return allow_data
    if not value.startswith(("http://", "https://")):
        return False

    lowered = value.lower()
    if any(ext in lowered for ext in _IMAGE_EXTENSIONS + _VIDEO_EXTENSIONS):
        return True
    return any(host in lowered for host in hosts)


def extract_replicate_media_urls(output: Any) -> list[str]:
    """Media URLs from a Replicate prediction `output`.

    Handles a bare URL, a list of URLs, or an object with a url/video/
    output/result field.
    """
    if not output:
        return []

    def _ok(url: Any) -> bool:
        return is_media_url(url, REPLICATE_MEDIA_HOSTS, allow_data=True)

    if isinstance(output, str):
        return [output] if _ok(output) else []
    if isinstance(output, list):
        return [url for url in output if isinstance(url, str) and _ok(url)]
    if isinstance(output, dict):
        for field in ("url", "video", "output", "result"):
            value = output.get(field)
            if isinstance(value, str) and _ok(value):
                return [value]
    return []


def extract_fal_media_urls(payload: Any) -> list[str]:
    """Media URLs from a Fal result payload.

    Shapes, in order: {video: {url}}, {images: [{url}]}, {image: {url}},
    a bare URL, a list of URLs or {url} objects.
    """
    if not payload:
        return []

    def _ok(url: Any) -> bool:
        return is_media_url(url, FAL_MEDIA_HOSTS)

    if isinstance(payload, dict):
        video = payload.get("video")
        if isinstance(video, dict) and _ok(video.get("url")):
            return [video["url"]]

        images = payload.get("images")
        if isinstance(images, list):
            return [
                img["url"]
                for img in images
                if isinstance(img, dict) and _ok(img.get("url"))
            ]

        image = payload.get("image")
        if isinstance(image, dict) and _ok(image.get("url")):
            return [image["url"]]
        return []

    if isinstance(payload, str):
        return [payload] if _ok(payload) else []

    if isinstance(payload, list):
        urls: list[str] = []
        for item in payload:
            if isinstance(item, str) and _ok(item):
                urls.append(item)
            elif isinstance(item, dict) and _ok(item.get("url")):
                urls.append(item["url"])
        return urls

    return []


def extract_text_output(output: Any) -> str | None:
    """Text answer of an analyze model.

    Replicate streams text models as a list of tokens, which are joined.
    Objects are searched for the first non-empty text-like field.
    """
    if output is None:
        return None
    if isinstance(output, str):
        return output.strip() or None
    if isinstance(output, list):
        if all(isinstance(part, str) for part in output):
            return "".join(output).strip() or None
        for item in output:
            if text := extract_text_output(item):
                return text
        return None
    if isinstance(output, dict):
        for field in TEXT_OUTPUT_FIELDS:
            value = output.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def media_type_info(url: str, content_type: str | None = None) -> tuple[str, str, bool]:
    """(extension, mime_type, is_video) for a media URL.

    The URL extension wins over content_type; unknown images are png,
    unknown videos mp4.
    """
    lowered = url.lower()
    content_type = (content_type or "").split(";")[0].strip().lower()

    is_video = any(ext in lowered for ext in _VIDEO_EXTENSIONS) or content_type.startswith(
        "video/"
    )
    if is_video:
        if ".webm" in lowered or content_type == "video/webm":
            return "webm", "video/webm", True
        if ".mov" in lowered or content_type == "video/quicktime":
            return "mov", "video/quicktime", True
        return "mp4", "video/mp4", True

    if ".svg" in lowered or content_type == "image/svg+xml":
        return "svg", "image/svg+xml", False
    if ".webp" in lowered or content_type == "image/webp":
        return "webp", "image/webp", False
    if ".jpg" in lowered or ".jpeg" in lowered or content_type == "image/jpeg":
        return "jpg", "image/jpeg", False
    if ".gif" in lowered or content_type == "image/gif":
        return "gif", "image/gif", False
    return "png", "image/png", False
