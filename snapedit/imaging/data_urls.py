"""Helpers for images passed around as base64 data URLs."""

import base64
import binascii
import re

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


def to_data_url(image_bytes: bytes, mime_type: str | None = None) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime = mime_type or detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime};base64,{encoded}"


def ensure_data_url(image: str) -> str:
    """Bare base64 payloads are treated as JPEG."""
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"


def split_data_url(image: str) -> tuple[str, bytes]:
    """Return ``(mime_type, raw_bytes)`` for a data URL or a bare base64 string."""
    match = _DATA_URL_RE.match(ensure_data_url(image))
    if match is None:
        raise ValueError("Not a base64 image data URL")
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 image payload") from exc
    return match.group("mime"), data


def detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
