"""Helpers for attachment sources: data URLs and upstream CDN links."""

from __future__ import annotations

import base64
import binascii
import mimetypes
import re
import uuid

from ..core.exceptions import ValidationError
from ..types.request import InlineData

UPSTREAM_CDN_PREFIX = "https://pfst.cf2.poecdn.net"

_MIME_EXTENSIONS = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "text/csv": "csv",
    "application/json": "json",
    "application/xml": "xml",
    "text/xml": "xml",
    "application/zip": "zip",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
}

_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\((https?://[^\s)]+)\)")


def extension_for_mime(mime_type: str) -> str:
    ext = _MIME_EXTENSIONS.get(mime_type.lower())
    if ext:
        return ext
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip(".") if guessed else "bin"


def decode_data_url(url: str, filename: str | None = None) -> InlineData:
    """Decode a ``data:<mime>;base64,<payload>`` URL into inline bytes.

    Raises:
        ValidationError: The URL is not a base64 data URL or does not decode.
    """
    if not url.startswith("data:"):
        raise ValidationError("Attachment is not a data URL", code="invalid_attachment")
    header, sep, payload = url.partition(";base64,")
    if not sep:
        raise ValidationError(
            "Data URL attachments must be base64 encoded", code="invalid_attachment"
        )
    mime_type = header[len("data:"):] or "application/octet-stream"
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(
            f"Attachment data URL is not valid base64: {exc}", code="invalid_attachment"
        ) from exc
    name = filename or f"attachment_{uuid.uuid4().hex[:16]}.{extension_for_mime(mime_type)}"
    return InlineData(data=data, mime_type=mime_type, filename=name)


def is_upstream_cdn_url(url: str) -> bool:
    """True for files the upstream already hosts; these are never re-uploaded."""
    return url.startswith(UPSTREAM_CDN_PREFIX)


def find_upstream_cdn_urls(text: str) -> list[str]:
    """Upstream CDN links in markdown images or bare words of text."""
    urls = [url for url in _MARKDOWN_IMAGE_RE.findall(text) if is_upstream_cdn_url(url)]
    for word in text.split():
        if is_upstream_cdn_url(word) and word not in urls:
            urls.append(word)
    return urls
