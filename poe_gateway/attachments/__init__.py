"""Attachment handling: data URL decoding and the upload cache."""

from .cache import AttachmentCache, CacheEntry, cache_key
from .data_url import (
    decode_data_url,
    extension_for_mime,
    find_upstream_cdn_urls,
    is_upstream_cdn_url,
)

__all__ = [
    "AttachmentCache",
    "CacheEntry",
    "cache_key",
    "decode_data_url",
    "extension_for_mime",
    "find_upstream_cdn_urls",
    "is_upstream_cdn_url",
]
