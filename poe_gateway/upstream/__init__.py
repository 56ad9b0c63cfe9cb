"""Upstream (Poe) protocol client."""

from .client import UpstreamClient, build_query_body
from .errors import classify_error_text, classify_status
from .events import UpstreamEvent

__all__ = [
    "UpstreamClient",
    "UpstreamEvent",
    "build_query_body",
    "classify_error_text",
    "classify_status",
]
