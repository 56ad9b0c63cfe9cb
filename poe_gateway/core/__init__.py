"""Core gateway functionality."""

from .exceptions import (
    AttachmentResolutionError,
    AuthenticationError,
    GatewayError,
    RequestTooLargeError,
    ValidationError,
    error_from_kind,
)

__all__ = [
    "AttachmentResolutionError",
    "AuthenticationError",
    "GatewayError",
    "RequestTooLargeError",
    "ValidationError",
    "error_from_kind",
]
