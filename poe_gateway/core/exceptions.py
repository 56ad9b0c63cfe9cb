"""Core exceptions for the gateway."""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for gateway errors.

    Carries the HTTP status and the OpenAI-shaped error fields the route
    layer reports back to the client.
    """

    status_code = 500
    error_type = "internal_error"
    default_code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_openai_error(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }


class ValidationError(GatewayError):
    """Raised when an incoming request is malformed or incomplete."""

    status_code = 400
    error_type = "invalid_request_error"
    default_code = "invalid_request"


class AuthenticationError(GatewayError):
    """Raised when the caller did not supply a bearer credential."""

    status_code = 401
    error_type = "invalid_request_error"
    default_code = "invalid_api_key"


class RequestTooLargeError(GatewayError):
    """Raised when a request body exceeds the configured size limit."""

    status_code = 413
    error_type = "invalid_request_error"
    default_code = "request_too_large"


class AttachmentResolutionError(GatewayError):
    """Raised when an attachment could not be uploaded upstream."""

    status_code = 500
    error_type = "processing_error"
    default_code = "file_processing_failed"


class UpstreamAuthError(GatewayError):
    status_code = 401
    error_type = "invalid_auth"
    default_code = "invalid_api_key"


class UpstreamRateError(GatewayError):
    """Upstream rate limit or exhausted quota."""

    status_code = 429
    error_type = "rate_limit_exceeded"
    default_code = "rate_limit_exceeded"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, code)
        if self.code == "insufficient_quota":
            self.error_type = "insufficient_quota"


class UpstreamNotFoundError(GatewayError):
    status_code = 404
    error_type = "model_not_found"
    default_code = "model_not_found"


class UpstreamInvalidRequestError(GatewayError):
    status_code = 400
    error_type = "invalid_request"
    default_code = "bad_request"


class UpstreamServerError(GatewayError):
    status_code = 500
    error_type = "internal_error"
    default_code = "internal_error"


class TranscodeError(GatewayError):
    """Raised when the upstream stream contains an event we cannot decode."""

    status_code = 502
    error_type = "transcode_error"
    default_code = "malformed_upstream_event"


class UpstreamTimeout(GatewayError):
    status_code = 504
    error_type = "timeout_error"
    default_code = "upstream_timeout"


# Error delta kinds produced by the transcoder, mapped back to exceptions.
ERROR_KINDS: dict[str, type[GatewayError]] = {
    "auth": UpstreamAuthError,
    "rate_limit": UpstreamRateError,
    "insufficient_quota": UpstreamRateError,
    "not_found": UpstreamNotFoundError,
    "invalid_request": UpstreamInvalidRequestError,
    "server": UpstreamServerError,
    "transcode": TranscodeError,
    "timeout": UpstreamTimeout,
}


def error_from_kind(kind: str, message: str) -> GatewayError:
    """Build the exception matching an error delta kind."""
    exc_cls = ERROR_KINDS.get(kind, UpstreamServerError)
    if kind == "insufficient_quota":
        return exc_cls(message, code="insufficient_quota")
    return exc_cls(message)
