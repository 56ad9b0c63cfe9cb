"""Tests for the exceptions module and upstream error classification."""

import pytest

from poe_gateway.core.exceptions import (
    AuthenticationError,
    GatewayError,
    RequestTooLargeError,
    TranscodeError,
    UpstreamAuthError,
    UpstreamInvalidRequestError,
    UpstreamNotFoundError,
    UpstreamRateError,
    UpstreamServerError,
    UpstreamTimeout,
    ValidationError,
    error_from_kind,
)
from poe_gateway.upstream.errors import (
    classify_error_text,
    classify_status,
    extract_error_message,
)


class TestGatewayError:
    """Tests for the base GatewayError exception."""

    def test_creates_error_with_message(self):
        """Message and default code are kept."""
        error = GatewayError("test error message")
        assert error.message == "test error message"
        assert str(error) == "test error message"
        assert error.code == "internal_error"

    def test_openai_error_shape(self):
        """Errors render as an OpenAI error object."""
        error = ValidationError("bad", code="missing_parameter")
        assert error.to_openai_error() == {
            "error": {"message": "bad", "type": "invalid_request_error", "code": "missing_parameter"}
        }

    @pytest.mark.parametrize(
        "exc_cls, status",
        [
            (ValidationError, 400),
            (AuthenticationError, 401),
            (RequestTooLargeError, 413),
            (TranscodeError, 502),
            (UpstreamTimeout, 504),
        ],
    )
    def test_status_codes(self, exc_cls, status):
        """Each error class maps to its HTTP status."""
        assert exc_cls("x").status_code == status


class TestErrorFromKind:
    """Tests for error_from_kind."""

    @pytest.mark.parametrize(
        "kind, exc_cls, status",
        [
            ("auth", UpstreamAuthError, 401),
            ("rate_limit", UpstreamRateError, 429),
            ("not_found", UpstreamNotFoundError, 404),
            ("invalid_request", UpstreamInvalidRequestError, 400),
            ("server", UpstreamServerError, 500),
            ("transcode", TranscodeError, 502),
            ("timeout", UpstreamTimeout, 504),
            ("something_new", UpstreamServerError, 500),
        ],
    )
    def test_kinds(self, kind, exc_cls, status):
        """Kinds map to exception classes and statuses."""
        error = error_from_kind(kind, "msg")
        assert type(error) is exc_cls
        assert error.status_code == status
        assert error.message == "msg"

    def test_insufficient_quota(self):
        """Exhausted quota is a 429 with its own type and code."""
        error = error_from_kind("insufficient_quota", "no points")
        assert error.status_code == 429
        assert error.to_openai_error()["error"]["type"] == "insufficient_quota"
        assert error.to_openai_error()["error"]["code"] == "insufficient_quota"


class TestClassification:
    """Tests for upstream error classification."""

    @pytest.mark.parametrize(
        "text, kind",
        [
            ("This bot needs more points to answer your request.", "insufficient_quota"),
            ("Internal server error", "server"),
            ("Rate limit exceeded, slow down", "rate_limit"),
            ("Invalid token provided", "auth"),
            ("Bot does not exist", "not_found"),
            ("Something else went wrong", "invalid_request"),
        ],
    )
    def test_error_text(self, text, kind):
        """Error event texts are classified by content."""
        assert classify_error_text(text) == kind

    @pytest.mark.parametrize(
        "status, text, kind",
        [
            (401, "", "auth"),
            (403, "", "auth"),
            (404, "", "not_found"),
            (429, "", "rate_limit"),
            (429, "You do not have enough points to message this bot.", "insufficient_quota"),
            (502, "", "server"),
            (400, "", "invalid_request"),
            (400, "Bot does not exist", "not_found"),
        ],
    )
    def test_status(self, status, text, kind):
        """HTTP statuses are classified, refined by body text."""
        assert classify_status(status, text) == kind

    @pytest.mark.parametrize(
        "body, expected",
        [
            (b'{"error": {"message": "nested"}}', "nested"),
            (b'{"error": "flat"}', "flat"),
            (b'{"text": "poe style"}', "poe style"),
            (b"plain text body", "plain text body"),
            (b"", "Upstream returned HTTP 503"),
        ],
    )
    def test_extract_error_message(self, body, expected):
        """Messages are pulled from the common error body shapes."""
        assert extract_error_message(body, 503) == expected
