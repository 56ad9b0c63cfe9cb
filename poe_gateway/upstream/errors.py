"""Classification of upstream failures into error delta kinds."""

from __future__ import annotations

import json
from typing import Optional

INSUFFICIENT_POINTS_MESSAGES = (
    "This bot needs more points to answer your request.",
    "You do not have enough points to message this bot.",
)


def classify_error_text(text: str) -> str:
    """Map an upstream error message to an error kind."""
    if any(message in text for message in INSUFFICIENT_POINTS_MESSAGES):
        return "insufficient_quota"
    if "Internal server error" in text:
        return "server"
    if "rate limit" in text.lower():
        return "rate_limit"
    if "Invalid token" in text or "Unauthorized" in text:
        return "auth"
    if "Bot does not exist" in text:
        return "not_found"
    return "invalid_request"


def classify_status(status_code: int, text: str = "") -> str:
    """Map an upstream HTTP status (and body text) to an error kind."""
    if status_code in (401, 403):
        return "auth"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        if any(message in text for message in INSUFFICIENT_POINTS_MESSAGES):
            return "insufficient_quota"
        return "rate_limit"
    if status_code >= 500:
        return "server"
    if text:
        kind = classify_error_text(text)
        if kind != "invalid_request":
            return kind
    return "invalid_request"


def extract_error_message(body: bytes, status_code: Optional[int] = None) -> str:
    """Best-effort human readable message from an upstream error body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("text", "message", "detail"):
            if payload.get(key):
                return str(payload[key])
    if text:
        return text[:2000]
    return f"Upstream returned HTTP {status_code}" if status_code else "Upstream error"
