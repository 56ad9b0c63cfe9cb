"""Upstream (Poe bot protocol) events as received off the wire."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ..core.sse import SSEEvent

TERMINAL_KINDS = frozenset({"done", "error"})

# Protocol events with nothing to translate downstream.
IGNORED_KINDS = frozenset({"suggested_reply", "data"})


@dataclass(frozen=True)
class UpstreamEvent:
    """One event of the upstream stream.

    ``kind`` is the SSE event name verbatim. ``data`` is the decoded JSON
    payload. ``malformed`` marks a payload that could not be decoded.
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)
    malformed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def text(self) -> str:
        value = self.data.get("text")
        return value if isinstance(value, str) else ""

    @classmethod
    def error(cls, kind: str, message: str) -> "UpstreamEvent":
        """An error event raised on this side of the wire (HTTP, timeout, ...)."""
        return cls("error", {"text": message, "kind": kind})

    @classmethod
    def from_sse(cls, sse: SSEEvent) -> "UpstreamEvent":
        kind = sse.event or "text"
        raw = sse.data
        if raw is None or raw == "":
            return cls(kind)
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return cls(kind, {"raw": raw}, malformed=True)
        if not isinstance(payload, dict):
            if kind == "json":
                return cls(kind, {"value": payload})
            return cls(kind, {"raw": raw}, malformed=True)
        return cls(kind, payload)
