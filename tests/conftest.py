"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Iterable

import pytest

from poe_gateway.testing import FakePoe
from poe_gateway.types.deltas import Delta
from poe_gateway.upstream.events import UpstreamEvent


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_poe() -> FakePoe:
    """A fresh FakePoe upstream with a small model list."""
    return FakePoe(
        models=[
            {"id": "GPT-4o", "object": "model", "created": 1700000000, "owned_by": "poe"},
            {"id": "Claude-3.7-Sonnet", "object": "model", "created": 1700000001, "owned_by": "poe"},
            {"id": "Hidden-Bot", "object": "model", "created": 1700000002, "owned_by": "poe"},
        ]
    )


# =============================================================================
# Helper Functions for Tests
# =============================================================================


def chat_payload(
    content: str = "hi",
    *,
    model: str = "m",
    stream: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal chat completion request body."""
    payload: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "user", "content": content}],
        "stream": stream,
    }
    payload.update(extra)
    return payload


def parse_sse_payloads(body: bytes | str) -> list[Any]:
    """Decode the ``data:`` payloads of a downstream SSE body.

    The ``[DONE]`` sentinel is returned as the string "[DONE]".
    """
    text = body.decode("utf-8") if isinstance(body, bytes) else body
    payloads: list[Any] = []
    for block in text.split("\n\n"):
        data_lines = [line[len("data: "):] for line in block.split("\n") if line.startswith("data: ")]
        if not data_lines:
            continue
        data = "\n".join(data_lines)
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


def stream_content(payloads: Iterable[Any], field: str = "content") -> str:
    """Concatenate one delta field across streamed chunks."""
    parts = []
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        for choice in payload.get("choices") or []:
            value = (choice.get("delta") or {}).get(field)
            if value:
                parts.append(value)
    return "".join(parts)


def text_events(*chunks: str) -> list[UpstreamEvent]:
    """Upstream text events followed by ``done``."""
    return [UpstreamEvent("text", {"text": chunk}) for chunk in chunks] + [UpstreamEvent("done")]


async def iterate(deltas: Iterable[Delta]) -> AsyncIterator[Delta]:
    """Turn a delta list into an async iterator."""
    for delta in deltas:
        yield delta
