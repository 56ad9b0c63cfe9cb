"""Tests for the upstream Poe client."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from poe_gateway.concurrency import PacingGate
from poe_gateway.core.exceptions import AttachmentResolutionError, UpstreamAuthError
from poe_gateway.settings import Settings
from poe_gateway.testing import encode_poe_event
from poe_gateway.types.request import InlineData, UpstreamRequest
from poe_gateway.upstream import UpstreamClient

BASE = "http://poe.test"


def make_settings(**overrides) -> Settings:
    values = {
        "poe_base_url": BASE,
        "poe_file_upload_url": f"{BASE}/file_upload",
        "rate_limit_ms": 0,
        "upstream_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


def make_client(handler, *, pacing: PacingGate | None = None, **settings) -> UpstreamClient:
    return UpstreamClient(
        make_settings(**settings),
        pacing or PacingGate(0),
        transport=httpx.MockTransport(handler),
    )


def make_request(bot_name: str = "GPT-4o") -> UpstreamRequest:
    return UpstreamRequest(
        bot_name=bot_name,
        messages=[{"role": "user", "content": "hi", "content_type": "text/markdown"}],
        temperature=0.3,
        stop_sequences=["END"],
        user_id="u",
        conversation_id="c-1",
        message_id="m-1",
    )


def sse_body(*events) -> bytes:
    return b"".join(encode_poe_event(kind, data) for kind, data in events)


async def collect(client: UpstreamClient, *, streaming: bool = True, **kwargs) -> list:
    events = []
    async for event in client.send(make_request(), "poe-key", streaming=streaming, **kwargs):
        events.append(event)
    return events


class TestSend:
    """Tests for bot queries."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        """Queries are POSTed to /bot/<name> with the Poe body and bearer key."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=sse_body(("text", {"text": "ok"}), ("done", {})))

        client = make_client(handler)
        try:
            await collect(client)
        finally:
            await client.aclose()

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/bot/GPT-4o"
        assert request.headers["Authorization"] == "Bearer poe-key"
        body = json.loads(request.content)
        assert body["version"] == "1.1"
        assert body["type"] == "query"
        assert body["query"][0]["content"] == "hi"
        assert body["temperature"] == 0.3
        assert body["stop_sequences"] == ["END"]
        assert body["conversation_id"] == "c-1"
        assert body["message_id"] == "m-1"

    @pytest.mark.asyncio
    async def test_events_in_order_until_done(self):
        """Events are yielded in order and nothing after done."""
        body = sse_body(
            ("meta", {"content_type": "text/markdown"}),
            ("text", {"text": "Hel"}),
            ("text", {"text": "lo"}),
            ("done", {}),
            ("text", {"text": "late"}),
        )
        client = make_client(lambda request: httpx.Response(200, content=body))
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert [e.kind for e in events] == ["meta", "text", "text", "done"]
        assert [e.text for e in events if e.kind == "text"] == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_events_split_across_chunks(self):
        """Frames cut at arbitrary byte positions decode the same."""
        body = sse_body(("text", {"text": "héllo wörld"}), ("text", {"text": "!"}), ("done", {}))

        async def chunks():
            for i in range(0, len(body), 5):
                yield body[i:i + 5]

        client = make_client(lambda request: httpx.Response(200, content=chunks()))
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert "".join(e.text for e in events) == "héllo wörld!"
        assert events[-1].kind == "done"

    @pytest.mark.asyncio
    async def test_missing_done_is_synthesized(self):
        """A stream that just ends gets a done event."""
        client = make_client(
            lambda request: httpx.Response(200, content=sse_body(("text", {"text": "x"})))
        )
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert [e.kind for e in events] == ["text", "done"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, kind",
        [(401, "auth"), (403, "auth"), (404, "not_found"), (429, "rate_limit"), (500, "server"), (400, "invalid_request")],
    )
    async def test_http_errors_become_error_events(self, status, kind):
        """Non-2xx replies become one classified error event."""
        client = make_client(
            lambda request: httpx.Response(status, json={"error": {"message": f"failed {status}"}})
        )
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert len(events) == 1
        assert events[0].kind == "error"
        assert events[0].data["kind"] == kind
        assert events[0].text == f"failed {status}"

    @pytest.mark.asyncio
    async def test_insufficient_points(self):
        """A 429 about points is classified as exhausted quota."""
        message = "You do not have enough points to message this bot."
        client = make_client(lambda request: httpx.Response(429, json={"text": message}))
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert events[0].data["kind"] == "insufficient_quota"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Network failures become server error events."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        try:
            events = await collect(client)
        finally:
            await client.aclose()
        assert events[0].kind == "error"
        assert events[0].data["kind"] == "server"
        assert "ConnectError" in events[0].text

    @pytest.mark.asyncio
    async def test_stalled_stream_times_out(self):
        """A stream that stops producing bytes hits the deadline."""

        async def chunks():
            yield encode_poe_event("text", {"text": "partial"})
            await asyncio.sleep(10)
            yield encode_poe_event("done", {})

        client = make_client(
            lambda request: httpx.Response(200, content=chunks()),
            upstream_timeout_seconds=0.2,
        )
        try:
            events = await asyncio.wait_for(collect(client), timeout=5)
        finally:
            await client.aclose()
        assert [e.kind for e in events] == ["text", "error"]
        assert events[-1].data["kind"] == "timeout"

    @pytest.mark.asyncio
    async def test_disconnect_cancels(self):
        """A disconnected client stops the upstream read."""

        async def disconnected() -> bool:
            return True

        client = make_client(
            lambda request: httpx.Response(200, content=sse_body(("text", {"text": "x"}), ("done", {})))
        )
        try:
            with pytest.raises(asyncio.CancelledError):
                await collect(client, disconnect_checker=disconnected)
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_pacing_applied_per_call(self):
        """Every query acquires a pacing permit."""
        now = [0.0]
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        gate = PacingGate(0.5, clock=lambda: now[0], sleep=sleep)
        client = make_client(
            lambda request: httpx.Response(200, content=sse_body(("done", {}))),
            pacing=gate,
        )
        try:
            await collect(client)
            await collect(client)
        finally:
            await client.aclose()
        assert sleeps == [pytest.approx(0.5)]


class TestCompactMode:
    """Tests for non-streaming aggregation."""

    @pytest.mark.asyncio
    async def test_text_aggregated(self):
        """Text events collapse into one text event before done."""
        body = sse_body(
            ("text", {"text": "Hel"}),
            ("json", {"usage": {"prompt_tokens": 1}}),
            ("text", {"text": "lo"}),
            ("done", {}),
        )
        client = make_client(lambda request: httpx.Response(200, content=body))
        try:
            events = await collect(client, streaming=False)
        finally:
            await client.aclose()
        assert [e.kind for e in events] == ["text", "json", "done"]
        assert events[0].text == "Hello"

    @pytest.mark.asyncio
    async def test_replace_response_resets(self):
        """replace_response discards earlier text."""
        body = sse_body(
            ("text", {"text": "draft"}),
            ("replace_response", {"text": "Final"}),
            ("text", {"text": "!"}),
            ("done", {}),
        )
        client = make_client(lambda request: httpx.Response(200, content=body))
        try:
            events = await collect(client, streaming=False)
        finally:
            await client.aclose()
        assert events[0].text == "Final!"

    @pytest.mark.asyncio
    async def test_error_discards_text(self):
        """An error terminal is the only event."""
        body = sse_body(("text", {"text": "partial"}), ("error", {"text": "Internal server error"}))
        client = make_client(lambda request: httpx.Response(200, content=body))
        try:
            events = await collect(client, streaming=False)
        finally:
            await client.aclose()
        assert [e.kind for e in events] == ["error"]


class TestUploadFile:
    """Tests for file uploads."""

    @pytest.mark.asyncio
    async def test_inline_upload(self):
        """Inline bytes are sent as multipart with the raw key."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"attachment_url": "https://pfst.cf2.poecdn.net/base/1/a.png", "mime_type": "image/png"},
            )

        client = make_client(handler)
        try:
            ref = await client.upload_file(
                InlineData(b"png-bytes", "image/png", "a.png"), "poe-key"
            )
        finally:
            await client.aclose()

        request = seen[0]
        assert str(request.url) == f"{BASE}/file_upload"
        assert request.headers["Authorization"] == "poe-key"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'filename="a.png"' in request.content
        assert ref.url == "https://pfst.cf2.poecdn.net/base/1/a.png"
        assert ref.content_type == "image/png"
        assert ref.name == "a.png"
        assert ref.size_bytes == len(b"png-bytes")

    @pytest.mark.asyncio
    async def test_url_upload(self):
        """Remote URLs are handed over as download_url."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"attachment_url": "https://pfst.cf2.poecdn.net/base/2/cat.jpg", "mime_type": "image/jpeg", "size": 321},
            )

        client = make_client(handler)
        try:
            ref = await client.upload_file("https://example.com/img/cat.jpg?x=1", "poe-key")
        finally:
            await client.aclose()

        assert b"download_url=" in seen[0].content
        assert ref.name == "cat.jpg"
        assert ref.size_bytes == 321

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json={"ok": True}),
        ],
    )
    async def test_upload_failures(self, response):
        """Failed or unusable uploads raise AttachmentResolutionError."""
        client = make_client(lambda request: response)
        try:
            with pytest.raises(AttachmentResolutionError):
                await client.upload_file(InlineData(b"x", "image/png", "x.png"), "k")
        finally:
            await client.aclose()


class TestListModels:
    """Tests for the upstream model listing."""

    @pytest.mark.asyncio
    async def test_returns_data(self):
        """The data array is returned as-is."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"object": "list", "data": [{"id": "GPT-4o"}, "junk"]})

        client = make_client(handler)
        try:
            models = await client.list_models("poe-key")
        finally:
            await client.aclose()
        assert models == [{"id": "GPT-4o"}]
        assert seen[0].url.path == "/v1/models"
        assert seen[0].headers["Authorization"] == "Bearer poe-key"

    @pytest.mark.asyncio
    async def test_auth_failure(self):
        """A 401 raises UpstreamAuthError."""
        client = make_client(lambda request: httpx.Response(401, json={"error": {"message": "bad key"}}))
        try:
            with pytest.raises(UpstreamAuthError):
                await client.list_models("bad")
        finally:
            await client.aclose()
