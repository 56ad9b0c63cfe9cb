"""HTTP client for the upstream Poe bot protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from ..concurrency.pacing import PacingGate
from ..core.exceptions import AttachmentResolutionError, error_from_kind
from ..core.sse import SSEDecoder
from ..settings import Settings
from ..types.chat import PoeQueryRequest
from ..types.request import InlineData, UpstreamReference, UpstreamRequest
from .errors import classify_status, extract_error_message
from .events import IGNORED_KINDS, UpstreamEvent

logger = logging.getLogger("poe-gateway")

PROTOCOL_VERSION = "1.1"
DEFAULT_CONNECT_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 120.0

DisconnectChecker = Callable[[], Awaitable[bool]]


def format_httpx_error(exc: Exception, url: Optional[str] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)
    try:
        request = exc.request  # type: ignore[attr-defined]
    except (AttributeError, RuntimeError):
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")
    return "; ".join(parts)


def build_query_body(request: UpstreamRequest) -> PoeQueryRequest:
    body: PoeQueryRequest = {
        "version": PROTOCOL_VERSION,
        "type": "query",
        "query": list(request.messages),
        "user_id": request.user_id,
        "conversation_id": request.conversation_id,
        "message_id": request.message_id,
        "temperature": request.temperature,
        "logit_bias": request.logit_bias,
        "stop_sequences": list(request.stop_sequences),
    }
    return body


class UpstreamClient:
    """Issues bot queries, file uploads and model listings upstream.

    ``send`` never raises for upstream or network failures: they arrive as
    ``error`` events so the caller always sees a well-formed ending. Only
    cancellation (including client disconnect) propagates.
    """

    def __init__(
        self,
        settings: Settings,
        pacing: PacingGate,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.pacing = pacing
        self.base_url = settings.poe_base_url.rstrip("/")
        self.upload_url = settings.poe_file_upload_url
        self.deadline_seconds = settings.upstream_timeout_seconds
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.upstream_timeout_seconds,
                connect=min(DEFAULT_CONNECT_TIMEOUT, settings.upstream_timeout_seconds),
            ),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def bot_url(self, bot_name: str) -> str:
        return f"{self.base_url}/bot/{quote(bot_name, safe='')}"

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send(
        self,
        request: UpstreamRequest,
        api_key: str,
        *,
        streaming: bool,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> AsyncIterator[UpstreamEvent]:
        """Send a query and yield upstream events.

        Streaming yields events as they arrive. Non-streaming drains the
        stream first and yields one aggregated ``text`` event followed by the
        terminal event. Either way the sequence ends at the first ``done`` or
        ``error``.
        """
        events = self._stream_events(request, api_key, disconnect_checker)
        source = events if streaming else _compact(events)
        try:
            async for event in source:
                yield event
        finally:
            await source.aclose()

    async def _stream_events(
        self,
        request: UpstreamRequest,
        api_key: str,
        disconnect_checker: Optional[DisconnectChecker],
    ) -> AsyncIterator[UpstreamEvent]:
        await self.pacing.acquire()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline_seconds
        url = self.bot_url(request.bot_name)
        http_request = self._client.build_request(
            "POST",
            url,
            json=build_query_body(request),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "text/event-stream",
            },
        )
        logger.info("Sending query to bot %s (%d messages)", request.bot_name, len(request.messages))

        try:
            response = await asyncio.wait_for(
                self._client.send(http_request, stream=True),
                timeout=max(deadline - loop.time(), 0),
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error("Upstream call to %s timed out before responding", url)
            yield UpstreamEvent.error("timeout", f"Upstream call timed out after {self.deadline_seconds}s")
            return
        except httpx.HTTPError as exc:
            logger.error("Upstream call to %s failed: %s", url, format_httpx_error(exc, url))
            yield UpstreamEvent.error("server", f"Upstream request failed: {format_httpx_error(exc, url)}")
            return

        try:
            if response.status_code >= 400:
                try:
                    body = await asyncio.wait_for(
                        response.aread(), timeout=max(deadline - loop.time(), 0)
                    )
                except (asyncio.TimeoutError, httpx.HTTPError):
                    body = b""
                message = extract_error_message(body, response.status_code)
                kind = classify_status(response.status_code, message)
                logger.error(
                    "Upstream returned HTTP %s for bot %s: %s",
                    response.status_code,
                    request.bot_name,
                    message,
                )
                yield UpstreamEvent.error(kind, message)
                return

            decoder = SSEDecoder()
            chunks = response.aiter_bytes().__aiter__()
            while True:
                if disconnect_checker is not None and await disconnect_checker():
                    logger.info("Client disconnected; closing upstream stream for %s", request.bot_name)
                    raise asyncio.CancelledError("client disconnected")
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                for sse in decoder.feed(chunk):
                    event = UpstreamEvent.from_sse(sse)
                    yield event
                    if event.is_terminal:
                        return

            for sse in decoder.flush():
                event = UpstreamEvent.from_sse(sse)
                yield event
                if event.is_terminal:
                    return

            logger.warning("Upstream stream for %s ended without a done event", request.bot_name)
            yield UpstreamEvent("done")
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error("Upstream stream for %s exceeded the %ss deadline", request.bot_name, self.deadline_seconds)
            yield UpstreamEvent.error("timeout", f"Upstream call timed out after {self.deadline_seconds}s")
        except httpx.HTTPError as exc:
            logger.error("Upstream stream for %s failed: %s", request.bot_name, format_httpx_error(exc, url))
            yield UpstreamEvent.error("server", f"Upstream stream failed: {format_httpx_error(exc, url)}")
        finally:
            await response.aclose()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(
        self, source: str | InlineData, api_key: str
    ) -> UpstreamReference:
        """Upload a remote URL or inline bytes to the upstream file store.

        Raises:
            AttachmentResolutionError: The upload failed for any reason.
        """
        headers = {"Authorization": api_key}
        try:
            if isinstance(source, InlineData):
                name = source.filename or "attachment.bin"
                response = await self._client.post(
                    self.upload_url,
                    headers=headers,
                    files={"file": (name, source.data, source.mime_type)},
                    timeout=UPLOAD_TIMEOUT,
                )
                size = len(source.data)
            else:
                name = source.rsplit("/", 1)[-1].split("?", 1)[0] or "attachment"
                response = await self._client.post(
                    self.upload_url,
                    headers=headers,
                    data={"download_url": source},
                    timeout=UPLOAD_TIMEOUT,
                )
                size = 0
        except httpx.HTTPError as exc:
            raise AttachmentResolutionError(
                f"File upload failed: {format_httpx_error(exc, self.upload_url)}"
            ) from exc

        if response.status_code >= 400:
            message = extract_error_message(response.content, response.status_code)
            raise AttachmentResolutionError(
                f"File upload failed with HTTP {response.status_code}: {message}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AttachmentResolutionError("File upload returned a non-JSON body") from exc
        if not isinstance(payload, dict) or not payload.get("attachment_url"):
            raise AttachmentResolutionError("File upload response has no attachment_url")

        reported_size = payload.get("size")
        if isinstance(reported_size, int) and reported_size > 0:
            size = reported_size
        content_type = str(payload.get("mime_type") or getattr(source, "mime_type", "") or "application/octet-stream")
        logger.info("Uploaded attachment %s (%s, %d bytes)", name, content_type, size)
        return UpstreamReference(
            url=str(payload["attachment_url"]),
            content_type=content_type,
            name=name,
            size_bytes=size,
        )

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self, api_key: Optional[str]) -> list[dict[str, Any]]:
        """Fetch the upstream model list (OpenAI-compatible ``/v1/models``)."""
        url = f"{self.base_url}/v1/models"
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise error_from_kind("server", f"Model list request failed: {format_httpx_error(exc, url)}") from exc
        if response.status_code >= 400:
            message = extract_error_message(response.content, response.status_code)
            raise error_from_kind(classify_status(response.status_code, message), message)
        try:
            payload = response.json()
        except ValueError as exc:
            raise error_from_kind("server", "Model list response is not JSON") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise error_from_kind("server", "Model list response has no data array")
        return [model for model in data if isinstance(model, dict)]


async def _compact(events: AsyncGenerator[UpstreamEvent, None]) -> AsyncIterator[UpstreamEvent]:
    """Drain a stream into one text event plus the terminal event.

    ``file`` events come first so inline references resolve; ``json``,
    ``meta`` and unrecognized events follow the text. An ``error`` terminal
    discards everything else.
    """
    text_parts: list[str] = []
    files: list[UpstreamEvent] = []
    extras: list[UpstreamEvent] = []
    terminal: Optional[UpstreamEvent] = None

    try:
        async for event in events:
            if event.is_terminal or event.malformed:
                terminal = event
                break
            if event.kind == "text":
                text_parts.append(event.text)
            elif event.kind == "replace_response":
                text_parts = [event.text]
            elif event.kind == "file":
                files.append(event)
            elif event.kind not in IGNORED_KINDS:
                extras.append(event)
    finally:
        await events.aclose()

    if terminal is None:
        terminal = UpstreamEvent("done")
    if terminal.kind == "error" or terminal.malformed:
        yield terminal
        return

    for event in files:
        yield event
    if text_parts:
        yield UpstreamEvent("text", {"text": "".join(text_parts)})
    for event in extras:
        yield event
    yield terminal
