"""Process-wide gateway services shared by all requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .attachments.cache import AttachmentCache
from .concurrency.pacing import PacingGate
from .model_mapping import ModelMapping
from .settings import Settings
from .translation.markup import DEFAULT_MARKERS, ReasoningMarkers
from .translation.normalizer import RequestNormalizer
from .translation.transcoder import EventTranscoder
from .types.deltas import Delta
from .types.request import ChatRequest, UpstreamRequest
from .upstream.client import DisconnectChecker, UpstreamClient

logger = logging.getLogger("poe-gateway")


class GatewayServices:
    """Owns the attachment cache, pacing gate, upstream client and mapping.

    One instance is built per application and stored on ``app.state``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        mapping: Optional[ModelMapping] = None,
        markers: ReasoningMarkers = DEFAULT_MARKERS,
    ) -> None:
        self.settings = settings
        self.markers = markers
        self.cache = AttachmentCache(settings.cache_ttl_seconds, settings.cache_capacity_bytes)
        self.pacing = PacingGate(settings.pacing_interval_seconds)
        self.client = UpstreamClient(settings, self.pacing, transport=transport)
        self.mapping = mapping if mapping is not None else ModelMapping(config_dir=settings.config_dir)
        self.normalizer = RequestNormalizer(
            self.cache, self.client, self.mapping, markers=markers
        )
        self._models: Optional[list[dict[str, Any]]] = None
        self._models_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Chat pipeline
    # ------------------------------------------------------------------

    async def chat_deltas(
        self,
        request: ChatRequest,
        upstream: UpstreamRequest,
        api_key: str,
        *,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> AsyncIterator[Delta]:
        """Send the upstream query and yield transcoded deltas.

        The sequence always ends with exactly one ``Finish`` or ``Error``.
        """
        transcoder = EventTranscoder(
            self.markers,
            parse_tool_calls=bool(request.tools),
            known_tools=[tool.name for tool in request.tools] or None,
        )
        events = self.client.send(
            upstream,
            api_key,
            streaming=request.stream,
            disconnect_checker=disconnect_checker,
        )
        try:
            async for event in events:
                for delta in transcoder.feed(event):
                    yield delta
                if transcoder.is_terminal:
                    return
            for delta in transcoder.close():
                yield delta
        finally:
            await events.aclose()  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def upstream_models(self, api_key: Optional[str], *, refresh: bool = False) -> list[dict[str, Any]]:
        """Upstream model list with lower-cased ids, fetched once and cached.

        ``refresh`` bypasses the cached copy and replaces it.
        """
        async with self._models_lock:
            if self._models is not None and not refresh:
                logger.debug("Model list cache hit (%d models)", len(self._models))
                return list(self._models)
            models = await self.client.list_models(api_key or self.mapping.api_token)
            self._models = [{**model, "id": str(model.get("id", "")).lower()} for model in models]
            logger.info("Model list cache updated with %d models", len(self._models))
            return list(self._models)

    async def listed_models(self, api_key: Optional[str]) -> list[dict[str, Any]]:
        """Model list as shown to clients, with the mapping applied."""
        models = await self.upstream_models(api_key)
        return self.mapping.apply_to_listing(models)
