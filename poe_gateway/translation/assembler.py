"""Builds OpenAI chat-completion responses and chunks from deltas."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

from ..core.exceptions import GatewayError, error_from_kind
from ..core.sse import encode_done, encode_json_event
from ..types.chat import (
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatMessage,
    Delta as ChunkDelta,
    ToolCall,
    Usage as UsageDict,
)
from ..types.deltas import (
    ContentDelta,
    Delta,
    Error,
    Finish,
    ReasoningDelta,
    ToolCallDelta,
    Usage,
)

logger = logging.getLogger("poe-gateway")

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count used when the upstream reports no usage."""
    if not text:
        return 0
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)


class ResponseAssembler:
    """Renders one response from a delta sequence.

    ``stream`` produces SSE bytes, ``collect`` a single completion object.
    An assembler is used for exactly one response.
    """

    def __init__(self, model: str, *, include_usage: bool = False, prompt_text: str = "") -> None:
        self.model = model
        self.include_usage = include_usage
        self.prompt_text = prompt_text
        self.completion_id = f"chatcmpl-{uuid.uuid4().hex[:24]}"
        self.created = int(time.time())
        self.usage: Optional[Usage] = None
        self._tool_ids: dict[int, str] = {}
        self._completion_chars: list[str] = []

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, deltas: AsyncIterator[Delta]) -> AsyncIterator[bytes]:
        yield encode_json_event(self._chunk({"role": "assistant", "content": ""}))

        try:
            async for delta in deltas:
                if isinstance(delta, Usage):
                    self.usage = delta
                    continue
                if isinstance(delta, Finish):
                    for out in self._finish_chunks(delta.reason):
                        yield out
                    return
                if isinstance(delta, Error):
                    for out in self._error_chunks(error_from_kind(delta.kind, delta.message)):
                        yield out
                    return
                chunk_delta = self._chunk_delta(delta)
                if chunk_delta is not None:
                    yield encode_json_event(self._chunk(chunk_delta))
        except GatewayError as exc:
            logger.error("Stream %s failed: %s", self.completion_id, exc.message)
            for out in self._error_chunks(exc):
                yield out
            return

        # Delta source ended without a terminal delta.
        for out in self._finish_chunks("tool_calls" if self._tool_ids else "stop"):
            yield out

    def _chunk_delta(self, delta: Delta) -> Optional[ChunkDelta]:
        if isinstance(delta, ContentDelta):
            self._completion_chars.append(delta.text)
            return {"content": delta.text}
        if isinstance(delta, ReasoningDelta):
            self._completion_chars.append(delta.text)
            return {"reasoning_content": delta.text}
        if isinstance(delta, ToolCallDelta):
            self._completion_chars.append(delta.arguments)
            call: ToolCall = {"index": delta.index, "function": {"arguments": delta.arguments}}
            if delta.index not in self._tool_ids:
                self._tool_ids[delta.index] = self._new_tool_id()
                call["id"] = self._tool_ids[delta.index]
                call["type"] = "function"
                call["function"]["name"] = delta.name or ""
            return {"tool_calls": [call]}
        return None

    def _finish_chunks(self, reason: str) -> list[bytes]:
        chunks = [encode_json_event(self._chunk({}, finish_reason=reason))]
        if self.include_usage:
            usage_chunk = self._base_chunk()
            usage_chunk["choices"] = []
            usage_chunk["usage"] = self.usage_payload()
            chunks.append(encode_json_event(usage_chunk))
        chunks.append(encode_done())
        logger.debug("Stream %s finished (%s)", self.completion_id, reason)
        return chunks

    def _error_chunks(self, exc: GatewayError) -> list[bytes]:
        error_chunk = self._base_chunk()
        error_chunk["choices"] = []
        error_chunk["error"] = exc.to_openai_error()["error"]
        return [encode_json_event(error_chunk), encode_done()]

    def _base_chunk(self) -> ChatCompletionChunk:
        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
        }

    def _chunk(self, delta: ChunkDelta, finish_reason: Optional[str] = None) -> ChatCompletionChunk:
        chunk = self._base_chunk()
        chunk["choices"] = [{"index": 0, "delta": delta, "finish_reason": finish_reason}]
        return chunk

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def collect(self, deltas: AsyncIterator[Delta]) -> ChatCompletionResponse:
        """Fold a delta sequence into one ``chat.completion`` object.

        Raises:
            GatewayError: The sequence ended with an ``Error`` delta.
        """
        content: list[str] = []
        reasoning: list[str] = []
        calls: dict[int, ToolCall] = {}
        finish_reason: Optional[str] = None

        async for delta in deltas:
            if isinstance(delta, ContentDelta):
                content.append(delta.text)
            elif isinstance(delta, ReasoningDelta):
                reasoning.append(delta.text)
            elif isinstance(delta, ToolCallDelta):
                call = calls.get(delta.index)
                if call is None:
                    call = {
                        "id": self._new_tool_id(),
                        "type": "function",
                        "function": {"name": delta.name or "", "arguments": ""},
                    }
                    calls[delta.index] = call
                call["function"]["arguments"] = (call["function"].get("arguments") or "") + delta.arguments
            elif isinstance(delta, Usage):
                self.usage = delta
            elif isinstance(delta, Error):
                raise error_from_kind(delta.kind, delta.message)
            elif isinstance(delta, Finish):
                finish_reason = delta.reason
                break

        if finish_reason is None:
            finish_reason = "tool_calls" if calls else "stop"

        text = "".join(content)
        reasoning_text = "".join(reasoning)
        tool_calls = [calls[index] for index in sorted(calls)]
        self._completion_chars = [text, reasoning_text] + [
            call["function"].get("arguments") or "" for call in tool_calls
        ]

        message: ChatMessage = {
            "role": "assistant",
            "content": text if text or not tool_calls else None,
        }
        if reasoning_text:
            message["reasoning_content"] = reasoning_text
        if tool_calls:
            message["tool_calls"] = tool_calls

        return {
            "id": self.completion_id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": self.usage_payload(),
        }

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def usage_payload(self) -> UsageDict:
        if self.usage is not None:
            usage = self.usage
        else:
            prompt = estimate_tokens(self.prompt_text)
            completion = estimate_tokens("".join(self._completion_chars))
            usage = Usage(prompt, completion, prompt + completion, 0)
        return {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
            "prompt_tokens_details": {"cached_tokens": usage.cached_tokens},
        }

    @staticmethod
    def _new_tool_id() -> str:
        return f"call_{uuid.uuid4().hex[:24]}"


def prompt_text_of(messages: Iterable[Mapping[str, Any]]) -> str:
    """Flatten upstream query messages for usage estimation."""
    return "\n".join(str(message.get("content") or "") for message in messages)
