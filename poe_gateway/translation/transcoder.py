"""Turns upstream bot events into normalized deltas."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Optional

from ..types.deltas import (
    ContentDelta,
    Delta,
    Error,
    Finish,
    ReasoningDelta,
    ToolCallDelta,
    Usage,
)
from ..upstream.errors import classify_error_text
from ..upstream.events import IGNORED_KINDS, UpstreamEvent
from .markup import DEFAULT_MARKERS, MarkupScanner, ReasoningMarkers, ScanResult

logger = logging.getLogger("poe-gateway")


class EventTranscoder:
    """State machine from upstream events to deltas.

    States: ``init`` -> ``streaming`` -> ``done`` | ``error``. Once a
    terminal state is reached further events are ignored, so a delta
    sequence holds at most one ``Finish`` or ``Error`` and it is last.
    """

    def __init__(
        self,
        markers: ReasoningMarkers = DEFAULT_MARKERS,
        *,
        parse_tool_calls: bool = False,
        known_tools: Optional[Iterable[str]] = None,
    ) -> None:
        self.state = "init"
        self.scanner = MarkupScanner(
            markers,
            parse_tool_calls=parse_tool_calls,
            known_tools=known_tools,
        )
        self.raw_text = ""
        self.tool_arguments: dict[int, str] = {}
        self.tool_names: dict[int, str] = {}
        self.file_refs: dict[str, str] = {}
        self._native_tool_index: dict[int, int] = {}
        self._next_tool_index = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in ("done", "error")

    @property
    def saw_tool_calls(self) -> bool:
        return bool(self.tool_names)

    def feed(self, event: UpstreamEvent) -> list[Delta]:
        if self.is_terminal:
            logger.debug("Ignoring %s event after terminal state", event.kind)
            return []
        if self.state == "init":
            self.state = "streaming"

        if event.malformed:
            return self._fail("transcode", f"Malformed upstream '{event.kind}' event")

        kind = event.kind
        if kind == "text":
            if not isinstance(event.data.get("text", ""), str):
                return self._fail("transcode", "Upstream text event has no text")
            return self._append_text(event.text)
        if kind == "replace_response":
            return self._replace_text(event.text)
        if kind == "file":
            self._register_file(event.data)
            return []
        if kind == "json":
            return self._handle_json(event.data)
        if kind == "meta":
            return self._usage_from(event.data)
        if kind == "error":
            return self._error(event.data)
        if kind == "done":
            return self._finish(event.data)

        if kind in IGNORED_KINDS:
            logger.debug("Skipping upstream %r event", kind)
            return []
        return self._fail("transcode", f"Unrecognized upstream event '{kind}'")

    def close(self) -> list[Delta]:
        """Finish a stream that ended without a terminal event."""
        if self.is_terminal:
            return []
        return self._finish({})

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _append_text(self, text: str) -> list[Delta]:
        if not text:
            return []
        self.raw_text += text
        return self._deltas_from(self.scanner.feed(text))

    def _replace_text(self, text: str) -> list[Delta]:
        if text.startswith(self.raw_text):
            return self._append_text(text[len(self.raw_text):])
        # Text already sent downstream cannot be retracted; restart scanning
        # on the replacement.
        logger.debug("Upstream replaced response text; restarting scan")
        self.scanner.reset()
        self.raw_text = ""
        return self._append_text(text)

    def _deltas_from(self, result: ScanResult) -> list[Delta]:
        deltas: list[Delta] = []
        for kind, value in result.pieces:
            if kind == "content":
                deltas.append(ContentDelta(self._substitute_file_refs(value)))
            elif kind == "reasoning":
                deltas.append(ReasoningDelta(value))
            elif kind == "tool_call":
                deltas.append(self._new_tool_call(value))
        return deltas

    def _new_tool_call(self, parsed: Mapping[str, Any]) -> ToolCallDelta:
        index = self._next_tool_index
        self._next_tool_index += 1
        try:
            arguments = json.dumps(parsed.get("arguments") or {}, ensure_ascii=False)
        except (TypeError, ValueError):
            arguments = "{}"
        name = str(parsed.get("name"))
        self.tool_names[index] = name
        self.tool_arguments[index] = arguments
        logger.debug("Tool call %d recognized: %s", index, name)
        return ToolCallDelta(index=index, name=name, arguments=arguments)

    # ------------------------------------------------------------------
    # Files, JSON and usage
    # ------------------------------------------------------------------

    def _register_file(self, data: Mapping[str, Any]) -> None:
        url = data.get("url")
        ref = data.get("inline_ref")
        if isinstance(url, str) and isinstance(ref, str) and ref:
            self.file_refs[ref] = url

    def _substitute_file_refs(self, text: str) -> str:
        for ref, url in self.file_refs.items():
            text = text.replace(f"[{ref}]", f"({url})")
        return text

    def _handle_json(self, data: Mapping[str, Any]) -> list[Delta]:
        deltas: list[Delta] = []
        choices = data.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                delta = choice.get("delta") if isinstance(choice, Mapping) else None
                if not isinstance(delta, Mapping):
                    continue
                calls = delta.get("tool_calls")
                if calls is None:
                    continue
                if not isinstance(calls, list):
                    return deltas + self._fail("transcode", "Upstream tool_calls is not a list")
                for call in calls:
                    fragment = self._native_tool_fragment(call)
                    if fragment is None:
                        return deltas + self._fail("transcode", f"Malformed upstream tool call: {call!r}")
                    deltas.append(fragment)
        deltas.extend(self._usage_from(data))
        return deltas

    def _native_tool_fragment(self, call: Any) -> Optional[ToolCallDelta]:
        """Fragment of a native tool call, or None when the shape is wrong."""
        if not isinstance(call, Mapping):
            return None
        upstream_index = call.get("index")
        if upstream_index is None:
            upstream_index = 0
        function = call.get("function") or {}
        if isinstance(upstream_index, bool) or not isinstance(upstream_index, int):
            return None
        if not isinstance(function, Mapping):
            return None
        fragment = function.get("arguments") or ""
        if not isinstance(fragment, str):
            return None
        index = self._native_tool_index.get(upstream_index)
        name: Optional[str] = None
        if index is None:
            index = self._next_tool_index
            self._next_tool_index += 1
            self._native_tool_index[upstream_index] = index
            name = str(function.get("name") or "")
            self.tool_names[index] = name
            self.tool_arguments[index] = ""
        self.tool_arguments[index] += fragment
        return ToolCallDelta(index=index, name=name, arguments=fragment)

    def _usage_from(self, data: Mapping[str, Any]) -> list[Delta]:
        usage = data.get("usage")
        if not isinstance(usage, Mapping):
            return []
        try:
            prompt = int(usage.get("prompt_tokens") or 0)
            completion = int(usage.get("completion_tokens") or 0)
            total = int(usage.get("total_tokens") or prompt + completion)
            details = usage.get("prompt_tokens_details") or {}
            cached = int(details.get("cached_tokens") or 0) if isinstance(details, Mapping) else 0
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed usage payload: %r", usage)
            return []
        return [Usage(prompt, completion, total, cached)]

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _flush(self) -> list[Delta]:
        return self._deltas_from(self.scanner.flush())

    def _finish(self, data: Mapping[str, Any]) -> list[Delta]:
        deltas = self._flush()
        deltas.extend(self._usage_from(data))
        reason = "tool_calls" if self.saw_tool_calls else "stop"
        deltas.append(Finish(reason))
        self.state = "done"
        return deltas

    def _error(self, data: Mapping[str, Any]) -> list[Delta]:
        message = str(data.get("text") or data.get("message") or "Upstream error")
        kind = data.get("kind")
        if not isinstance(kind, str) or not kind:
            kind = classify_error_text(message)
        logger.error("Upstream reported error (%s): %s", kind, message)
        return self._fail(kind, message)

    def _fail(self, kind: str, message: str) -> list[Delta]:
        deltas = self._flush()
        deltas.append(Error(kind, message))
        self.state = "error"
        return deltas
