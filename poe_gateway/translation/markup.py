"""Incremental scanner for reasoning and tool-call markup in bot text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

logger = logging.getLogger("poe-gateway")


@dataclass(frozen=True)
class ReasoningMarkers:
    """Markup conventions recognized in upstream text.

    Attributes:
        think_tag: Reasoning wrapped in ``<think>...</think>``.
        tool_tag: Tool calls wrapped in ``<tool_call>...</tool_call>``.
        thinking_headers: Headers that open a quoted reasoning block when
            they fill a line of their own. Only the first such header in a
            reply counts. Each following line prefixed with ``quote_prefix``
            is reasoning; the first other line resumes the answer.
        quote_prefix: Line prefix of quoted reasoning.
    """

    think_tag: str = "think"
    tool_tag: str = "tool_call"
    thinking_headers: tuple[str, ...] = ("*Thinking...*", "Thinking...")
    quote_prefix: str = ">"


DEFAULT_MARKERS = ReasoningMarkers()


def _split_tail_for_prefix(text: str, tag: str) -> tuple[str, str]:
    max_prefix = 0
    max_len = min(len(tag) - 1, len(text))
    for i in range(1, max_len + 1):
        if text.endswith(tag[:i]):
            max_prefix = i
    if max_prefix:
        return text[:-max_prefix], text[-max_prefix:]
    return text, ""


def _maybe_json(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        return value


ARG_PAIR_RE = re.compile(
    r"<arg_key>(?P<key>.*?)</arg_key>\s*<arg_value>(?P<value>.*?)</arg_value>",
    re.DOTALL,
)
TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def parse_tool_call_block(text: str) -> Optional[dict[str, Any]]:
    """Parse the body of a tool-call block into ``{"name", "arguments"}``.

    Accepts the JSON form ``{"name": ..., "arguments": {...}}`` and the
    ``name<arg_key>k</arg_key><arg_value>v</arg_value>`` form. Returns None
    when the body is neither.
    """
    stripped = text.strip()
    if not stripped:
        return None

    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        name = payload.get("name")
        arguments = payload.get("arguments", payload.get("parameters", {}))
        if isinstance(arguments, str):
            arguments = _maybe_json(arguments)
        if not isinstance(name, str) or not name or not isinstance(arguments, dict):
            return None
        return {"name": name, "arguments": arguments}

    arg_start = stripped.find("<arg_key>")
    if arg_start == -1:
        name = stripped
        args: dict[str, Any] = {}
    else:
        name = stripped[:arg_start].strip()
        args = {}
        for match in ARG_PAIR_RE.finditer(stripped[arg_start:]):
            key = match.group("key").strip()
            if not key:
                continue
            args[key] = _maybe_json(match.group("value").strip())
    if not name or not TOOL_NAME_RE.match(name):
        return None
    return {"name": name, "arguments": args}


@dataclass
class ScanResult:
    """Output of one scanner step, in the order it was produced.

    ``pieces`` holds ("content" | "reasoning", text) and
    ("tool_call", parsed) tuples.
    """

    pieces: list[tuple[str, Any]] = field(default_factory=list)

    def add(self, kind: str, value: Any) -> None:
        if kind in ("content", "reasoning"):
            if not value:
                return
            if self.pieces and self.pieces[-1][0] == kind:
                self.pieces[-1] = (kind, self.pieces[-1][1] + value)
                return
        self.pieces.append((kind, value))

    @property
    def content(self) -> str:
        return "".join(value for kind, value in self.pieces if kind == "content")

    @property
    def reasoning(self) -> str:
        return "".join(value for kind, value in self.pieces if kind == "reasoning")

    @property
    def tool_calls(self) -> list[dict[str, Any]]:
        return [value for kind, value in self.pieces if kind == "tool_call"]


class MarkupScanner:
    """Incremental scanner for reasoning blocks and tool-call tags.

    Text that might be the start of a tag is held back until the next chunk
    decides it, so no more than one tag's worth of text is ever buffered.
    Modes: ``start`` (deciding whether a quoted thinking header opens the
    current line), ``text``, ``think``, ``quote`` and ``tool``.
    """

    def __init__(
        self,
        markers: ReasoningMarkers = DEFAULT_MARKERS,
        *,
        parse_thinking: bool = True,
        parse_tool_calls: bool = True,
        known_tools: Optional[Iterable[str]] = None,
    ) -> None:
        self.markers = markers
        self.parse_thinking = parse_thinking
        self.parse_tool_calls = parse_tool_calls
        self.known_tools = set(known_tools) if known_tools is not None else None
        self.think_open = f"<{markers.think_tag}>"
        self.think_close = f"</{markers.think_tag}>"
        self.tool_open = f"<{markers.tool_tag}>"
        self.tool_close = f"</{markers.tool_tag}>"
        self._open_tags = [
            tag
            for tag, enabled in [
                (self.think_open, self.parse_thinking),
                (self.tool_open, self.parse_tool_calls),
            ]
            if enabled
        ]
        self.reset()

    def reset(self) -> None:
        self._header_seen = False
        self.mode = "start" if self._headers_pending else "text"
        self.buffer = ""
        self.tool_buffer = ""
        self._line_start = True
        self._pending_newline = False

    @property
    def _headers_pending(self) -> bool:
        return self.parse_thinking and bool(self.markers.thinking_headers) and not self._header_seen

    def feed(self, text: str) -> ScanResult:
        out = ScanResult()
        if not text:
            return out
        self.buffer += text

        while self.buffer:
            if self.mode == "start":
                if not self._scan_start():
                    break
                continue
            if self.mode == "text":
                if not self._scan_text(out):
                    break
                continue
            if self.mode == "think":
                if not self._scan_think(out):
                    break
                continue
            if self.mode == "quote":
                if not self._scan_quote(out):
                    break
                continue
            if self.mode == "tool":
                if not self._scan_tool(out):
                    break
                continue

        return out

    def flush(self) -> ScanResult:
        """Emit whatever is held back; unterminated markup comes out verbatim."""
        out = ScanResult()
        if self.mode in ("start", "text"):
            out.add("content", self.buffer)
        elif self.mode == "think":
            out.add("reasoning", self.buffer)
        elif self.mode == "quote":
            body = self.buffer.strip()
            if not self._line_start:
                out.add("reasoning", self.buffer)
            elif body and body != self.markers.quote_prefix:
                out.add("content", self.buffer.lstrip())
        elif self.mode == "tool":
            out.add("content", f"{self.tool_open}{self.tool_buffer}{self.buffer}")
        self.reset()
        return out

    # Each step returns True when it consumed something and the loop should
    # continue, False when it needs more input.

    def _scan_start(self) -> bool:
        stripped = self.buffer.lstrip()
        if not stripped:
            return False
        for header in self.markers.thinking_headers:
            if stripped.startswith(header):
                rest = stripped[len(header):]
                newline = rest.find("\n")
                if newline == -1:
                    if rest.strip():
                        break
                    return False
                if rest[:newline].strip():
                    break
                self.buffer = rest[newline + 1:]
                self.mode = "quote"
                self._header_seen = True
                self._line_start = True
                self._pending_newline = False
                return True
            if header.startswith(stripped):
                return False
        self.mode = "text"
        return True

    def _scan_text(self, out: ScanResult) -> bool:
        idx = self.buffer.find("<") if self._open_tags else -1
        if self._headers_pending:
            newline = self.buffer.find("\n")
            if newline != -1 and (idx == -1 or newline < idx):
                out.add("content", self.buffer[: newline + 1])
                self.buffer = self.buffer[newline + 1 :]
                self.mode = "start"
                return True
        if idx == -1:
            out.add("content", self.buffer)
            self.buffer = ""
            return False
        if idx > 0:
            out.add("content", self.buffer[:idx])
            self.buffer = self.buffer[idx:]
        if self.parse_thinking and self.buffer.startswith(self.think_open):
            self.buffer = self.buffer[len(self.think_open):]
            self.mode = "think"
            return True
        if self.parse_tool_calls and self.buffer.startswith(self.tool_open):
            self.buffer = self.buffer[len(self.tool_open):]
            self.tool_buffer = ""
            self.mode = "tool"
            return True
        if any(tag.startswith(self.buffer) for tag in self._open_tags):
            return False
        out.add("content", self.buffer[0])
        self.buffer = self.buffer[1:]
        return True

    def _scan_think(self, out: ScanResult) -> bool:
        idx = self.buffer.find(self.think_close)
        if idx == -1:
            head, tail = _split_tail_for_prefix(self.buffer, self.think_close)
            out.add("reasoning", head)
            self.buffer = tail
            return False
        out.add("reasoning", self.buffer[:idx])
        self.buffer = self.buffer[idx + len(self.think_close):]
        self.mode = "text"
        return True

    def _scan_quote(self, out: ScanResult) -> bool:
        prefix = self.markers.quote_prefix
        if self._line_start:
            body = self.buffer.lstrip(" \t")
            if not body:
                return False
            if body.startswith("\n"):
                self.buffer = body[1:]
                return True
            if len(body) < len(prefix) and prefix.startswith(body):
                return False
            if body.startswith(prefix):
                body = body[len(prefix):]
                if not body:
                    # The space after the prefix may still be on its way.
                    return False
                if body.startswith(" "):
                    body = body[1:]
                if self._pending_newline:
                    out.add("reasoning", "\n")
                    self._pending_newline = False
                self.buffer = body
                self._line_start = False
                return True
            # First unquoted line: the answer begins here.
            self.buffer = body
            self.mode = "text"
            self._pending_newline = False
            return True

        idx = self.buffer.find("\n")
        if idx == -1:
            out.add("reasoning", self.buffer)
            self.buffer = ""
            return False
        out.add("reasoning", self.buffer[:idx])
        self.buffer = self.buffer[idx + 1:]
        self._line_start = True
        self._pending_newline = True
        return True

    def _scan_tool(self, out: ScanResult) -> bool:
        idx = self.buffer.find(self.tool_close)
        if idx == -1:
            head, tail = _split_tail_for_prefix(self.buffer, self.tool_close)
            self.tool_buffer += head
            self.buffer = tail
            return False
        self.tool_buffer += self.buffer[:idx]
        self.buffer = self.buffer[idx + len(self.tool_close):]
        parsed = parse_tool_call_block(self.tool_buffer)
        if parsed and self.known_tools is not None and parsed["name"] not in self.known_tools:
            logger.warning("Model called undeclared tool %r; keeping markup as text", parsed["name"])
            parsed = None
        if parsed:
            out.add("tool_call", parsed)
        else:
            out.add("content", self.tool_open + self.tool_buffer + self.tool_close)
        self.tool_buffer = ""
        self.mode = "text"
        return True
