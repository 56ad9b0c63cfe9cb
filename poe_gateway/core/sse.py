"""Server-sent event framing shared by the upstream decoder and downstream encoder."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    data: Optional[str]
    event: Optional[str] = None
    other_lines: list[str] = field(default_factory=list)

    def encode(self) -> bytes:
        lines: list[str] = []
        if self.event:
            lines.append(f"event: {self.event}")
        lines.extend(self.other_lines)
        if self.data is not None:
            for item in self.data.split("\n"):
                if item:
                    lines.append(f"data: {item}")
                else:
                    lines.append("data:")
        text = "\n".join(lines) + "\n\n"
        return text.encode("utf-8")


def encode_json_event(payload: Any) -> bytes:
    """Encode one downstream ``data:`` chunk."""
    return SSEEvent(data=json.dumps(payload, ensure_ascii=False)).encode()


def encode_done() -> bytes:
    return SSEEvent(data=DONE_SENTINEL).encode()


class SSEDecoder:
    """Incremental SSE parser tolerant of events split across byte chunks."""

    def __init__(self) -> None:
        self._buffer = ""
        self._pending = b""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        if not chunk:
            return []
        # Hold back an incomplete UTF-8 sequence at the end of the chunk.
        raw = self._pending + chunk
        try:
            text = raw.decode("utf-8")
            self._pending = b""
        except UnicodeDecodeError as exc:
            if exc.start >= len(raw) - 3:
                text = raw[:exc.start].decode("utf-8", errors="replace")
                self._pending = raw[exc.start:]
            else:
                text = raw.decode("utf-8", errors="replace")
                self._pending = b""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        self._buffer += text
        events: list[SSEEvent] = []

        while True:
            sep_index = self._buffer.find("\n\n")
            if sep_index == -1:
                break
            raw_event = self._buffer[:sep_index]
            self._buffer = self._buffer[sep_index + 2:]
            if not raw_event.strip():
                continue
            event = self._parse_event(raw_event)
            if event is not None:
                events.append(event)

        return events

    def flush(self) -> list[SSEEvent]:
        """Parse whatever is left once the byte stream has ended."""
        leftover = self._buffer
        if self._pending:
            leftover += self._pending.decode("utf-8", errors="replace")
        self._buffer = ""
        self._pending = b""
        if not leftover.strip():
            return []
        event = self._parse_event(leftover.strip("\n"))
        return [event] if event is not None else []

    @staticmethod
    def _parse_event(raw: str) -> Optional[SSEEvent]:
        data_lines: list[str] = []
        other_lines: list[str] = []
        event_name: Optional[str] = None
        for line in raw.split("\n"):
            if line.startswith(":"):
                continue
            if line.startswith("data:"):
                value = line[5:]
                data_lines.append(value[1:] if value.startswith(" ") else value)
            elif line.startswith("event:"):
                event_name = line[6:].strip()
            else:
                other_lines.append(line)
        if not data_lines and event_name is None:
            return None
        data = "\n".join(data_lines) if data_lines else None
        return SSEEvent(data=data, event=event_name, other_lines=other_lines)
