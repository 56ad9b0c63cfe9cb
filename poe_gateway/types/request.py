"""Canonical request model built from a downstream chat-completion payload."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .chat import PoeMessage


@dataclass(frozen=True)
class InlineData:
    """Attachment bytes carried inside the request (decoded data: URL)."""

    data: bytes
    mime_type: str = "application/octet-stream"
    filename: Optional[str] = None


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class AttachmentPart:
    """An image or file attached to a message.

    ``source`` is either a remote URL or the decoded inline bytes.
    """

    source: Union[str, InlineData]
    mime_hint: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return isinstance(self.source, InlineData)


MessagePart = Union[TextPart, AttachmentPart]


@dataclass
class Message:
    role: str
    content: Union[str, list[MessagePart]]
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def text(self) -> str:
        """Concatenated text of this message, ignoring attachments."""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    def attachments(self) -> list[AttachmentPart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, AttachmentPart)]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReasoningControls:
    effort: Optional[str] = None
    budget_tokens: Optional[int] = None

    def is_empty(self) -> bool:
        return self.effort is None and self.budget_tokens is None


@dataclass
class ChatRequest:
    """Canonical downstream request.

    ``extensions`` holds provider-specific keys from ``extra_body`` that
    the gateway forwards without interpreting.
    """

    model: str
    messages: list[Message]
    tools: list[ToolSpec] = field(default_factory=list)
    reasoning: ReasoningControls = field(default_factory=ReasoningControls)
    extensions: dict[str, Any] = field(default_factory=dict)
    stream: bool = False
    include_usage: bool = False
    temperature: Optional[float] = None
    stop: list[str] = field(default_factory=list)
    logit_bias: Optional[dict[str, float]] = None
    user: Optional[str] = None


@dataclass(frozen=True)
class UpstreamReference:
    """A file stored by the upstream provider, usable in later queries."""

    url: str
    content_type: str
    name: str
    size_bytes: int = 0


@dataclass
class UpstreamRequest:
    """A Poe bot query ready to send."""

    bot_name: str
    messages: list[PoeMessage]
    temperature: Optional[float] = None
    stop_sequences: list[str] = field(default_factory=list)
    logit_bias: Optional[dict[str, float]] = None
    user_id: str = ""
    conversation_id: str = ""
    message_id: str = ""
