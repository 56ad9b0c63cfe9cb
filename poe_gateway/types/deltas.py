"""Normalized deltas produced by the event transcoder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of one tool call.

    ``name`` is set on the first fragment of an index only. The
    ``arguments`` fragments of an index concatenate to a JSON object.
    """

    index: int
    name: Optional[str]
    arguments: str


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cached_tokens: int = 0


@dataclass(frozen=True)
class Finish:
    reason: str


@dataclass(frozen=True)
class Error:
    kind: str
    message: str


Delta = Union[ContentDelta, ReasoningDelta, ToolCallDelta, Usage, Finish, Error]
