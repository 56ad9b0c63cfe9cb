"""Type definitions for the gateway."""

from .chat import (
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatMessage,
    Choice,
    ContentPart,
    Delta,
    FunctionCall,
    PoeAttachment,
    PoeMessage,
    PoeQueryRequest,
    ToolCall,
    Usage,
)

__all__ = [
    "ChatCompletionChunk",
    "ChatCompletionResponse",
    "ChatMessage",
    "Choice",
    "ContentPart",
    "Delta",
    "FunctionCall",
    "PoeAttachment",
    "PoeMessage",
    "PoeQueryRequest",
    "ToolCall",
    "Usage",
]
