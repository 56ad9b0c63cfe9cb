"""Wire types for both sides of the gateway.

Types are separated into:
- OpenAI-compatible types: the downstream request/response/chunk shapes
- Poe protocol types: the upstream bot query body
"""

from typing import Any
from typing_extensions import TypedDict


# =============================================================================
# OpenAI-Compatible Types
# =============================================================================


class FunctionCall(TypedDict, total=False):
    """A function call within a tool call.

    Attributes:
        name: Name of the function. None on follow-up stream chunks.
        arguments: JSON string (or a fragment of one while streaming).
    """
    name: str | None
    arguments: str | None


class ToolCall(TypedDict, total=False):
    """A tool call in a chat response.

    Attributes:
        id: Identifier the client echoes back in the tool result message.
        type: Always "function".
        function: The function to call with its arguments.
        index: Position in the tool_calls array, used to join stream chunks.
    """
    id: str
    type: str
    function: FunctionCall
    index: int


class ContentPart(TypedDict, total=False):
    """A content part of a multimodal message.

    Attributes:
        type: "text", "image_url" or "file".
        text: Text content (for "text").
        image_url: {"url": ...} with an http(s) or data: URL.
        file: {"file_data": data URL, "filename": ...} for inline files.
    """
    type: str
    text: str | None
    image_url: dict[str, Any] | None
    file: dict[str, Any] | None


class ChatMessage(TypedDict, total=False):
    role: str
    content: str | list[ContentPart] | None
    reasoning_content: str | None
    name: str | None
    tool_calls: list[ToolCall] | None
    tool_call_id: str | None


class Delta(TypedDict, total=False):
    """A streamed delta of a choice.

    Attributes:
        role: "assistant" on the first chunk only.
        content: Incremental answer text.
        reasoning_content: Incremental reasoning text.
        tool_calls: Tool call fragments keyed by index.
    """
    role: str | None
    content: str | None
    reasoning_content: str | None
    tool_calls: list[ToolCall] | None


class Choice(TypedDict, total=False):
    """A choice in a chat completion response or chunk.

    Attributes:
        index: Always 0; the gateway produces a single choice.
        delta: Incremental content for streaming responses.
        message: The complete message for non-streaming responses.
        finish_reason: "stop" or "tool_calls"; None until the final chunk.
    """
    index: int
    delta: Delta | None
    message: ChatMessage | None
    finish_reason: str | None


class Usage(TypedDict, total=False):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    prompt_tokens_details: dict[str, int] | None


class ChatCompletionChunk(TypedDict, total=False):
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]
    usage: Usage | None
    error: dict[str, Any] | None


class ChatCompletionResponse(TypedDict, total=False):
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]
    usage: Usage | None


# =============================================================================
# Poe Protocol Types
# =============================================================================


class PoeAttachment(TypedDict, total=False):
    """A file reference inside a Poe protocol message.

    Attributes:
        url: Upstream CDN URL returned by the file upload endpoint.
        content_type: MIME type of the file.
        name: File name shown to the bot.
    """
    url: str
    content_type: str
    name: str


class PoeMessage(TypedDict, total=False):
    """One message of a Poe query.

    Attributes:
        role: "system", "user" or "bot".
        content: Message text.
        content_type: Always "text/markdown".
        attachments: Uploaded files referenced by this message.
        parameters: Provider-specific options forwarded uninterpreted.
    """
    role: str
    content: str
    content_type: str
    attachments: list[PoeAttachment]
    parameters: dict[str, Any]


class PoeQueryRequest(TypedDict, total=False):
    version: str
    type: str
    query: list[PoeMessage]
    user_id: str
    conversation_id: str
    message_id: str
    temperature: float | None
    logit_bias: dict[str, float] | None
    stop_sequences: list[str]
