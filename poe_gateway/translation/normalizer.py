"""Builds upstream bot queries from downstream chat-completion requests."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from typing import Any, Mapping, Optional, Protocol

from ..attachments.cache import AttachmentCache
from ..attachments.data_url import (
    decode_data_url,
    find_upstream_cdn_urls,
    is_upstream_cdn_url,
)
from ..core.exceptions import ValidationError
from ..model_mapping import ModelMapping
from ..types.chat import PoeAttachment, PoeMessage
from ..types.request import (
    AttachmentPart,
    ChatRequest,
    InlineData,
    Message,
    MessagePart,
    ReasoningControls,
    TextPart,
    ToolSpec,
    UpstreamReference,
    UpstreamRequest,
)
from .markup import DEFAULT_MARKERS, ReasoningMarkers
from .tool_prompt import render_tool_call, render_tool_prompt, render_tool_result

logger = logging.getLogger("poe-gateway")

CONTENT_TYPE = "text/markdown"
VALID_ROLES = {"system", "developer", "user", "assistant", "tool", "function"}
ROLE_MAP = {
    "assistant": "bot",
    "developer": "user",
    "tool": "user",
    "function": "user",
    "user": "user",
    "system": "system",
}


class FileUploader(Protocol):
    async def upload_file(self, source: str | InlineData, api_key: str) -> UpstreamReference:
        ...


# =============================================================================
# Payload parsing
# =============================================================================


def parse_chat_request(payload: Mapping[str, Any]) -> ChatRequest:
    """Validate a downstream JSON payload and build the canonical request.

    Unsupported OpenAI parameters are accepted and ignored.

    Raises:
        ValidationError: model or messages missing, or a message is malformed.
    """
    model = payload.get("model")
    if not isinstance(model, str) or not model.strip():
        raise ValidationError("You must provide a model parameter", code="missing_parameter")

    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list) or not raw_messages:
        raise ValidationError("You must provide a messages array", code="missing_parameter")

    messages = [_parse_message(item, i) for i, item in enumerate(raw_messages)]
    tools = _parse_tools(payload.get("tools"))

    extra_body = payload.get("extra_body")
    extensions = dict(extra_body) if isinstance(extra_body, Mapping) else {}

    stream_options = payload.get("stream_options")
    include_usage = bool(
        isinstance(stream_options, Mapping) and stream_options.get("include_usage")
    )

    stop = payload.get("stop")
    if isinstance(stop, str):
        stop_list = [stop]
    elif isinstance(stop, list):
        stop_list = [str(item) for item in stop if item]
    else:
        stop_list = []

    temperature = payload.get("temperature")
    logit_bias = payload.get("logit_bias")
    user = payload.get("user")

    return ChatRequest(
        model=model.strip(),
        messages=messages,
        tools=tools,
        reasoning=_parse_reasoning(payload, extensions),
        extensions=_without_reasoning_keys(extensions),
        stream=bool(payload.get("stream")),
        include_usage=include_usage,
        temperature=float(temperature) if isinstance(temperature, (int, float)) else None,
        stop=stop_list,
        logit_bias=dict(logit_bias) if isinstance(logit_bias, Mapping) else None,
        user=user if isinstance(user, str) else None,
    )


def _parse_message(item: Any, position: int) -> Message:
    if not isinstance(item, Mapping):
        raise ValidationError(f"messages[{position}] must be an object", code="invalid_message")
    role = item.get("role")
    if role not in VALID_ROLES:
        raise ValidationError(
            f"messages[{position}].role must be one of system, developer, user, assistant, tool",
            code="invalid_role",
        )
    if role == "function":
        role = "tool"

    content = item.get("content")
    parsed: str | list[MessagePart]
    if content is None:
        parsed = ""
    elif isinstance(content, str):
        parsed = content
    elif isinstance(content, list):
        parsed = [part for part in (_parse_part(p, position) for p in content) if part is not None]
    else:
        raise ValidationError(
            f"messages[{position}].content must be a string or an array", code="invalid_content"
        )

    tool_calls = item.get("tool_calls")
    return Message(
        role=role,
        content=parsed,
        tool_calls=[call for call in tool_calls if isinstance(call, Mapping)]
        if isinstance(tool_calls, list)
        else [],
        tool_call_id=item.get("tool_call_id") if isinstance(item.get("tool_call_id"), str) else None,
        name=item.get("name") if isinstance(item.get("name"), str) else None,
    )


def _parse_part(part: Any, position: int) -> Optional[MessagePart]:
    if isinstance(part, str):
        return TextPart(part)
    if not isinstance(part, Mapping):
        return None
    part_type = part.get("type")
    if part_type == "text":
        return TextPart(str(part.get("text") or ""))
    if part_type == "image_url":
        image = part.get("image_url")
        url = image.get("url") if isinstance(image, Mapping) else image
        if not isinstance(url, str) or not url:
            raise ValidationError(
                f"messages[{position}] image_url part has no url", code="invalid_attachment"
            )
        return _attachment_from_url(url)
    if part_type == "file":
        file_obj = part.get("file")
        if not isinstance(file_obj, Mapping):
            raise ValidationError(f"messages[{position}] file part is empty", code="invalid_attachment")
        data = file_obj.get("file_data")
        if isinstance(data, str) and data:
            return _attachment_from_url(data, filename=file_obj.get("filename"))
        url = file_obj.get("file_url") or file_obj.get("url")
        if isinstance(url, str) and url:
            return _attachment_from_url(url)
        raise ValidationError(f"messages[{position}] file part has no data", code="invalid_attachment")
    logger.debug("Ignoring unsupported content part type %r", part_type)
    return None


def _attachment_from_url(url: str, filename: Optional[str] = None) -> AttachmentPart:
    if url.startswith("data:"):
        inline = decode_data_url(url, filename=filename if isinstance(filename, str) else None)
        return AttachmentPart(source=inline, mime_hint=inline.mime_type)
    mime_hint, _ = mimetypes.guess_type(url.split("?", 1)[0])
    return AttachmentPart(source=url, mime_hint=mime_hint)


def _parse_tools(raw: Any) -> list[ToolSpec]:
    if not isinstance(raw, list):
        return []
    tools: list[ToolSpec] = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            continue
        function = entry.get("function") if entry.get("type", "function") == "function" else None
        if not isinstance(function, Mapping):
            continue
        name = function.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError(f"tools[{i}].function.name is required", code="invalid_tool")
        parameters = function.get("parameters")
        tools.append(
            ToolSpec(
                name=name,
                description=str(function.get("description") or ""),
                parameters=dict(parameters) if isinstance(parameters, Mapping) else {},
            )
        )
    return tools


def _parse_reasoning(payload: Mapping[str, Any], extensions: Mapping[str, Any]) -> ReasoningControls:
    effort = payload.get("reasoning_effort")
    if not isinstance(effort, str) or not effort:
        effort = None

    budget: Optional[int] = None
    thinking = payload.get("thinking")
    if isinstance(thinking, Mapping) and isinstance(thinking.get("budget_tokens"), int):
        budget = thinking["budget_tokens"]
    if budget is None:
        google = extensions.get("google")
        config = google.get("thinking_config") if isinstance(google, Mapping) else None
        if isinstance(config, Mapping) and isinstance(config.get("thinking_budget"), int):
            budget = config["thinking_budget"]

    return ReasoningControls(effort=effort, budget_tokens=budget)


def _without_reasoning_keys(extensions: dict[str, Any]) -> dict[str, Any]:
    """Drop the thinking config already turned into a --thinking_budget flag."""
    google = extensions.get("google")
    if not isinstance(google, Mapping) or "thinking_config" not in google:
        return extensions
    stripped = {key: value for key, value in extensions.items() if key != "google"}
    rest = {key: value for key, value in google.items() if key != "thinking_config"}
    if rest:
        stripped["google"] = rest
    return stripped


# =============================================================================
# Normalizer
# =============================================================================


class RequestNormalizer:
    """Turns a ChatRequest into an UpstreamRequest.

    Attachments are resolved through the attachment cache (concurrently),
    tools are described in a synthesized system message, and the model
    name is mapped to the upstream bot.
    """

    def __init__(
        self,
        cache: AttachmentCache,
        uploader: FileUploader,
        model_mapping: ModelMapping,
        *,
        markers: ReasoningMarkers = DEFAULT_MARKERS,
    ) -> None:
        self.cache = cache
        self.uploader = uploader
        self.model_mapping = model_mapping
        self.markers = markers

    async def normalize(self, request: ChatRequest, api_key: str) -> UpstreamRequest:
        if not request.model:
            raise ValidationError("You must provide a model parameter", code="missing_parameter")
        if not request.messages:
            raise ValidationError("You must provide a messages array", code="missing_parameter")

        route = self.model_mapping.resolve(request.model)
        messages = _carry_forward_bot_images(request.messages)
        references = await self._resolve_attachments(messages, api_key)

        query: list[PoeMessage] = []
        if request.tools:
            query.append(
                self._poe_message(
                    "system",
                    render_tool_prompt(request.tools, self.markers),
                    [],
                    route.replace_response,
                )
            )
        for message in messages:
            attachments = [references[id(part)] for part in message.attachments()]
            query.append(
                self._poe_message(
                    message.role,
                    self._render_text(message),
                    attachments,
                    route.replace_response,
                )
            )

        _apply_last_user_options(query, request.reasoning, request.extensions)

        logger.info(
            "Normalized request for %s -> bot %s (%d messages, %d tools, %d attachments)",
            request.model,
            route.bot_name,
            len(query),
            len(request.tools),
            len(references),
        )
        return UpstreamRequest(
            bot_name=route.bot_name,
            messages=query,
            temperature=request.temperature,
            stop_sequences=list(request.stop),
            logit_bias=request.logit_bias,
            user_id=request.user or "",
            conversation_id=f"c-{uuid.uuid4().hex}",
            message_id=f"m-{uuid.uuid4().hex}",
        )

    async def _resolve_attachments(
        self, messages: list[Message], api_key: str
    ) -> dict[int, UpstreamReference]:
        parts = [part for message in messages for part in message.attachments()]
        if not parts:
            return {}
        resolved = await asyncio.gather(*(self._resolve(part, api_key) for part in parts))
        return {id(part): ref for part, ref in zip(parts, resolved)}

    async def _resolve(self, part: AttachmentPart, api_key: str) -> UpstreamReference:
        source = part.source
        if isinstance(source, str) and is_upstream_cdn_url(source):
            name = source.rsplit("/", 1)[-1].split("?", 1)[0] or "image"
            return UpstreamReference(
                url=source,
                content_type=part.mime_hint or "image/png",
                name=name,
            )

        async def upload() -> UpstreamReference:
            return await self.uploader.upload_file(source, api_key)

        return await self.cache.resolve(source, upload)

    def _render_text(self, message: Message) -> str:
        text = message.text()
        if message.role == "assistant" and message.tool_calls:
            calls = "\n".join(render_tool_call(call, self.markers) for call in message.tool_calls)
            return f"{text}\n{calls}" if text else calls
        if message.role == "tool":
            return render_tool_result(text, message.tool_call_id, message.name)
        return text

    @staticmethod
    def _poe_message(
        role: str,
        content: str,
        attachments: list[UpstreamReference],
        replace_response: bool,
    ) -> PoeMessage:
        poe_role = ROLE_MAP.get(role, "user")
        if poe_role == "system" and replace_response:
            poe_role = "user"
        message: PoeMessage = {
            "role": poe_role,
            "content": content,
            "content_type": CONTENT_TYPE,
        }
        if attachments:
            message["attachments"] = [
                PoeAttachment(url=ref.url, content_type=ref.content_type, name=ref.name)
                for ref in attachments
            ]
        return message


def _carry_forward_bot_images(messages: list[Message]) -> list[Message]:
    """Attach images the bot produced last turn to the final user message.

    Lets follow-up requests such as "make it blue" reach image bots with the
    image they are meant to edit.
    """
    if len(messages) < 2 or messages[-1].role != "user" or messages[-2].role != "assistant":
        return messages
    assistant = messages[-2]
    urls = find_upstream_cdn_urls(assistant.text())
    for part in assistant.attachments():
        if isinstance(part.source, str) and is_upstream_cdn_url(part.source):
            urls.append(part.source)
    if not urls:
        return messages

    user = messages[-1]
    existing = {part.source for part in user.attachments()}
    new_parts = [AttachmentPart(source=url) for url in dict.fromkeys(urls) if url not in existing]
    if not new_parts:
        return messages
    content: list[MessagePart] = (
        [TextPart(user.content)] if isinstance(user.content, str) else list(user.content)
    )
    carried = Message(
        role=user.role,
        content=content + new_parts,
        tool_calls=user.tool_calls,
        tool_call_id=user.tool_call_id,
        name=user.name,
    )
    logger.debug("Carried %d bot image(s) into the last user message", len(new_parts))
    return messages[:-1] + [carried]


def _apply_last_user_options(
    query: list[PoeMessage],
    reasoning: ReasoningControls,
    extensions: Mapping[str, Any],
) -> None:
    """Put reasoning flags and extension parameters on the last user message."""
    target = next((message for message in reversed(query) if message["role"] == "user"), None)
    if target is None:
        return
    suffix = ""
    if reasoning.effort:
        suffix += f" --reasoning_effort {reasoning.effort}"
    if reasoning.budget_tokens is not None:
        suffix += f" --thinking_budget {reasoning.budget_tokens}"
    if suffix:
        target["content"] = target["content"] + suffix
    if extensions:
        target["parameters"] = dict(extensions)
