"""Tool definitions and tool history rendered as a prompt convention.

Not every bot accepts structured tools, so tools are described to the model
in a system message and the model answers with ``<tool_call>`` blocks that
the transcoder turns back into structured calls.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from ..types.request import ToolSpec
from .markup import DEFAULT_MARKERS, ReasoningMarkers

TOOL_PROMPT_HEADER = """# Tools

You can call the following tools. Each tool is described as JSON with its name, description and a JSON Schema for its parameters.

<tools>
{tools}
</tools>

To call a tool, reply with one block per call, exactly in this form:
<{tag}>{{"name": "<tool name>", "arguments": {{<arguments as a JSON object>}}}}</{tag}>

Rules:
- Use only the tools listed above and only arguments allowed by their schema.
- Several calls may follow each other; write no text inside the blocks other than the JSON.
- After the calls, stop and wait. Results arrive in <tool_result> blocks in the next user message.
- If no tool is needed, answer normally without any block."""


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def render_tool_prompt(
    tools: Iterable[ToolSpec], markers: ReasoningMarkers = DEFAULT_MARKERS
) -> str:
    """Deterministic system prompt describing the given tools."""
    lines = []
    for tool in tools:
        entry = {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters or {"type": "object", "properties": {}},
        }
        lines.append(f"<tool>{_dumps(entry)}</tool>")
    return TOOL_PROMPT_HEADER.format(tools="\n".join(lines), tag=markers.tool_tag)


def render_tool_call(call: Mapping[str, Any], markers: ReasoningMarkers = DEFAULT_MARKERS) -> str:
    """Render an assistant tool call from the conversation history."""
    function = call.get("function") or {}
    name = function.get("name") or ""
    raw_arguments = function.get("arguments")
    if isinstance(raw_arguments, str):
        try:
            arguments = json.loads(raw_arguments) if raw_arguments.strip() else {}
        except ValueError:
            arguments = raw_arguments
    else:
        arguments = raw_arguments or {}
    body = _dumps({"name": name, "arguments": arguments})
    return f"<{markers.tool_tag}>{body}</{markers.tool_tag}>"


def render_tool_result(content: str, tool_call_id: str | None, name: str | None = None) -> str:
    """Render a tool message as a ``<tool_result>`` block for the bot."""
    attrs = []
    if tool_call_id:
        attrs.append(f'tool_call_id="{tool_call_id}"')
    if name:
        attrs.append(f'name="{name}"')
    attr_text = (" " + " ".join(attrs)) if attrs else ""
    return f"<tool_result{attr_text}>{content}</tool_result>"
