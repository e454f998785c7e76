"""
Chat message types, one dataclass per role.

    ChatMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage

Two JSON shapes are understood:

  tagged  {"user": {"content": "hi"}}
          {"assistant": {"content": ["..."] | [] | null | "...", "tool_calls": [...]}}
          {"tool": {"content": "...", "tool_call_id": "call_1"}}
  role    {"role": "user", "content": "hi"}   (OpenAI chat format)

The OpenAI format is also what the generation backends speak, so the
orchestrator converts with to_openai() / assistant_from_openai().
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Union
from uuid import uuid4

from poetloop.errors import InvalidRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallArgument:
    name: str
    value: str


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: tuple[ToolCallArgument, ...] = ()

    def arguments_dict(self) -> dict[str, str]:
        return {a.name: a.value for a in self.arguments}


@dataclass(frozen=True)
class ToolCall:
    id: str
    function: FunctionCall


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: str = field(default="system", init=False)


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: str = field(default="user", init=False)


@dataclass(frozen=True)
class AssistantMessage:
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    role: str = field(default="assistant", init=False)


@dataclass(frozen=True)
class ToolMessage:
    content: str
    tool_call_id: str
    role: str = field(default="tool", init=False)


ChatMessage = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


# ---------------------------------------------------------------------------
# Tool-call arguments
# ---------------------------------------------------------------------------

def _argument_value(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def parse_arguments(raw) -> tuple[ToolCallArgument, ...]:
    """
    Turn backend tool-call arguments into ordered name/value pairs.
    Accepts a JSON object string (OpenAI), a dict (Ollama) or a list of
    {"name", "value"} pairs. Unparseable text becomes a single "input" argument.
    """
    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return (ToolCallArgument(name="input", value=raw),)
    if isinstance(raw, dict):
        return tuple(ToolCallArgument(name=str(k), value=_argument_value(v)) for k, v in raw.items())
    if isinstance(raw, list):
        args = []
        for item in raw:
            if not isinstance(item, dict) or "name" not in item:
                raise InvalidRequest(f"Malformed tool call argument: {item!r}")
            args.append(ToolCallArgument(name=str(item["name"]), value=_argument_value(item.get("value", ""))))
        return tuple(args)
    return (ToolCallArgument(name="input", value=_argument_value(raw)),)


def _tool_call_from_dict(data: dict) -> ToolCall:
    fn = data.get("function") or {}
    name = fn.get("name", "")
    if not name:
        raise InvalidRequest(f"Tool call without a function name: {data!r}")
    call_id = data.get("id") or f"call_{uuid4().hex[:12]}"
    return ToolCall(
        id=str(call_id),
        function=FunctionCall(name=name, arguments=parse_arguments(fn.get("arguments"))),
    )


def _tool_call_to_openai(call: ToolCall) -> dict:
    return {
        "id": call.id,
        "type": "function",
        "function": {
            "name": call.function.name,
            "arguments": json.dumps(call.function.arguments_dict()),
        },
    }


def _tool_call_to_wire(call: ToolCall) -> dict:
    return {
        "id": call.id,
        "function": {
            "name": call.function.name,
            "arguments": [{"name": a.name, "value": a.value} for a in call.function.arguments],
        },
    }


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def _optional_content(value) -> str | None:
    """Assistant content may arrive as null, a string, or a 0/1-element list."""
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    return str(value)


def from_wire(data: dict) -> ChatMessage:
    """Build a ChatMessage from either the tagged or the role JSON shape."""
    if not isinstance(data, dict):
        raise InvalidRequest(f"Chat message must be an object, got {type(data).__name__}")

    if "role" in data:
        role, body = data["role"], data
    elif len(data) == 1:
        role, body = next(iter(data.items()))
        if not isinstance(body, dict):
            raise InvalidRequest(f"Chat message body for '{role}' must be an object")
    else:
        raise InvalidRequest(f"Cannot determine chat message role from keys {sorted(data)}")

    if role == "system":
        return SystemMessage(content=str(body.get("content") or ""))
    if role == "user":
        return UserMessage(content=str(body.get("content") or ""))
    if role == "assistant":
        calls = body.get("tool_calls") or []
        return AssistantMessage(
            content=_optional_content(body.get("content")),
            tool_calls=tuple(_tool_call_from_dict(c) for c in calls),
        )
    if role == "tool":
        call_id = body.get("tool_call_id")
        if not call_id:
            raise InvalidRequest("Tool message requires tool_call_id")
        return ToolMessage(content=str(body.get("content") or ""), tool_call_id=str(call_id))
    raise InvalidRequest(f"Unknown chat message role: {role!r}")


def to_wire(msg: ChatMessage) -> dict:
    """Tagged JSON shape."""
    if isinstance(msg, SystemMessage):
        return {"system": {"content": msg.content}}
    if isinstance(msg, UserMessage):
        return {"user": {"content": msg.content}}
    if isinstance(msg, AssistantMessage):
        return {"assistant": {
            "content": [msg.content] if msg.content is not None else [],
            "tool_calls": [_tool_call_to_wire(c) for c in msg.tool_calls],
        }}
    if isinstance(msg, ToolMessage):
        return {"tool": {"content": msg.content, "tool_call_id": msg.tool_call_id}}
    raise TypeError(f"Not a chat message: {msg!r}")


def to_openai(msg: ChatMessage) -> dict:
    """OpenAI chat-completions message dict."""
    if isinstance(msg, (SystemMessage, UserMessage)):
        return {"role": msg.role, "content": msg.content}
    if isinstance(msg, AssistantMessage):
        out: dict = {"role": "assistant", "content": msg.content}
        if msg.tool_calls:
            out["tool_calls"] = [_tool_call_to_openai(c) for c in msg.tool_calls]
        return out
    if isinstance(msg, ToolMessage):
        return {"role": "tool", "content": msg.content, "tool_call_id": msg.tool_call_id}
    raise TypeError(f"Not a chat message: {msg!r}")


def assistant_from_openai(message: dict) -> AssistantMessage:
    """Parse choices[0].message of a chat-completions response."""
    calls = message.get("tool_calls") or []
    return AssistantMessage(
        content=message.get("content"),
        tool_calls=tuple(_tool_call_from_dict(c) for c in calls),
    )


def content_of(msg: ChatMessage) -> str:
    """Plain text of a message, for storage and titles."""
    if isinstance(msg, AssistantMessage):
        if msg.content:
            return msg.content
        if msg.tool_calls:
            names = ", ".join(c.function.name for c in msg.tool_calls)
            return f"[tool calls: {names}]"
        return ""
    return msg.content


def drop_orphan_tool_replies(messages: list[ChatMessage]) -> list[ChatMessage]:
    """
    Keep a tool message only if it answers a call emitted by an earlier
    assistant message and not yet answered. Everything else is dropped.
    """
    pending: set[str] = set()
    kept: list[ChatMessage] = []
    for msg in messages:
        if isinstance(msg, AssistantMessage):
            pending.update(c.id for c in msg.tool_calls)
        elif isinstance(msg, ToolMessage):
            if msg.tool_call_id not in pending:
                logger.warning("Dropping tool reply for unknown call id %r", msg.tool_call_id)
                continue
            pending.discard(msg.tool_call_id)
        kept.append(msg)
    return kept
