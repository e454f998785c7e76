"""
Tests for chat message parsing and conversion.
"""

import pytest

from poetloop.chat.messages import (
    AssistantMessage,
    FunctionCall,
    SystemMessage,
    ToolCall,
    ToolCallArgument,
    ToolMessage,
    UserMessage,
    assistant_from_openai,
    content_of,
    drop_orphan_tool_replies,
    from_wire,
    parse_arguments,
    to_openai,
    to_wire,
)
from poetloop.errors import InvalidRequest


def _call(call_id, name="calculator", **args):
    return ToolCall(
        id=call_id,
        function=FunctionCall(name, tuple(ToolCallArgument(k, v) for k, v in args.items())),
    )


# ---------------------------------------------------------------------------
# from_wire
# ---------------------------------------------------------------------------

def test_from_wire_tagged_shapes():
    assert from_wire({"system": {"content": "be terse"}}) == SystemMessage("be terse")
    assert from_wire({"user": {"content": "hi"}}) == UserMessage("hi")
    assert from_wire({"tool": {"content": "4", "tool_call_id": "c1"}}) == ToolMessage("4", "c1")


def test_from_wire_role_shape():
    assert from_wire({"role": "user", "content": "hi"}) == UserMessage("hi")


@pytest.mark.parametrize("content,expected", [
    (None, None),
    ([], None),
    (["hello"], "hello"),
    ("hello", "hello"),
])
def test_from_wire_assistant_optional_content(content, expected):
    msg = from_wire({"assistant": {"content": content, "tool_calls": []}})
    assert isinstance(msg, AssistantMessage)
    assert msg.content == expected
    assert msg.tool_calls == ()


def test_from_wire_assistant_tool_calls():
    msg = from_wire({"assistant": {
        "content": [],
        "tool_calls": [{
            "id": "c1",
            "function": {"name": "calculator", "arguments": [{"name": "expression", "value": "2+2"}]},
        }],
    }})
    assert msg.tool_calls == (_call("c1", expression="2+2"),)


@pytest.mark.parametrize("bad", [
    "not a dict",
    {"role": "wizard", "content": "x"},
    {"user": "hi"},
    {"user": {}, "system": {}},
    {"tool": {"content": "x"}},
])
def test_from_wire_rejects_malformed(bad):
    with pytest.raises(InvalidRequest):
        from_wire(bad)


def test_to_wire_assistant_uses_list_content():
    wire = to_wire(AssistantMessage(content=None, tool_calls=(_call("c1", expression="1"),)))
    assert wire["assistant"]["content"] == []
    assert wire["assistant"]["tool_calls"][0]["function"]["arguments"] == [
        {"name": "expression", "value": "1"}
    ]
    assert from_wire(wire) == AssistantMessage(None, (_call("c1", expression="1"),))


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------

def test_parse_arguments_json_string():
    args = parse_arguments('{"expression": "2+2", "precision": 3}')
    assert args == (ToolCallArgument("expression", "2+2"), ToolCallArgument("precision", "3"))


def test_parse_arguments_dict_and_empty():
    assert parse_arguments({"query": "tokyo"}) == (ToolCallArgument("query", "tokyo"),)
    assert parse_arguments(None) == ()
    assert parse_arguments("") == ()


def test_parse_arguments_bad_json_becomes_input():
    assert parse_arguments("2 + 2") == (ToolCallArgument("input", "2 + 2"),)


def test_parse_arguments_rejects_bad_pair_list():
    with pytest.raises(InvalidRequest):
        parse_arguments([{"value": "no name"}])


# ---------------------------------------------------------------------------
# OpenAI conversion
# ---------------------------------------------------------------------------

def test_to_openai_assistant_with_tool_calls():
    out = to_openai(AssistantMessage(None, (_call("c1", expression="6*7"),)))
    assert out["role"] == "assistant"
    assert out["content"] is None
    assert out["tool_calls"][0]["id"] == "c1"
    assert out["tool_calls"][0]["function"]["arguments"] == '{"expression": "6*7"}'


def test_to_openai_tool_message():
    assert to_openai(ToolMessage("42", "c1")) == {"role": "tool", "content": "42", "tool_call_id": "c1"}


def test_assistant_from_openai_generates_missing_id():
    msg = assistant_from_openai({
        "content": None,
        "tool_calls": [{"function": {"name": "datetime", "arguments": {}}}],
    })
    assert msg.tool_calls[0].id.startswith("call_")
    assert msg.tool_calls[0].function.name == "datetime"


def test_content_of():
    assert content_of(UserMessage("hi")) == "hi"
    assert content_of(AssistantMessage("done")) == "done"
    assert content_of(AssistantMessage(None, (_call("a"), _call("b", name="datetime")))) == \
        "[tool calls: calculator, datetime]"
    assert content_of(AssistantMessage()) == ""


# ---------------------------------------------------------------------------
# Orphan tool replies
# ---------------------------------------------------------------------------

def test_orphan_tool_reply_is_dropped():
    messages = [UserMessage("hi"), ToolMessage("stray", "nope")]
    assert drop_orphan_tool_replies(messages) == [UserMessage("hi")]


def test_matched_tool_reply_is_kept_once():
    call = AssistantMessage(None, (_call("c1"),))
    messages = [UserMessage("q"), call, ToolMessage("4", "c1"), ToolMessage("again", "c1")]
    assert drop_orphan_tool_replies(messages) == [UserMessage("q"), call, ToolMessage("4", "c1")]


def test_tool_reply_before_its_call_is_dropped():
    call = AssistantMessage(None, (_call("c1"),))
    messages = [ToolMessage("early", "c1"), call]
    assert drop_orphan_tool_replies(messages) == [call]
