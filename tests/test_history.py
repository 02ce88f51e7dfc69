"""Tests for conversation history sanitization."""

from agentloop.core.history import new_messages_since, sanitize_history
from agentloop.providers.types import Message, ToolCall


def _assistant_calls(*ids):
    return Message.assistant(None, [ToolCall(name="calculator", arguments={}, id=i) for i in ids])


def _roles(messages):
    return [(m.role, m.tool_call_id) for m in messages]


def test_complete_tool_turn_is_kept():
    history = [
        Message.user("hi"),
        _assistant_calls("c1", "c2"),
        Message.tool_result("c1", {"success": True}),
        Message.tool_result("c2", {"success": True}),
        Message.assistant("done"),
    ]
    assert sanitize_history(history) == history


def test_partially_answered_call_is_dropped_with_its_responses():
    history = [
        Message.user("hi"),
        _assistant_calls("c1", "c2"),
        Message.tool_result("c1", {"success": True}),
        Message.user("next"),
    ]
    cleaned = sanitize_history(history)
    assert _roles(cleaned) == [("user", None), ("user", None)]


def test_orphan_tool_message_is_dropped():
    history = [Message.tool_result("ghost", "x"), Message.user("hi")]
    assert _roles(sanitize_history(history)) == [("user", None)]


def test_duplicate_answers_keep_first():
    first = Message.tool_result("c1", "first")
    history = [_assistant_calls("c1"), first, Message.tool_result("c1", "second")]
    cleaned = sanitize_history(history)
    assert len(cleaned) == 2
    assert cleaned[1] is first


def test_none_entries_are_skipped():
    history = [None, Message.user("hi"), None]
    assert len(sanitize_history(history)) == 1


def test_sanitize_is_idempotent():
    history = [
        Message.system("sys"),
        Message.tool_result("x", "orphan"),
        _assistant_calls("c1"),
        Message.user("interrupted"),
        _assistant_calls("c2"),
        Message.tool_result("c2", "ok"),
        Message.assistant("answer"),
    ]
    once = sanitize_history(history)
    assert sanitize_history(once) == once


def test_new_messages_since_offset():
    history = [Message.system("sys"), Message.user("old"), Message.user("new"), _assistant_calls("c9")]
    assert _roles(new_messages_since(history, 2)) == [("user", None)]
