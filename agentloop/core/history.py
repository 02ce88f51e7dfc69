"""Conversation history sanitization."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..providers.types import Message


def _has_function_call(message: Message) -> bool:
    return message.role == "assistant" and bool(message.tool_calls)


def _has_function_response(message: Message) -> bool:
    return message.role == "tool"


def sanitize_history(messages: List[Optional[Message]]) -> List[Message]:
    """Drop incomplete tool-call turns from a message list.

    An assistant message with tool calls is kept only when every call id is
    answered by the tool messages that immediately follow it. Tool messages
    that do not answer a kept assistant message are orphans and are dropped.
    Duplicate answers for one call id keep the first. The function is
    idempotent.
    """
    history = [m for m in messages if m is not None]
    cleaned: List[Message] = []
    i = 0

    while i < len(history):
        msg = history[i]

        # Orphaned function responses (not consumed by a call block below)
        if _has_function_response(msg):
            i += 1
            continue

        if not _has_function_call(msg):
            cleaned.append(msg)
            i += 1
            continue

        j = i + 1
        responses: List[Message] = []
        while j < len(history) and _has_function_response(history[j]):
            responses.append(history[j])
            j += 1

        call_ids = [call.id for call in msg.tool_calls]
        answered: Dict[str, Message] = {}
        for response in responses:
            if response.tool_call_id in call_ids and response.tool_call_id not in answered:
                answered[response.tool_call_id] = response

        if all(call_id and call_id in answered for call_id in call_ids):
            cleaned.append(msg)
            cleaned.extend(r for r in responses if answered.get(r.tool_call_id) is r)

        i = j

    return cleaned


def new_messages_since(messages: List[Message], offset: int) -> List[Message]:
    """Messages appended after ``offset``, sanitized for storage."""
    return sanitize_history(messages[offset:])
