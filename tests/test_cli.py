"""CLI command handling and chat session tests."""

from __future__ import annotations

import pytest

from fakes import NO_RETRY, ScriptedModel, reply
from agentloop.cli import ChatSession, handle_command
from agentloop.config import EngineSettings
from agentloop.core.loop import AgentLoop
from agentloop.memory import BufferMemory
from agentloop.observability import AgentObserver
from agentloop.pause import PauseResumeRegistry


def _chat(responses=()) -> ChatSession:
    loop = AgentLoop(
        ScriptedModel(responses),
        memory=BufferMemory(),
        observer=AgentObserver(agent_id="cli"),
        retry_config=NO_RETRY,
        pause_registry=PauseResumeRegistry(),
    )
    return ChatSession(loop, EngineSettings(), session_id="cli-test")


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["/quit", "/exit", "/q", "/QUIT"])
async def test_quit_commands_stop_the_loop(command: str) -> None:
    assert await handle_command(command, _chat()) is False


@pytest.mark.asyncio
async def test_format_command_switches_output() -> None:
    chat = _chat()
    assert await handle_command("/format json", chat)
    assert chat.output_format == "json"


@pytest.mark.asyncio
async def test_format_command_rejects_structured_and_unknown() -> None:
    chat = _chat()
    assert await handle_command("/format structured", chat)
    assert await handle_command("/format yaml", chat)
    assert chat.output_format == "text"


@pytest.mark.asyncio
async def test_unknown_command_keeps_running() -> None:
    assert await handle_command("/frobnicate", _chat())


@pytest.mark.asyncio
async def test_ask_then_reset_clears_memory() -> None:
    chat = _chat([reply("Hello there")])

    assert await chat.ask("Hi") == "Hello there"
    assert chat.turns == 1
    assert await chat.loop.memory.get_messages("cli-test")

    assert await handle_command("/reset", chat)
    assert await chat.loop.memory.get_messages("cli-test") == []
    assert chat.turns == 0


@pytest.mark.asyncio
async def test_stats_command_renders() -> None:
    chat = _chat([reply("ok")])
    await chat.ask("Hi")
    assert await handle_command("/stats", chat)
    assert chat.loop.observer.get_session_stats()["model_calls"] == 1
