"""Tests for the pause/resume registry and the human-input runner."""

import asyncio

import pytest

from fakes import NO_RETRY, ScriptedModel, call, reply, tool_calls
from agentloop.core.loop import AgentLoop
from agentloop.core.options import RunOptions
from agentloop.errors import AlreadyPausedError, HumanInputCancelledError, HumanResponseTimeoutError
from agentloop.pause import ExecutionStatus, InMemoryCheckpointStore, PauseResumeRegistry
from agentloop.runner import run_with_human_input
from agentloop.tools import AskHumanTool


class TestPauseResumeRegistry:
    @pytest.mark.asyncio
    async def test_resume_delivers_response_once(self):
        registry = PauseResumeRegistry()
        future = registry.pause_for_human_input("exec_1", {"step": 1}, timeout_seconds=0)

        assert registry.is_paused("exec_1")
        assert registry.resume_with_response("exec_1", "Blue") is True
        assert await future == "Blue"
        assert registry.resume_with_response("exec_1", "Red") is False
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_removes_entry(self):
        registry = PauseResumeRegistry()
        future = registry.pause_for_human_input("exec_1", {}, timeout_seconds=0.1)

        with pytest.raises(HumanResponseTimeoutError):
            await future
        assert not registry.is_paused("exec_1")
        assert registry.resume_with_response("exec_1", "late") is False

    @pytest.mark.asyncio
    async def test_second_pause_for_same_id_is_rejected(self):
        registry = PauseResumeRegistry()
        registry.pause_for_human_input("exec_1", {}, timeout_seconds=0)
        with pytest.raises(AlreadyPausedError):
            registry.pause_for_human_input("exec_1", {}, timeout_seconds=0)
        registry.cancel_execution("exec_1")

    @pytest.mark.asyncio
    async def test_cancel_rejects_with_reason(self):
        registry = PauseResumeRegistry()
        future = registry.pause_for_human_input("exec_1", {}, timeout_seconds=0)

        assert registry.cancel_execution("exec_1", "User left") is True
        with pytest.raises(HumanInputCancelledError, match="User left"):
            await future
        assert registry.cancel_execution("exec_1") is False

    @pytest.mark.asyncio
    async def test_resume_from_another_thread(self):
        registry = PauseResumeRegistry()
        future = registry.pause_for_human_input("exec_1", {}, timeout_seconds=5)

        loop = asyncio.get_running_loop()
        resumed = await loop.run_in_executor(None, registry.resume_with_response, "exec_1", "from thread")

        assert resumed is True
        assert await asyncio.wait_for(future, timeout=1) == "from thread"

    @pytest.mark.asyncio
    async def test_cleanup_cancels_stale_executions(self):
        registry = PauseResumeRegistry()
        old = registry.pause_for_human_input("exec_old", {}, timeout_seconds=0)

        assert registry.cleanup_old_executions(max_age_seconds=0) == 1
        with pytest.raises(HumanInputCancelledError, match="expired"):
            await old
        assert registry.get_all_paused_executions() == []

    @pytest.mark.asyncio
    async def test_listing_paused_executions(self):
        registry = PauseResumeRegistry()
        registry.pause_for_human_input("exec_1", {"question": "?"}, timeout_seconds=60)

        items = registry.get_all_paused_executions()
        assert items[0]["execution_id"] == "exec_1"
        assert items[0]["state"] == {"question": "?"}
        assert items[0]["has_timeout"] is True
        registry.cancel_execution("exec_1")

    @pytest.mark.asyncio
    async def test_checkpoints_follow_the_lifecycle(self):
        store = InMemoryCheckpointStore()
        registry = PauseResumeRegistry(checkpoint=store.save)

        future = registry.pause_for_human_input("exec_1", {"messages": []}, timeout_seconds=0)
        await registry.flush()
        assert store.get("exec_1").status is ExecutionStatus.PAUSED

        registry.resume_with_response("exec_1", "ok")
        await future
        await registry.flush()
        checkpoint = store.get("exec_1")
        assert checkpoint.status is ExecutionStatus.RUNNING
        assert checkpoint.resumed_at is not None
        assert checkpoint.state == {"messages": []}

    @pytest.mark.asyncio
    async def test_timeout_writes_cancelled_checkpoint(self):
        store = InMemoryCheckpointStore()
        registry = PauseResumeRegistry(checkpoint=store.save)
        future = registry.pause_for_human_input("exec_1", {}, timeout_seconds=0.05)

        with pytest.raises(HumanResponseTimeoutError):
            await future
        await registry.flush()
        assert store.get("exec_1").status is ExecutionStatus.CANCELLED
        assert store.get("exec_1").reason == "Human response timeout"

    @pytest.mark.asyncio
    async def test_failing_checkpoint_writer_does_not_break_resume(self):
        async def broken(checkpoint):
            raise IOError("disk full")

        registry = PauseResumeRegistry(checkpoint=broken)
        future = registry.pause_for_human_input("exec_1", {}, timeout_seconds=0)
        assert registry.resume_with_response("exec_1", "yes")
        assert await future == "yes"
        await registry.flush()


def _human_loop(model, registry):
    return AgentLoop(model, tools=[AskHumanTool()], retry_config=NO_RETRY, pause_registry=registry)


class TestRunWithHumanInput:
    @pytest.mark.asyncio
    async def test_answer_continues_the_run(self):
        store = InMemoryCheckpointStore()
        registry = PauseResumeRegistry(checkpoint=store.save)
        model = ScriptedModel(
            [
                tool_calls(call("ask_human", {"question": "Which city?"}, "c1")),
                reply("Booked a trip to Paris."),
            ]
        )
        questions = []

        def answer(execution_id, paused):
            questions.append(paused.response)
            registry.resume_with_response(execution_id, "Paris")

        result = await run_with_human_input(
            _human_loop(model, registry),
            RunOptions(user_message="Book a trip"),
            execution_id="exec_trip",
            on_question=answer,
        )

        assert questions == ["Which city?"]
        assert result.response == "Booked a trip to Paris."
        assert result.metadata["execution_id"] == "exec_trip"
        resumed_turn = model.calls[1]["messages"]
        assert [m.role for m in resumed_turn] == ["system", "user", "assistant", "user"]
        assert resumed_turn[-1].content == "Paris"

        await registry.flush()
        assert store.get("exec_trip").status is ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_ends_the_run(self):
        registry = PauseResumeRegistry()
        model = ScriptedModel([tool_calls(call("ask_human", {"question": "Proceed?"}, "c1"))])

        async def refuse(execution_id, paused):
            registry.cancel_execution(execution_id, "No answer given")

        with pytest.raises(HumanInputCancelledError):
            await run_with_human_input(_human_loop(model, registry), RunOptions(user_message="Go"), on_question=refuse)

    @pytest.mark.asyncio
    async def test_tool_timeout_overrides_run_default(self):
        registry = PauseResumeRegistry()
        model = ScriptedModel([tool_calls(call("ask_human", {"question": "Quick?", "timeout_seconds": 0.05}, "c1"))])

        with pytest.raises(HumanResponseTimeoutError):
            await run_with_human_input(
                _human_loop(model, registry),
                RunOptions(user_message="Go", human_timeout_seconds=300),
            )

    @pytest.mark.asyncio
    async def test_requires_registry(self):
        loop = AgentLoop(ScriptedModel(), retry_config=NO_RETRY)
        with pytest.raises(ValueError):
            await run_with_human_input(loop, RunOptions(user_message="Hi"))
