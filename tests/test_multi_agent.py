"""Tests for delegation, aggregation and coordination."""

import json

import pytest

from fakes import NO_RETRY, FakeAgent, ScriptedModel, call, reply, tool_calls
from agentloop.agents import (
    AgentRegistry,
    DelegationEngine,
    ResultAggregator,
    SharedContext,
    SubAgentResult,
    WorkerAgent,
    run_coordinator,
    sanitize_tool_name,
)
from agentloop.agents.context import CoordinatorState
from agentloop.agents.protocol import DelegationOutcome
from agentloop.agents.worker import compose_task_message
from agentloop.core.invoker import ModelInvoker
from agentloop.core.options import CoordinatorOptions
from agentloop.errors import ConfigurationError, MaxIterationsError
from agentloop.tools import AskHumanTool, CalculatorTool


def _outcome(name, response="", success=True, error=None):
    return DelegationOutcome(
        agent_name=name,
        tool_name=f"delegate_to_{sanitize_tool_name(name)}",
        success=success,
        response=response,
        error=error,
    )


class TestToolNames:
    def test_sanitize(self):
        assert sanitize_tool_name("Research  Agent #1") == "research_agent_1"
        assert sanitize_tool_name("__Writer__") == "writer"
        assert len(sanitize_tool_name("x" * 80)) == 50


class TestAgentRegistry:
    def test_registration_order_and_names(self):
        registry = AgentRegistry([FakeAgent("Researcher"), FakeAgent("Fact Checker")])
        assert registry.tool_names == ["delegate_to_researcher", "delegate_to_fact_checker"]
        assert registry.get("delegate_to_fact_checker").name == "Fact Checker"
        assert "delegate_to_researcher" in registry

    def test_colliding_names_are_rejected(self):
        with pytest.raises(ValueError):
            AgentRegistry([FakeAgent("Writer"), FakeAgent("writer!")])

    def test_non_agents_are_rejected(self):
        with pytest.raises(TypeError):
            AgentRegistry([object()])

    def test_describe_falls_back_to_generic_description(self):
        registry = AgentRegistry([FakeAgent("Helper")])
        assert registry.describe() == "- **Helper** (`delegate_to_helper`): General-purpose agent"


class TestSubAgentResult:
    def test_coerce_variants(self):
        assert SubAgentResult.coerce("plain", "A").response == "plain"
        from_dict = SubAgentResult.coerce({"success": False, "error": "nope", "agentName": "B"})
        assert not from_dict.success and from_dict.agent_name == "B"
        assert not SubAgentResult.coerce(42, "C").success


class TestSharedContext:
    def test_keeps_recent_findings_truncated(self):
        context = SharedContext()
        for i in range(5):
            context.add(f"agent{i}", "x" * 300)
        findings = context.as_dicts()
        assert [f["agent_name"] for f in findings] == ["agent2", "agent3", "agent4"]
        assert all(len(f["result"]) == 200 for f in findings)


class TestDelegationEngine:
    @pytest.mark.asyncio
    async def test_delegation_cap_refuses_without_invoking(self):
        agent = FakeAgent("Worker")
        engine = DelegationEngine([agent])
        state = CoordinatorState(max_delegations=2)

        outcomes = [await engine.delegate(state, agent, {"task": f"t{i}"}) for i in range(3)]

        assert [o.success for o in outcomes] == [True, True, False]
        assert outcomes[2].error == "Maximum delegations (2) reached"
        assert outcomes[2].error_kind == "MAX_DELEGATIONS"
        assert len(agent.tasks) == 2
        assert state.delegation_count == 2

    @pytest.mark.asyncio
    async def test_raised_and_returned_failures_are_captured(self):
        crashing = FakeAgent("Crasher", error=RuntimeError("segfault"))
        failing = FakeAgent("Failer", result={"success": False, "error": "no data"})
        engine = DelegationEngine([crashing, failing])
        state = CoordinatorState()

        outcomes = await engine.broadcast(state, "go")

        assert outcomes[0].error == "Agent Crasher failed: segfault"
        assert outcomes[1].error == "Agent Failer failed: no data"
        meta = state.get_delegation_metadata()
        assert meta["failed"] == 2 and meta["successful"] == 0

    @pytest.mark.asyncio
    async def test_expected_output_and_session(self):
        agent = FakeAgent("Writer")
        engine = DelegationEngine([agent], model="coordinator-model")
        state = CoordinatorState(session_id="s1")

        outcome = await engine.delegate(
            state, agent, {"task": "Write", "context": {"topic": "tea"}, "expectedOutput": "One paragraph"}
        )

        task = agent.tasks[0]
        assert task["task"] == "Write\n\nExpected output: One paragraph"
        assert json.loads(task["context"]) == {"topic": "tea"}
        assert task["session_id"] == f"s1_{outcome.delegation_id}"
        assert task["fallback_model"] == "coordinator-model"

    @pytest.mark.asyncio
    async def test_sequential_broadcast_shares_findings(self):
        first, second = FakeAgent("First", "alpha"), FakeAgent("Second", "beta")
        engine = DelegationEngine([first, second])

        await engine.broadcast(CoordinatorState(), "go", parallel=False)

        assert first.tasks[0]["shared_context"] is None
        assert second.tasks[0]["shared_context"] == [{"agent_name": "First", "result": "alpha"}]

    @pytest.mark.asyncio
    async def test_sequential_pipeline_feeds_output_forward(self):
        drafter, editor = FakeAgent("Drafter", "draft v1"), FakeAgent("Editor", "final copy")
        engine = DelegationEngine([drafter, editor])

        outcomes = await engine.sequential(CoordinatorState(), "Write a slogan")

        assert drafter.tasks[0]["task"] == "Write a slogan"
        assert editor.tasks[0]["task"] == 'Based on this input: "draft v1"\n\nContinue the task: Write a slogan'
        assert editor.tasks[0]["context"] == "Previous agent output: draft v1"
        assert [o.response for o in outcomes] == ["draft v1", "final copy"]


class TestResultAggregator:
    @pytest.mark.asyncio
    async def test_concatenate_skips_failures(self):
        outcomes = [_outcome("A", "one"), _outcome("B", success=False, error="x"), _outcome("C", "three")]
        result = await ResultAggregator().aggregate(outcomes, "concatenate")
        assert result.response == "**A:**\none\n\n---\n\n**C:**\nthree"

    @pytest.mark.asyncio
    async def test_structured_suffixes_duplicate_names(self):
        result = await ResultAggregator().aggregate([_outcome("A", "1"), _outcome("A", "2")], "structured")
        assert json.loads(result.response) == {"A": "1", "A (2)": "2"}
        assert result.structured

    @pytest.mark.asyncio
    async def test_no_successes(self):
        result = await ResultAggregator().aggregate([_outcome("A", success=False)], "synthesize")
        assert not result.success
        assert result.response == "No successful responses from worker agents"

    @pytest.mark.asyncio
    async def test_synthesize_uses_the_model(self):
        model = ScriptedModel([reply("unified answer")])
        aggregator = ResultAggregator(ModelInvoker(model, retry_config=NO_RETRY))

        result = await aggregator.aggregate([_outcome("A", "one"), _outcome("B", "two")], "synthesize", "Question?")

        assert result.response == "unified answer"
        prompt = model.calls[0]["messages"][0].content
        assert 'answer: "Question?"' in prompt
        assert "**B:**\ntwo" in prompt

    @pytest.mark.asyncio
    async def test_best_falls_back_to_concatenate_on_model_failure(self):
        model = ScriptedModel([PermissionError("unauthorized")])
        aggregator = ResultAggregator(ModelInvoker(model, retry_config=NO_RETRY))

        result = await aggregator.aggregate([_outcome("A", "one")], "best")

        assert result.fell_back
        assert result.response == "**A:**\none"

    @pytest.mark.asyncio
    async def test_unknown_mode(self):
        with pytest.raises(ValueError):
            await ResultAggregator().aggregate([], "vote")


class TestRunCoordinator:
    @pytest.mark.asyncio
    async def test_broadcast_concatenate(self):
        agents = [FakeAgent("Optimist", "Sunny"), FakeAgent("Pessimist", "Rainy")]
        result = await run_coordinator(
            {"userMessage": "Weather?", "routingStrategy": "broadcast", "aggregationMode": "concatenate"},
            ScriptedModel(),
            agents,
            retry_config=NO_RETRY,
        )

        assert result.success
        assert result.response == "**Optimist:**\nSunny\n\n---\n\n**Pessimist:**\nRainy"
        assert result.metadata["total_delegations"] == 2
        assert result.metadata["agent_results"]["Pessimist"] == {"success": True, "response": "Rainy"}

    @pytest.mark.asyncio
    async def test_broadcast_with_every_agent_failing(self):
        result = await run_coordinator(
            CoordinatorOptions(user_message="Go", routing_strategy="broadcast", aggregation_mode="concatenate"),
            ScriptedModel(),
            [FakeAgent("A", error=RuntimeError("down"))],
        )
        assert not result.success
        assert result.metadata["failed"] == 1

    @pytest.mark.asyncio
    async def test_sequential_synthesize(self):
        model = ScriptedModel([reply("merged")])
        result = await run_coordinator(
            CoordinatorOptions(user_message="Plan", routing_strategy="sequential"),
            model,
            [FakeAgent("A", "a"), FakeAgent("B", "b")],
            retry_config=NO_RETRY,
        )
        assert result.response == "merged"
        assert result.metadata["routing_strategy"] == "sequential"

    @pytest.mark.asyncio
    async def test_auto_routing_with_final_answer(self):
        researcher = FakeAgent("Researcher", "Found 3 papers", description="Finds sources")
        writer = FakeAgent("Writer", "Draft ready")
        model = ScriptedModel(
            [
                tool_calls(call("delegate_to_researcher", {"task": "Find papers"}, "c1")),
                tool_calls(call("delegate_to_writer", {"task": "Write it up"}, "c2")),
                tool_calls(call("final_answer", {"answer": "Here is the report", "summary": "2 agents"}, "c3")),
            ]
        )

        result = await run_coordinator(
            CoordinatorOptions(user_message="Report on tea"), model, [researcher, writer], retry_config=NO_RETRY
        )

        assert result.response == "Here is the report"
        assert result.summary == "2 agents"
        assert result.metadata["finished_with_final_answer"] is True
        assert result.metadata["successful"] == 2
        assert writer.tasks[0]["shared_context"] == [{"agent_name": "Researcher", "result": "Found 3 papers"}]

        system_prompt = model.calls[0]["messages"][0].content
        assert "## Your Team" in system_prompt
        assert "`delegate_to_researcher`): Finds sources" in system_prompt
        offered = [d.name for d in model.calls[0]["tools"]]
        assert offered == ["delegate_to_researcher", "delegate_to_writer", "final_answer"]

    @pytest.mark.asyncio
    async def test_auto_routing_parallel_calls_share_one_snapshot(self):
        a, b = FakeAgent("A", "from a"), FakeAgent("B", "from b")
        model = ScriptedModel(
            [
                tool_calls(call("delegate_to_a", {"task": "x"}, "c1"), call("delegate_to_b", {"task": "y"}, "c2")),
                reply("done"),
            ]
        )

        result = await run_coordinator(CoordinatorOptions(user_message="Go"), model, [a, b], retry_config=NO_RETRY)

        assert result.response == "done"
        assert a.tasks[0]["shared_context"] is None
        assert b.tasks[0]["shared_context"] is None
        tool_messages = [m for m in model.calls[1]["messages"] if m.role == "tool"]
        assert [m.tool_call_id for m in tool_messages] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_auto_routing_over_cap_reports_failure_to_model(self):
        agent = FakeAgent("Solo")
        model = ScriptedModel(
            [
                tool_calls(call("delegate_to_solo", {"task": "1"}, "c1"), call("delegate_to_solo", {"task": "2"}, "c2")),
                reply("partial"),
            ]
        )

        result = await run_coordinator(
            CoordinatorOptions(user_message="Go", max_delegations=1, parallel_execution=False),
            model,
            [agent],
            retry_config=NO_RETRY,
        )

        assert len(agent.tasks) == 1
        refused = json.loads([m for m in model.calls[1]["messages"] if m.role == "tool"][1].content)
        assert refused["success"] is False
        assert refused["data"]["error_kind"] == "MAX_DELEGATIONS"
        assert result.metadata["total_delegations"] == 1

    @pytest.mark.asyncio
    async def test_auto_routing_max_iterations(self):
        model = ScriptedModel([tool_calls(call("delegate_to_a", {"task": "again"}, f"c{i}")) for i in range(3)])
        with pytest.raises(MaxIterationsError) as exc_info:
            await run_coordinator(
                CoordinatorOptions(user_message="Go", max_iterations=2), model, [FakeAgent("A")], retry_config=NO_RETRY
            )
        assert len(model.calls) == 2
        assert len(exc_info.value.details["partial_results"]) == 2

    @pytest.mark.asyncio
    async def test_empty_roster(self):
        with pytest.raises(ConfigurationError):
            await run_coordinator({"userMessage": "Go"}, ScriptedModel(), [])


class TestWorkerAgent:
    def test_compose_task_message(self):
        message = compose_task_message(
            "Summarize", "Quarterly data", [{"agent_name": "Analyst", "result": "Revenue up"}]
        )
        assert message.startswith("Context: Quarterly data\n\nTask: Summarize")
        assert message.endswith("Relevant findings from team members:\n[Analyst]: Revenue up")

    @pytest.mark.asyncio
    async def test_runs_its_own_loop(self):
        model = ScriptedModel([tool_calls(call("calculator", {"expression": "6*7"}, "c1")), reply("42")])
        worker = WorkerAgent("Math", model=model, tools=[CalculatorTool()], retry_config=NO_RETRY)

        result = await worker.execute_task("Compute 6*7")

        assert result.success
        assert result.response == "42"
        assert result.metadata["tools_used"] == ["calculator"]
        assert worker.tasks_executed == 1

    @pytest.mark.asyncio
    async def test_uses_fallback_model(self):
        worker = WorkerAgent("Borrower", retry_config=NO_RETRY)
        result = await worker.execute_task("Hi", fallback_model=ScriptedModel([reply("borrowed")]))
        assert result.response == "borrowed"

    @pytest.mark.asyncio
    async def test_without_any_model(self):
        worker = WorkerAgent("Lonely", allow_fallback_model=False)
        result = await worker.execute_task("Hi", fallback_model=ScriptedModel([reply("unused")]))
        assert not result.success
        assert "Model not configured for worker agent 'Lonely'" in result.error

    @pytest.mark.asyncio
    async def test_human_input_request_is_a_failure(self):
        model = ScriptedModel([tool_calls(call("ask_human", {"question": "Which one?"}, "c1"))])
        worker = WorkerAgent("Asker", model=model, tools=[AskHumanTool()], retry_config=NO_RETRY)
        result = await worker.execute_task("Pick")
        assert not result.success
        assert "requested human input" in result.error

    def test_requires_name(self):
        with pytest.raises(ValueError):
            WorkerAgent("  ")
