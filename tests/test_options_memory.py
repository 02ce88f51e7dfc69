"""Tests for run options and in-process memory stores."""

import pytest

from agentloop.core.options import CoordinatorOptions, RunOptions
from agentloop.errors import ConfigurationError
from agentloop.memory import BufferMemory, WindowMemory
from agentloop.providers.types import Message


class TestRunOptions:
    def test_defaults(self):
        options = RunOptions(user_message="Hi")
        assert options.max_iterations == 10
        assert options.tool_choice == "auto"
        assert options.session_id == "default"
        assert options.timeout_ms == 300000

    @pytest.mark.parametrize(
        "overrides",
        [
            {"user_message": "   "},
            {"max_iterations": 0},
            {"max_iterations": 51},
            {"tool_choice": "always"},
            {"output_format": "xml"},
            {"timeout_ms": 999},
            {"timeout_ms": 600001},
            {"human_timeout_seconds": -1},
        ],
    )
    def test_invalid_values(self, overrides):
        values = {"user_message": "Hi", **overrides}
        with pytest.raises(ConfigurationError):
            RunOptions(**values)

    def test_structured_requires_object_schema(self):
        with pytest.raises(ConfigurationError):
            RunOptions(user_message="Hi", output_format="structured")
        with pytest.raises(ConfigurationError):
            RunOptions(user_message="Hi", output_format="structured", output_schema="{not json")
        with pytest.raises(ConfigurationError):
            RunOptions(user_message="Hi", output_format="structured", output_schema={"type": "array"})

    def test_schema_is_ignored_for_other_formats(self):
        options = RunOptions(user_message="Hi", output_format="text", output_schema={"type": "object"})
        assert options.output_schema is None

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown option 'temperature'"):
            RunOptions.from_dict({"userMessage": "Hi", "temperature": 0.1})


class TestCoordinatorOptions:
    def test_defaults(self):
        options = CoordinatorOptions(user_message="Go")
        assert options.routing_strategy == "auto"
        assert options.max_delegations == 10
        assert options.aggregation_mode == "synthesize"
        assert options.parallel_execution is True

    def test_invalid_strategy(self):
        with pytest.raises(ConfigurationError):
            CoordinatorOptions.from_dict({"userMessage": "Go", "routingStrategy": "random"})


class TestMemory:
    @pytest.mark.asyncio
    async def test_buffer_sessions_are_isolated(self):
        memory = BufferMemory()
        await memory.add_message("a", Message.user("one"))
        await memory.add_message("b", Message.user("two"))
        assert [m.content for m in await memory.get_messages("a")] == ["one"]
        await memory.clear("a")
        assert await memory.get_messages("a") == []
        assert memory.sessions() == ["b"]

    @pytest.mark.asyncio
    async def test_window_keeps_latest(self):
        memory = WindowMemory(max_messages=2)
        for text in ("1", "2", "3"):
            await memory.add_message("s", Message.user(text))
        assert [m.content for m in await memory.get_messages("s")] == ["2", "3"]

    def test_window_size_must_be_positive(self):
        with pytest.raises(ValueError):
            WindowMemory(max_messages=0)
