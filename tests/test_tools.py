"""
Tests for ToolRegistry registration and invocation.
"""

import json

import pytest

from src.realtime_session.errors import ConfigurationError
from src.realtime_session.tools import ToolRegistry, ToolResult


WEATHER_TOOL = {
    "name": "get_weather",
    "description": "Look up the weather for a city.",
    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
}


@pytest.fixture
def registry():
    """Fixture providing a registry with one async tool."""
    registry = ToolRegistry()

    async def get_weather(args):
        return {"city": args["city"], "temperature": 21}

    registry.add(WEATHER_TOOL, get_weather)
    return registry


def call(name="get_weather", arguments='{"city": "Paris"}'):
    return {"type": "function", "name": name, "call_id": "call_1", "arguments": arguments}


class TestRegistration:
    """Test add/remove validation."""

    def test_duplicate_rejected(self, registry):
        with pytest.raises(ConfigurationError, match="already added"):
            registry.add(WEATHER_TOOL, lambda args: None)

    def test_missing_name_rejected(self):
        with pytest.raises(ConfigurationError):
            ToolRegistry().add({"description": "no name"}, lambda args: None)

    def test_non_callable_rejected(self):
        with pytest.raises(ConfigurationError):
            ToolRegistry().add({"name": "x"}, "not callable")

    def test_remove(self, registry):
        registry.remove("get_weather")
        assert "get_weather" not in registry
        assert registry.definitions() == []

    def test_remove_unknown_rejected(self, registry):
        with pytest.raises(ConfigurationError):
            registry.remove("missing")


class TestInvoke:
    """Test invocation outcomes."""

    @pytest.mark.asyncio
    async def test_success(self, registry):
        result = await registry.invoke(call())

        assert result.ok
        assert result.to_output_item() == {
            "type": "function_call_output",
            "call_id": "call_1",
            "output": json.dumps({"city": "Paris", "temperature": 21}),
        }

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        registry = ToolRegistry()
        registry.add({"name": "echo"}, lambda args: args)

        result = await registry.invoke(call(name="echo", arguments='{"a": 1}'))

        assert result.output == {"a": 1}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.invoke(call(name="missing"))

        assert not result.ok
        assert json.loads(result.to_output_item()["output"]) == {"error": 'Tool "missing" has not been added'}

    @pytest.mark.asyncio
    async def test_bad_arguments(self, registry):
        result = await registry.invoke(call(arguments="{not json"))

        assert not result.ok
        assert "error" in json.loads(result.to_output_item()["output"])

    @pytest.mark.asyncio
    async def test_handler_failure(self):
        registry = ToolRegistry()

        async def broken(args):
            raise RuntimeError("service unavailable")

        registry.add({"name": "broken"}, broken)
        result = await registry.invoke(call(name="broken"))

        assert result.error == "service unavailable"

    def test_result_defaults(self):
        result = ToolResult(call_id="c", name="n")
        assert result.ok
        assert result.to_output_item()["output"] == "null"
