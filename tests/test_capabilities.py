"""
Tests for the capability cache and tool definition parsing.
"""

from unittest.mock import AsyncMock

import pytest
from mcp.types import Tool

from slack_mcp_agent.capabilities import (
    SLACK_TOOLS,
    CapabilityCache,
    input_property_names,
    parse_tool_definitions,
    static_tool_source,
)
from slack_mcp_agent.errors import MalformedCacheData


class TestParseToolDefinitions:
    """Tests for parse_tool_definitions."""

    def test_list_of_dicts(self):
        """Test that missing input schemas get an empty object schema."""
        tools = parse_tool_definitions([{"name": "a", "description": "A"}])

        assert tools[0].name == "a"
        assert tools[0].inputSchema == {"type": "object", "properties": {}}

    def test_tools_envelope(self):
        """Test that a {"tools": [...]} payload is unwrapped."""
        tools = parse_tool_definitions({"tools": [{"name": "a"}, {"name": "b"}]})

        assert [t.name for t in tools] == ["a", "b"]

    def test_models_pass_through(self):
        tool = Tool(name="x", inputSchema={"type": "object"})

        assert parse_tool_definitions([tool]) == [tool]

    def test_not_a_list(self):
        with pytest.raises(MalformedCacheData):
            parse_tool_definitions("slack_channels_list")

    def test_entry_without_name(self):
        with pytest.raises(MalformedCacheData):
            parse_tool_definitions([{"description": "nameless"}])

    def test_input_property_names(self):
        """Test that property names are listed in schema order up to the limit."""
        tool = Tool(
            name="post",
            inputSchema={"type": "object", "properties": {"channel_id": {}, "payload": {}, "thread_ts": {}}},
        )

        assert input_property_names(tool) == ["channel_id", "payload", "thread_ts"]
        assert input_property_names(tool, limit=1) == ["channel_id"]


class TestCapabilityCache:
    """Tests for CapabilityCache."""

    @pytest.mark.asyncio
    async def test_static_source(self):
        """Test that the default source loads the built-in Slack tools."""
        cache = CapabilityCache()

        count = await cache.refresh()

        assert count == len(SLACK_TOOLS) == 5
        assert "slack_conversations_history" in cache
        assert cache.names()[0] == "slack_channels_list"
        assert await static_tool_source() == list(SLACK_TOOLS)

    @pytest.mark.asyncio
    async def test_malformed_refresh_keeps_previous(self):
        """Test that a malformed discovery payload leaves the cache as it was."""
        source = AsyncMock(side_effect=[[{"name": "a"}], {"tools": "broken"}])
        cache = CapabilityCache(source)

        await cache.refresh()
        count = await cache.refresh()

        assert count == 1
        assert "a" in cache

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self):
        cache = CapabilityCache(AsyncMock(side_effect=ConnectionError("down")))

        with pytest.raises(ConnectionError):
            await cache.refresh()

    @pytest.mark.asyncio
    async def test_refresh_replaces_wholesale(self):
        """Test that tools missing from a new listing are dropped."""
        source = AsyncMock(side_effect=[[{"name": "a"}, {"name": "b"}], [{"name": "b"}]])
        cache = CapabilityCache(source)

        await cache.refresh()
        snapshot = cache.snapshot()
        await cache.refresh()

        assert cache.names() == ["b"]
        assert cache.get("a") is None
        assert [t.name for t in snapshot] == ["a", "b"]
