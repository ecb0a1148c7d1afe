"""
Capability cache: which MCP tools the agent may call.

Tool definitions use the MCP `Tool` model so that static and discovered
definitions share one shape. The cache is swapped wholesale on refresh;
readers only ever see an immutable snapshot.
"""

import logging
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping

from mcp.types import Tool
from pydantic import ValidationError

from .errors import MalformedCacheData

logger = logging.getLogger(__name__)

ToolDefinition = Tool
ToolSource = Callable[[], Awaitable[Any]]

_EMPTY_SCHEMA = {"type": "object", "properties": {}}


def _slack_tool(name: str, description: str) -> Tool:
    return Tool(name=name, description=description, inputSchema=dict(_EMPTY_SCHEMA))


# Tools exposed by the Slack MCP upstream behind the broker. Each maps onto a
# Slack API method.
SLACK_TOOLS: tuple[Tool, ...] = (
    _slack_tool("slack_channels_list", "List all Slack channels"),
    _slack_tool("slack_conversations_history", "Fetch message history from a conversation"),
    _slack_tool("slack_conversations_replies", "Fetch replies in a thread"),
    _slack_tool("slack_conversations_search_messages", "Search for messages across conversations"),
    _slack_tool("slack_conversations_add_message", "Post a message to a Slack conversation"),
)


async def static_tool_source() -> list[Tool]:
    """Source returning the built-in Slack tool catalogue."""
    return list(SLACK_TOOLS)


def parse_tool_definitions(raw: Any) -> list[Tool]:
    """
    Validate a discovery payload into tool definitions.

    Accepts a list of tools (models or dicts) or a mapping with a "tools" list.

    Raises:
        MalformedCacheData: If the payload is not a tool list or an entry is invalid
    """
    if isinstance(raw, Mapping):
        raw = raw.get("tools")
    if not isinstance(raw, (list, tuple)):
        raise MalformedCacheData(f"expected a list of tools, got {type(raw).__name__}")

    tools: list[Tool] = []
    for entry in raw:
        if isinstance(entry, Tool):
            tools.append(entry)
            continue
        if not isinstance(entry, Mapping) or not entry.get("name"):
            raise MalformedCacheData(f"tool entry without a name: {entry!r}")
        data = dict(entry)
        data.setdefault("inputSchema", dict(_EMPTY_SCHEMA))
        try:
            tools.append(Tool.model_validate(data))
        except ValidationError as e:
            raise MalformedCacheData(f"invalid tool definition {data.get('name')!r}: {e}") from e
    return tools


def input_property_names(tool: Tool, limit: int = 8) -> list[str]:
    """Input schema property names, used only as hints in prompts."""
    properties = (tool.inputSchema or {}).get("properties") or {}
    if not isinstance(properties, Mapping):
        return []
    return list(properties.keys())[:limit]


class CapabilityCache:
    """Holds the set of invocable tool definitions, keyed by name."""

    def __init__(self, source: ToolSource = static_tool_source, provider: str = "slack"):
        self._source = source
        self.provider = provider
        self._tools: Mapping[str, Tool] = MappingProxyType({})

    async def refresh(self) -> int:
        """
        Reload tool definitions from the source.

        A malformed payload is logged and leaves the cache unchanged. Errors
        raised by the source itself propagate to the caller.

        Returns:
            Number of cached tools after the refresh
        """
        raw = await self._source()
        try:
            tools = parse_tool_definitions(raw)
        except MalformedCacheData as e:
            logger.warning("Discarding malformed %s tool list: %s", self.provider, e)
            return len(self._tools)

        self.replace(tools)
        logger.info("Cached %s tools:", self.provider.capitalize())
        for tool in tools:
            logger.info("  - %s", tool.name)
        return len(self._tools)

    def replace(self, tools: Iterable[Tool]) -> None:
        """Swap in a new tool set in one step."""
        self._tools = MappingProxyType({tool.name: tool for tool in tools})

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def snapshot(self) -> tuple[Tool, ...]:
        """Current tool definitions; safe to hold across refreshes."""
        return tuple(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
