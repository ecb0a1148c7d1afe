"""
Pytest configuration and fixtures for Slack MCP agent tests.
"""

import asyncio
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest

from slack_mcp_agent.broker import ABILITY_RESPONSE, Notification
from slack_mcp_agent.capabilities import CapabilityCache, SLACK_TOOLS
from slack_mcp_agent.destinations import DestinationCache
from slack_mcp_agent.executor import DecisionExecutor
from slack_mcp_agent.rate_limiter import RateLimiter


class FakeClock:
    """Synthetic millisecond clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeConnection:
    """
    Stand-in for BrokerConnection.

    `responder` decides what submit() returns; by default every call gets an
    inline result echoing the tool name.
    """

    def __init__(self):
        self.connected = True
        self.listeners: list[Callable[[Notification], None]] = []
        self.submissions: list[tuple[str, str, dict[str, Any]]] = []
        self.responder: Callable[[str, str, dict[str, Any]], Awaitable[Any]] | None = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def listener_count(self) -> int:
        return len(self.listeners)

    def subscribe(self, listener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    async def submit(self, target_agent: str, tool_name: str, tool_input: dict[str, Any]) -> Any:
        self.submissions.append((target_agent, tool_name, tool_input))
        if self.responder is not None:
            return await self.responder(target_agent, tool_name, tool_input)
        return {"tool": tool_name}

    def notify(self, request_id: str | None, result: Any = None, method: str = ABILITY_RESPONSE, error: dict | None = None) -> None:
        notification = Notification(method=method, correlation_id=request_id, payload=result, error=error)
        for listener in list(self.listeners):
            listener(notification)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(clock: FakeClock) -> RateLimiter:
    """Limiter with the default policy on a synthetic clock."""
    return RateLimiter(
        tool_call_cooldown_ms=2000,
        message_window_ms=60000,
        max_messages_per_window=20,
        clock=clock,
    )


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def capabilities() -> CapabilityCache:
    cache = CapabilityCache()
    cache.replace(SLACK_TOOLS)
    return cache


@pytest.fixture
def destinations() -> DestinationCache:
    cache = DestinationCache(invoke=None)
    cache.replace_records([
        {"ID": "C1", "Name": "general"},
        {"ID": "C2", "Name": "random"},
    ])
    return cache


@pytest.fixture
def invoke() -> AsyncMock:
    return AsyncMock(return_value={"messages": [{"text": "hello"}]})


@pytest.fixture
def summarize() -> AsyncMock:
    return AsyncMock(return_value="Short summary.")


@pytest.fixture
def executor(capabilities: CapabilityCache, rate_limiter: RateLimiter, invoke: AsyncMock, summarize: AsyncMock) -> DecisionExecutor:
    return DecisionExecutor(capabilities, rate_limiter, invoke, summarize)
