"""
Per-user rate limiting for the Slack MCP agent.

Two independent checks share one state record per user:
- check_message_rate: fixed window cap on inbound messages
- check_tool_cooldown: minimum spacing between tool calls

State lives in memory for the lifetime of the limiter instance. Checks run
synchronously, so two checks for the same user can never interleave on the
event loop.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable

from .config import RateLimitConfig


def monotonic_ms() -> float:
    """Default clock: monotonic milliseconds."""
    return time.monotonic() * 1000.0


@dataclass
class UserLimitState:
    """Limiter bookkeeping for one user. Timestamps are in milliseconds."""

    window_start: float
    message_count_in_window: int = 0
    last_tool_call_at: float | None = None  # None until the first allowed tool call


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a limiter check."""

    allowed: bool
    reason: str | None = None
    retry_after_seconds: int = 0


class RateLimiter:
    """
    In-memory per-user message and tool-call limiter.

    Args:
        tool_call_cooldown_ms: Minimum spacing between tool calls per user
        message_window_ms: Length of the message counting window
        max_messages_per_window: Messages allowed per window
        clock: Callable returning the current time in milliseconds

    Example:
        >>> limiter = RateLimiter(tool_call_cooldown_ms=2000)
        >>> limiter.check_tool_cooldown("U123").allowed
        True
    """

    def __init__(
        self,
        tool_call_cooldown_ms: int = 2000,
        message_window_ms: int = 60000,
        max_messages_per_window: int = 20,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.tool_call_cooldown_ms = tool_call_cooldown_ms
        self.message_window_ms = message_window_ms
        self.max_messages_per_window = max_messages_per_window
        self._clock = clock
        self._users: dict[str, UserLimitState] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig, clock: Callable[[], float] = monotonic_ms) -> "RateLimiter":
        return cls(
            tool_call_cooldown_ms=config.tool_call_cooldown_ms,
            message_window_ms=config.message_window_ms,
            max_messages_per_window=config.max_messages_per_window,
            clock=clock,
        )

    def _window_label(self) -> str:
        if self.message_window_ms == 60000:
            return "per minute"
        return f"per {self.message_window_ms / 1000:g} seconds"

    def check_message_rate(self, user_id: str) -> RateLimitResult:
        """Count one inbound message for the user and decide whether to accept it."""
        now = self._clock()
        state = self._users.get(user_id)

        if state is None:
            self._users[user_id] = UserLimitState(window_start=now, message_count_in_window=1)
            return RateLimitResult(allowed=True)

        if now - state.window_start > self.message_window_ms:
            state.message_count_in_window = 1
            state.window_start = now
            return RateLimitResult(allowed=True)

        state.message_count_in_window += 1
        if state.message_count_in_window > self.max_messages_per_window:
            return RateLimitResult(
                allowed=False,
                reason=(
                    f"Rate limit exceeded: max {self.max_messages_per_window} "
                    f"messages {self._window_label()}"
                ),
            )

        return RateLimitResult(allowed=True)

    def check_tool_cooldown(self, user_id: str) -> RateLimitResult:
        """Gate a tool call on the user's cooldown. Only allowed calls move the clock."""
        now = self._clock()
        state = self._users.get(user_id)

        if state is None:
            self._users[user_id] = UserLimitState(window_start=now, last_tool_call_at=now)
            return RateLimitResult(allowed=True)

        if state.last_tool_call_at is not None:
            elapsed = now - state.last_tool_call_at
            if elapsed < self.tool_call_cooldown_ms:
                wait_seconds = max(1, math.ceil((self.tool_call_cooldown_ms - elapsed) / 1000))
                return RateLimitResult(
                    allowed=False,
                    reason=f"Tool calls are throttled: wait {wait_seconds} seconds",
                    retry_after_seconds=wait_seconds,
                )

        state.last_tool_call_at = now
        return RateLimitResult(allowed=True)

    def state(self, user_id: str) -> UserLimitState | None:
        """Current state for a user, or None if never seen."""
        return self._users.get(user_id)

    def reset(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    def reset_all(self) -> None:
        self._users.clear()

    def __len__(self) -> int:
        return len(self._users)
