"""
Error kinds for the Slack MCP agent.

Every failure that can happen while handling a chat message maps onto one of
these. They are caught at the message-handling boundary and turned into a
short reply for the user; none of them escape the handler.
"""

from typing import Any


class AgentError(Exception):
    """Base class for all agent errors."""

    def user_message(self) -> str:
        """Text shown to the user when this error ends a request."""
        return str(self)


class RateLimited(AgentError):
    """Too many messages from one user inside the current window."""

    def user_message(self) -> str:
        return f"Rate limit: {self}"


class Throttled(AgentError):
    """Tool call arrived before the user's cooldown elapsed."""

    def user_message(self) -> str:
        return f"Throttle: {self}"


class ToolNotAvailable(AgentError):
    """The decision named a tool that is not in the capability cache."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name)
        self.tool_name = tool_name

    def user_message(self) -> str:
        return f'Tool "{self.tool_name}" not available.'


class MalformedDecision(AgentError):
    """The language model returned something that is not a decision object."""

    def __init__(self, raw: str, reason: str = ""):
        super().__init__(reason or "undecodable decision payload")
        self.raw = raw

    def user_message(self) -> str:
        return "I couldn't parse the assistant's response."


class MalformedCacheData(AgentError):
    """A tool or channel listing could not be decoded. Never fatal."""


class ConnectionUnavailable(AgentError):
    """No live broker connection to submit a tool call through."""

    def __init__(self, message: str = "No broker connection available"):
        super().__init__(message)


class InvocationTimeout(AgentError, TimeoutError):
    """No result arrived for a tool call before its deadline."""

    def __init__(self, tool_name: str, timeout_seconds: float):
        super().__init__(f"Tool invocation timeout for {tool_name} after {timeout_seconds:g}s")
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds


class RemoteError(AgentError):
    """Submitting a tool call failed at the transport or protocol level."""

    def __init__(self, tool_name: str, cause: BaseException):
        super().__init__(f"{tool_name}: {type(cause).__name__}: {cause}")
        self.tool_name = tool_name
        self.cause = cause


class BrokerError(Exception):
    """JSON-RPC error object returned by the broker."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_payload(cls, error: Any) -> "BrokerError":
        """Build from a wire error object. Unusable codes fall back to -32000."""
        if not isinstance(error, dict):
            return cls(-32000, str(error))
        code = error.get("code", -32000)
        try:
            code = int(code)
        except (TypeError, ValueError):
            code = -32000
        return cls(code, str(error.get("message", "")), error.get("data"))


class SlackApiError(Exception):
    """Slack Web API replied with ok=false or an unusable payload."""

    def __init__(self, method: str, error: str):
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error
