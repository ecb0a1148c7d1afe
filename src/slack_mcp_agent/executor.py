"""
Decision execution: turn a Decision into the reply text.

Order for tool decisions:
    known tool? -> inject channel -> cooldown -> invoke -> format or summarize

Every failure becomes reply text; execute() never raises AgentError.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .capabilities import CapabilityCache
from .decision import Decision
from .errors import (
    AgentError,
    ConnectionUnavailable,
    InvocationTimeout,
    RemoteError,
    Throttled,
    ToolNotAvailable,
)
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

CHANNEL_FIELD = "channel_id"
SUMMARY_KEYWORDS = ("summarize", "summarise", "summary")

NOT_SURE_REPLY = "I'm not sure which tool to call."
SUMMARY_FALLBACK = "Summary complete."

Invoker = Callable[[str, dict[str, Any]], Awaitable[Any]]
Summarizer = Callable[[str], Awaitable[str | None]]


@dataclass(frozen=True)
class MessageContext:
    """Where a message came from."""

    user_id: str
    text: str
    channel_id: str | None = None


def wants_summary(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in SUMMARY_KEYWORDS)


def decode_result(raw: Any) -> Any:
    """Parse string results that hold JSON; leave everything else alone."""
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def render_result(result: Any) -> str:
    """Pretty JSON for structured results, raw text otherwise."""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


def format_tool_result(result: Any) -> str:
    return "Tool Result:\n```json\n" + render_result(result) + "\n```"


def describe_failure(error: Exception) -> str:
    """User-facing text for a failed tool call."""
    if isinstance(error, ConnectionUnavailable):
        return "Tool call failed: Slack tools are unavailable right now (no broker connection)."
    if isinstance(error, InvocationTimeout):
        return f"Tool call failed: timed out after {error.timeout_seconds:g} seconds."
    if isinstance(error, RemoteError):
        return f"Tool call failed: {error.cause}"
    return f"Tool call failed: {error}"


class DecisionExecutor:
    """
    Applies a decision: answers directly, or runs one tool call.

    Args:
        capabilities: Known tools; unknown names never reach the gateway
        rate_limiter: Supplies the per-user tool cooldown
        invoke: Tool invoker, normally InvocationGateway.invoke
        summarize: Second model call used when the user asked for a summary
    """

    def __init__(
        self,
        capabilities: CapabilityCache,
        rate_limiter: RateLimiter,
        invoke: Invoker,
        summarize: Summarizer | None = None,
    ):
        self.capabilities = capabilities
        self.rate_limiter = rate_limiter
        self._invoke = invoke
        self._summarize = summarize

    async def execute(self, decision: Decision, context: MessageContext) -> str:
        if decision.is_answer:
            return decision.answer

        if not decision.tool:
            return NOT_SURE_REPLY

        try:
            return await self._run_tool(decision.tool, dict(decision.input), context)
        except (Throttled, ToolNotAvailable) as e:
            return e.user_message()
        except (ConnectionUnavailable, InvocationTimeout, RemoteError) as e:
            logger.error("Tool error: %s", e)
            return describe_failure(e)
        except AgentError as e:
            logger.error("Tool error: %s", e)
            return f"Tool call failed: {e}"

    async def _run_tool(self, tool_name: str, tool_input: dict[str, Any], context: MessageContext) -> str:
        if tool_name not in self.capabilities:
            raise ToolNotAvailable(tool_name)

        if not tool_input.get(CHANNEL_FIELD) and context.channel_id:
            tool_input[CHANNEL_FIELD] = context.channel_id
            logger.info("Injected channel_id: %s", context.channel_id)

        check = self.rate_limiter.check_tool_cooldown(context.user_id)
        if not check.allowed:
            raise Throttled(check.reason)

        # The Slack upstream expects a MIME type here
        if tool_input.get("content_type") == "text":
            tool_input["content_type"] = "text/plain"

        raw = await self._invoke(tool_name, tool_input)
        if not raw:
            return f'Tool "{tool_name}" executed.'

        result = decode_result(raw)

        if self._summarize is not None and wants_summary(context.text):
            return await self._summarize_result(result)

        return format_tool_result(result)

    async def _summarize_result(self, result: Any) -> str:
        content = result if isinstance(result, str) else render_result(result)
        try:
            summary = await self._summarize(content)
        except Exception as e:
            logger.error("Summary failed: %s: %s", type(e).__name__, e)
            return f"Tool call succeeded but the summary failed: {e}"
        return summary or SUMMARY_FALLBACK
