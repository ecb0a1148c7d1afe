"""
Chat message entry point.

Handles two Slack event shapes:
- app_mention: the bot was tagged in a channel; the mention tag is stripped
- message with channel_type "im": a direct message to the bot

Each message is rate checked, turned into a decision by the model, executed,
and answered with exactly one reply in the originating channel.
"""

import logging
import re
from typing import Any, Awaitable, Callable

from openai import OpenAIError

from ..capabilities import CapabilityCache
from ..destinations import DestinationCache
from ..errors import MalformedDecision, RateLimited
from ..executor import DecisionExecutor, MessageContext
from ..llm_client import LLMClient
from ..rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Reply = Callable[[str, str], Awaitable[Any]]

LLM_UNAVAILABLE_REPLY = "Sorry, I couldn't reach the language model right now."


class MessageHandler:
    """
    Routes Slack events through the decision pipeline.

    Args:
        bot_user_id: The bot's own user id, used to skip self-messages and strip mentions
        rate_limiter: Per-user message rate limiter
        llm: Produces decisions from text
        executor: Applies decisions
        capabilities: Tool cache shown to the model
        destinations: Channel cache shown to the model
        reply: Coroutine posting (channel, text)
    """

    def __init__(
        self,
        bot_user_id: str,
        rate_limiter: RateLimiter,
        llm: LLMClient,
        executor: DecisionExecutor,
        capabilities: CapabilityCache,
        destinations: DestinationCache,
        reply: Reply,
    ):
        self.bot_user_id = bot_user_id
        self.rate_limiter = rate_limiter
        self.llm = llm
        self.executor = executor
        self.capabilities = capabilities
        self.destinations = destinations
        self._reply = reply
        self._mention_re = re.compile(f"<@{re.escape(bot_user_id)}>")

    async def handle_event(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "app_mention":
            await self.on_mention(event)
        elif kind == "message":
            await self.on_direct_message(event)

    async def on_mention(self, event: dict[str, Any]) -> None:
        user = event.get("user")
        if not user or user == self.bot_user_id or event.get("bot_id"):
            return

        channel = event.get("channel")
        check = self.rate_limiter.check_message_rate(user)
        if not check.allowed:
            logger.info("Rate limited %s", user)
            await self._reply(channel, RateLimited(check.reason).user_message())
            return

        text = self._mention_re.sub("", event.get("text") or "").strip()
        logger.info("Mention from %s: %s", user, text)
        await self.handle_input(text, user, channel)

    async def on_direct_message(self, event: dict[str, Any]) -> None:
        if event.get("channel_type") != "im" or event.get("bot_id") or event.get("subtype"):
            return
        user = event.get("user")
        if not user or user == self.bot_user_id:
            return

        channel = event.get("channel")
        check = self.rate_limiter.check_message_rate(user)
        if not check.allowed:
            logger.info("Rate limited %s", user)
            await self._reply(channel, RateLimited(check.reason).user_message())
            return

        text = event.get("text") or ""
        logger.info("DM from %s: %s", user, text)
        await self.handle_input(text, user, channel)

    async def handle_input(self, text: str, user: str, channel: str | None) -> str:
        """Decide, execute and reply. Returns the reply text."""
        try:
            decision = await self.llm.decide(
                text, self.capabilities.snapshot(), self.destinations.snapshot()
            )
        except MalformedDecision as e:
            logger.error("Invalid JSON from LLM: %s", e.raw)
            reply = e.user_message()
        except OpenAIError as e:
            logger.error("Decision call failed: %s: %s", type(e).__name__, e)
            reply = LLM_UNAVAILABLE_REPLY
        else:
            reply = await self.executor.execute(
                decision, MessageContext(user_id=user, text=text, channel_id=channel)
            )

        await self._reply(channel, reply)
        return reply
