#!/usr/bin/env python3
"""
Slack MCP Agent

Bridges Slack conversations to the Slack MCP server behind a KADI broker.

Startup:
- Validate configuration
- Startup DM diagnostic (confirms the bot token works; failure is only logged)
- Connect to the broker and register a placeholder tool
- Eager load of tool and channel caches, then periodic refresh
- Slack Socket Mode for mentions and DMs

Runs until SIGINT/SIGTERM, then shuts everything down in reverse order.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass

from .broker import BrokerConnection
from .capabilities import CapabilityCache, ToolSource, static_tool_source
from .config import AgentConfig, BrokerConfig, SlackConfig, get_config
from .destinations import DestinationCache
from .errors import ConnectionUnavailable, SlackApiError
from .executor import DecisionExecutor
from .gateway import InvocationGateway
from .handlers import MessageHandler, SlackWebClient, SocketModeClient
from .llm_client import LLMClient
from .rate_limiter import RateLimiter
from .refresh import PeriodicRefresher

logger = logging.getLogger("slack_mcp_agent")

STARTUP_DM_TEXT = "Slack agent online and ready!"

_shutdown_event: asyncio.Event | None = None


@dataclass
class AgentRuntime:
    """Everything that has to be stopped on shutdown."""

    web: SlackWebClient
    broker: BrokerConnection
    refreshers: list[PeriodicRefresher]
    socket: SocketModeClient | None = None

    async def close(self) -> None:
        if self.socket is not None:
            await self.socket.stop()
        for refresher in self.refreshers:
            await refresher.stop()
        await self.broker.close()
        await self.web.aclose()


async def send_startup_diagnostic(web: SlackWebClient, config: SlackConfig) -> bool:
    """DM a user on startup to prove the bot token works. Never raises."""
    try:
        target = config.test_user_id or await web.bot_user_id()
        logger.info("Sending startup DM diagnostic to %s...", target)
        await web.send_dm(target, STARTUP_DM_TEXT)
        logger.info("DM diagnostic succeeded.")
        return True
    except SlackApiError as e:
        logger.error("Startup DM failed: %s", e)
        return False


async def connect_broker(config: BrokerConfig) -> BrokerConnection:
    """Connect and reach the ready state. A failure leaves the connection closed."""
    broker = BrokerConnection(
        config.url,
        agent_name=config.agent_name,
        request_timeout=config.request_timeout_seconds,
    )
    try:
        await broker.connect()
        await broker.register_placeholder()
    except Exception as e:
        logger.error(
            "Could not connect to broker at %s (%s: %s). Tool calls will be unavailable.",
            config.url, type(e).__name__, e,
        )
        await broker.close()
    return broker


def build_tool_source(config: BrokerConfig, broker: BrokerConnection) -> ToolSource:
    if config.tool_discovery != "broker":
        return static_tool_source

    async def discover():
        if not broker.is_connected:
            raise ConnectionUnavailable()
        return await broker.list_tools(config.target_agent)

    return discover


async def start_agent(config: AgentConfig) -> AgentRuntime:
    """Build and start every component. Raises on missing config or Slack identity."""
    errors = config.validate()
    if errors:
        raise RuntimeError("; ".join(errors))

    web = SlackWebClient(
        config.slack.bot_token,
        base_url=config.slack.api_base_url,
        timeout=config.slack.request_timeout_seconds,
    )
    await send_startup_diagnostic(web, config.slack)

    broker = await connect_broker(config.broker)
    gateway = InvocationGateway(
        lambda: broker,
        target_agent=config.broker.target_agent,
        timeout_seconds=config.broker.invocation_timeout_seconds,
    )

    capabilities = CapabilityCache(build_tool_source(config.broker, broker))
    destinations = DestinationCache(gateway.invoke)
    runtime = AgentRuntime(
        web=web,
        broker=broker,
        refreshers=[
            PeriodicRefresher("tools", capabilities.refresh, config.refresh.tools_interval_seconds),
            PeriodicRefresher("channels", destinations.refresh, config.refresh.channels_interval_seconds),
        ],
    )

    try:
        bot_user_id = await web.bot_user_id()

        # Eager loads run before Slack traffic is accepted; failures are non-fatal
        for refresher in runtime.refreshers:
            await refresher.start()

        rate_limiter = RateLimiter.from_config(config.rate_limits)
        llm = LLMClient(config.llm)
        executor = DecisionExecutor(capabilities, rate_limiter, gateway.invoke, llm.summarize)
        handler = MessageHandler(
            bot_user_id=bot_user_id,
            rate_limiter=rate_limiter,
            llm=llm,
            executor=executor,
            capabilities=capabilities,
            destinations=destinations,
            reply=web.post_message,
        )

        runtime.socket = SocketModeClient(web, config.slack.app_token, handler.handle_event)
        await runtime.socket.start()
    except BaseException:
        await runtime.close()
        raise

    logger.info("Slack Agent is running!")
    return runtime


async def run_agent(config: AgentConfig | None = None) -> None:
    """Run the agent until a shutdown signal arrives."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    logger.info("Starting Slack Agent with OpenAI + MCP...")
    runtime = await start_agent(config or get_config())

    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info("Received %s, shutting down gracefully...", sig.name)
        _shutdown_event.set()

    # Register signal handlers (Unix only)
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

    try:
        await _shutdown_event.wait()
    finally:
        await runtime.close()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    """Main entry point."""
    config = get_config()
    configure_logging(config.log_level)
    try:
        asyncio.run(run_agent(config))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical("Fatal Error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
