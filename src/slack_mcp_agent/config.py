"""
Configuration for the Slack MCP agent

Environment Variables:
- SLACK_BOT_TOKEN / SLACK_APP_TOKEN: Required, Slack bot and Socket Mode tokens
- SLACK_TEST_USER_ID: User that receives the startup diagnostic DM (default: the bot)
- KADI_BROKER_URL / BROKER_URL: Broker websocket URL (default: ws://localhost:8080/kadi)
- OPENAI_API_KEY: Required for decisions and summaries
- AGENT_MODEL: Chat model (default: gpt-4o-mini)

Rate limits and refresh intervals are overridable through the AGENT_* variables
listed on each dataclass below.
"""

import os
from dataclasses import dataclass, field
from typing import Literal

from dotenv import load_dotenv

load_dotenv()


DEFAULT_BROKER_URL = "ws://localhost:8080/kadi"
DEFAULT_MODEL = "gpt-4o-mini"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class SlackConfig:
    """Credentials and endpoints for the Slack side."""

    bot_token: str = field(default_factory=lambda: os.getenv("SLACK_BOT_TOKEN", ""))
    app_token: str = field(default_factory=lambda: os.getenv("SLACK_APP_TOKEN", ""))
    test_user_id: str = field(default_factory=lambda: os.getenv("SLACK_TEST_USER_ID", ""))
    api_base_url: str = field(
        default_factory=lambda: os.getenv("SLACK_API_BASE_URL", "https://slack.com/api")
    )
    request_timeout_seconds: float = 20.0


@dataclass
class BrokerConfig:
    """Connection to the KADI broker that fronts the Slack MCP upstream."""

    url: str = field(
        default_factory=lambda: (
            os.getenv("KADI_BROKER_URL") or os.getenv("BROKER_URL") or DEFAULT_BROKER_URL
        )
    )
    agent_name: str = field(default_factory=lambda: os.getenv("KADI_AGENT_NAME", "slack-agent"))
    target_agent: str = field(
        default_factory=lambda: os.getenv("KADI_TARGET_AGENT", "upstream:slack")
    )

    # Deadline for a single tool invocation, pending results included
    invocation_timeout_seconds: float = field(
        default_factory=lambda: _env_float("KADI_INVOCATION_TIMEOUT", 300.0)
    )
    # Deadline for a plain request/response round trip
    request_timeout_seconds: float = field(
        default_factory=lambda: _env_float("KADI_REQUEST_TIMEOUT", 30.0)
    )

    # "static" uses the built-in Slack tool catalogue, "broker" asks the broker
    tool_discovery: Literal["static", "broker"] = field(
        default_factory=lambda: os.getenv("KADI_TOOL_DISCOVERY", "static")  # type: ignore
    )


@dataclass
class LLMConfig:
    """Decision and summarization model settings (OpenAI-compatible API)."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    api_base_url: str | None = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL") or None)
    model: str = field(default_factory=lambda: os.getenv("AGENT_MODEL", DEFAULT_MODEL))
    summary_model: str = field(
        default_factory=lambda: os.getenv("AGENT_SUMMARY_MODEL") or os.getenv("AGENT_MODEL", DEFAULT_MODEL)
    )

    # Tool output is cut to this many tokens before it goes to the summarizer
    summary_max_input_tokens: int = field(
        default_factory=lambda: _env_int("AGENT_SUMMARY_MAX_TOKENS", 12000)
    )
    request_timeout_seconds: float = 60.0


@dataclass
class RateLimitConfig:
    """Per-user message and tool-call limits."""

    tool_call_cooldown_ms: int = field(
        default_factory=lambda: _env_int("AGENT_TOOL_COOLDOWN_MS", 2000)
    )
    message_window_ms: int = field(
        default_factory=lambda: _env_int("AGENT_MESSAGE_WINDOW_MS", 60000)
    )
    max_messages_per_window: int = field(
        default_factory=lambda: _env_int("AGENT_MAX_MESSAGES_PER_WINDOW", 20)
    )


@dataclass
class RefreshConfig:
    """Cache refresh intervals."""

    tools_interval_seconds: float = field(
        default_factory=lambda: _env_float("AGENT_TOOLS_REFRESH_SECONDS", 5 * 60)
    )
    channels_interval_seconds: float = field(
        default_factory=lambda: _env_float("AGENT_CHANNELS_REFRESH_SECONDS", 10 * 60)
    )


@dataclass
class AgentConfig:
    """Top-level configuration."""

    slack: SlackConfig = field(default_factory=SlackConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.slack.bot_token or not self.slack.app_token:
            errors.append(
                "Missing Slack credentials. Ensure SLACK_BOT_TOKEN and SLACK_APP_TOKEN are set."
            )

        if not self.llm.api_key:
            errors.append("OPENAI_API_KEY environment variable not set")

        if self.broker.tool_discovery not in ("static", "broker"):
            errors.append("KADI_TOOL_DISCOVERY must be 'static' or 'broker'")

        if self.rate_limits.max_messages_per_window < 1:
            errors.append("AGENT_MAX_MESSAGES_PER_WINDOW must be at least 1")

        if self.broker.invocation_timeout_seconds <= 0:
            errors.append("KADI_INVOCATION_TIMEOUT must be positive")

        return errors


def get_config() -> AgentConfig:
    """Get a configuration instance built from the current environment."""
    return AgentConfig()
