"""
Slack-facing handlers for the Slack MCP agent.

- messages: mention / DM entry point (MessageHandler)
- slack_web: Slack Web API client (SlackWebClient)
- socket_mode: Socket Mode event receiver (SocketModeClient)
"""

from .messages import MessageHandler
from .slack_web import SlackWebClient
from .socket_mode import SocketModeClient

__all__ = [
    "MessageHandler",
    "SlackWebClient",
    "SocketModeClient",
]
