"""
Slack MCP Agent

Turns Slack mentions and DMs into either a direct answer or a call to one
Slack MCP tool reached through a KADI broker.

Core pieces:
- InvocationGateway: submits tool calls and correlates pending results that
  arrive later as broker notifications
- RateLimiter: per-user message window and tool-call cooldown
- CapabilityCache / DestinationCache: periodically refreshed views of which
  tools and channels currently exist
- DecisionExecutor: applies the model's {answer} or {tool, input} decision
"""

__version__ = "1.0.0"

from .capabilities import CapabilityCache
from .destinations import DestinationCache, parse_tabular
from .executor import DecisionExecutor, MessageContext
from .gateway import InvocationGateway
from .rate_limiter import RateLimiter
from .server import main

__all__ = [
    "main",
    "CapabilityCache",
    "DestinationCache",
    "DecisionExecutor",
    "InvocationGateway",
    "MessageContext",
    "RateLimiter",
    "parse_tabular",
]
