"""
Prompt text for the decision and summary calls.

Prompts are built from cache snapshots at request time so the model only ever
sees tools and channels that currently exist.
"""

import re
from typing import Iterable

from mcp.types import Tool

from .capabilities import input_property_names
from .destinations import Destination

MAX_DESCRIPTION_CHARS = 140

SUMMARY_SYSTEM_PROMPT = "Summarize this Slack history:"


def format_tool_summary(tools: Iterable[Tool]) -> str:
    """One line per tool: name, short description, input keys."""
    lines = []
    for tool in tools:
        props = input_property_names(tool)
        sample = "{ " + ", ".join(props) + " }" if props else "{}"
        desc = re.sub(r"\s+", " ", tool.description or "")[:MAX_DESCRIPTION_CHARS]
        lines.append(f"- {tool.name} | {desc} | input: {sample}")
    return "\n".join(lines) if lines else "(no Slack tools found)"


def format_channel_lookup(destinations: Iterable[Destination]) -> str:
    lines = [f"{dest.name} = {dest.id}" for dest in destinations]
    return "\n".join(lines) if lines else "(no channels cached)"


def build_system_prompt(tools: Iterable[Tool], destinations: Iterable[Destination]) -> str:
    """System prompt constraining the model to known tools and channels."""
    return f"""
You are an automation assistant that controls Slack through MCP.

RULES:
1. You may ONLY call Slack MCP tools that appear in the "AVAILABLE TOOLS" list below.
2. If a tool does not appear in the list, you MUST NOT call it. Do not guess tool names.
3. If a channel ID is needed, ONLY use a channel from the "KNOWN SLACK CHANNELS" list.
4. Do NOT guess channel IDs, usernames, or agent names.
5. Always return one of the following JSON formats:
   {{"answer":"text"}}
   OR
   {{"tool":"tool_name","input":{{...}}}}

KNOWN SLACK CHANNELS (from MCP slack_channels_list):
{format_channel_lookup(destinations)}

AVAILABLE TOOLS (from MCP capability discovery):
{format_tool_summary(tools)}

Your job is to decide:
- If the user is asking for an explanation, return {{"answer": "..."}}
- If the user is asking you to perform an action in Slack, return a tool call
"""
