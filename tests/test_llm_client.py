"""
Tests for prompt building and the LLM client.

The OpenAI client and the tokenizer are replaced with fakes so no network
access is needed.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.types import Tool

from slack_mcp_agent.config import LLMConfig
from slack_mcp_agent.errors import MalformedDecision
from slack_mcp_agent.llm_client import TRUNCATION_MARKER, LLMClient
from slack_mcp_agent.prompts import (
    SUMMARY_SYSTEM_PROMPT,
    build_system_prompt,
    format_channel_lookup,
    format_tool_summary,
)


class CharEncoder:
    """One token per character."""

    def encode(self, text):
        return list(text)

    def decode(self, tokens):
        return "".join(tokens)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion('{"answer": "hi"}'))
    return client


@pytest.fixture
def llm(openai_client) -> LLMClient:
    config = LLMConfig(api_key="sk-test", model="decider", summary_model="summarizer", summary_max_input_tokens=10)
    client = LLMClient(config, client=openai_client)
    client._encoder = CharEncoder()
    return client


class TestPrompts:
    """Tests for prompt formatting."""

    def test_tool_summary(self):
        tool = Tool(
            name="slack_conversations_history",
            description="Fetch   message\nhistory",
            inputSchema={"type": "object", "properties": {"channel_id": {}, "limit": {}}},
        )

        assert format_tool_summary([tool]) == (
            "- slack_conversations_history | Fetch message history | input: { channel_id, limit }"
        )

    def test_empty_lists(self):
        assert format_tool_summary([]) == "(no Slack tools found)"
        assert format_channel_lookup([]) == "(no channels cached)"

    def test_system_prompt_lists_snapshots(self, capabilities, destinations):
        prompt = build_system_prompt(capabilities.snapshot(), destinations.snapshot())

        assert "general = C1" in prompt
        assert "- slack_channels_list | List all Slack channels | input: {}" in prompt
        assert '{"tool":"tool_name","input":{...}}' in prompt


class TestLLMClient:
    """Tests for LLMClient."""

    @pytest.mark.asyncio
    async def test_decide_uses_json_mode(self, llm: LLMClient, openai_client, capabilities, destinations):
        decision = await llm.decide("hello", capabilities.snapshot(), destinations.snapshot())

        assert decision.answer == "hi"
        kwargs = openai_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "decider"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_decide_malformed(self, llm: LLMClient, openai_client):
        openai_client.chat.completions.create.return_value = completion("definitely not json")

        with pytest.raises(MalformedDecision):
            await llm.decide("hello", [], [])

    @pytest.mark.asyncio
    async def test_summarize_truncates_input(self, llm: LLMClient, openai_client):
        openai_client.chat.completions.create.return_value = completion("A summary.")

        summary = await llm.summarize("x" * 50)

        assert summary == "A summary."
        kwargs = openai_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "summarizer"
        assert kwargs["messages"][0]["content"] == SUMMARY_SYSTEM_PROMPT
        assert kwargs["messages"][1]["content"] == "x" * 10 + TRUNCATION_MARKER

    @pytest.mark.asyncio
    async def test_summarize_no_choices(self, llm: LLMClient, openai_client):
        openai_client.chat.completions.create.return_value = SimpleNamespace(choices=[])

        assert await llm.summarize("short") is None

    def test_count_tokens(self, llm: LLMClient):
        assert llm.count_tokens("") == 0
        assert llm.count_tokens("abc") == 3
        assert llm.truncate_to_tokens("abc", 5) == "abc"
