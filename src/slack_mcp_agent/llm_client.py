"""
LLM client for the Slack MCP agent.

Provides the two model calls the agent makes:
- decide: turn a chat message into a Decision (JSON mode)
- summarize: condense a tool result into prose

Tool results can be large (channel histories), so summary input is cut to a
token budget first.
"""

from typing import Iterable, TYPE_CHECKING

import tiktoken
from openai import AsyncOpenAI
from mcp.types import Tool

from .decision import Decision, parse_decision
from .destinations import Destination
from .prompts import SUMMARY_SYSTEM_PROMPT, build_system_prompt

if TYPE_CHECKING:
    from .config import LLMConfig


TRUNCATION_MARKER = "\n...[truncated]"


class LLMClient:
    """Handles decision and summary queries against an OpenAI-compatible API."""

    def __init__(self, config: "LLMConfig", client: AsyncOpenAI | None = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.api_base_url,
            timeout=config.request_timeout_seconds,
        )
        self._encoder: tiktoken.Encoding | None = None

    @property
    def encoder(self) -> tiktoken.Encoding:
        """Lazy-load tiktoken encoder."""
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding("o200k_base")
        return self._encoder

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        if not text:
            return 0
        return len(self.encoder.encode(text))

    def truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        """Cut text to at most max_tokens tokens, marking the cut."""
        tokens = self.encoder.encode(text)
        if len(tokens) <= max_tokens:
            return text
        return self.encoder.decode(tokens[:max_tokens]) + TRUNCATION_MARKER

    async def decide(
        self,
        text: str,
        tools: Iterable[Tool],
        destinations: Iterable[Destination],
    ) -> Decision:
        """
        Ask the model whether to answer directly or call a tool.

        Raises:
            MalformedDecision: If the reply is not a JSON object
        """
        completion = await self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": build_system_prompt(tools, destinations)},
                {"role": "user", "content": text},
            ],
            response_format={"type": "json_object"},
        )
        raw = completion.choices[0].message.content if completion.choices else None
        return parse_decision(raw)

    async def summarize(self, content: str) -> str | None:
        """Summarize a tool result. Returns None if the model sent nothing back."""
        content = self.truncate_to_tokens(content, self.config.summary_max_input_tokens)
        completion = await self.client.chat.completions.create(
            model=self.config.summary_model,
            messages=[
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        )
        if not completion.choices:
            return None
        return completion.choices[0].message.content
