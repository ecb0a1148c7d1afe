"""
Decision objects produced by the language model.

The model is asked for exactly one of:
    {"answer": "text"}
    {"tool": "tool_name", "input": {...}}
"""

import json
from dataclasses import dataclass, field
from typing import Any

from .errors import MalformedDecision


@dataclass(frozen=True)
class Decision:
    """What to do with one chat message."""

    answer: str | None = None
    tool: str | None = None
    input: dict[str, Any] = field(default_factory=dict)

    @property
    def is_answer(self) -> bool:
        return bool(self.answer)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        answer = data.get("answer")
        tool = data.get("tool")
        tool_input = data.get("input")
        return cls(
            answer=str(answer) if answer else None,
            tool=str(tool) if tool else None,
            input=dict(tool_input) if isinstance(tool_input, dict) else {},
        )


def parse_decision(raw: str | None) -> Decision:
    """
    Decode the model's JSON reply.

    An empty reply decodes as an empty object, which yields a decision with
    neither branch set.

    Raises:
        MalformedDecision: If the reply is not a JSON object
    """
    text = (raw or "").strip() or "{}"
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDecision(text, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedDecision(text, f"expected a JSON object, got {type(data).__name__}")
    return Decision.from_dict(data)
