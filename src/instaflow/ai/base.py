"""AI provider interface.

Providers turn a system prompt plus conversation history into reply text.
They raise `RateLimitError` / `UpstreamServiceError(service="ai")`; callers
never see SDK or HTTP exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from instaflow.domain.models import ChatMessage

SENTIMENT_PROMPT = (
    "Analyze the sentiment of the message. "
    "Respond with only one word: positive, neutral, or negative."
)


@dataclass(frozen=True)
class AIResult:
    """Provider reply. `text` is NEVER logged."""

    text: str
    tokens_used: int
    model: str
    cost: float


class AIProvider(Protocol):
    model: str

    def generate(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AIResult: ...

    def analyze_sentiment(self, text: str) -> str | None:
        """Return positive/neutral/negative, or None if unavailable."""
        ...


def to_chat_messages(history: Sequence[ChatMessage]) -> list[dict[str, str]]:
    """History as role/content dicts. Consecutive same-role turns are merged."""
    messages: list[dict[str, str]] = []
    for msg in history:
        if not msg.content:
            continue
        if messages and messages[-1]["role"] == msg.role:
            messages[-1]["content"] += "\n" + msg.content
        else:
            messages.append({"role": msg.role, "content": msg.content})
    return messages
