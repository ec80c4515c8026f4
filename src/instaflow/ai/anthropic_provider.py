"""Anthropic Messages API provider.

Security: NEVER log prompts, history, or reply text. Only sizes and usage.
"""

from __future__ import annotations

from typing import Any, Sequence

import anthropic

from instaflow.domain.errors import NetworkError, PipelineError, RateLimitError, UpstreamServiceError
from instaflow.domain.models import ChatMessage
from instaflow.domain.sentiment import normalize_sentiment
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

from .base import SENTIMENT_PROMPT, AIResult, to_chat_messages
from .pricing import DEFAULT_ANTHROPIC_MODEL, calculate_cost

logger = get_logger(__name__)


def _retry_after(exc: anthropic.APIStatusError, default: float = 60.0) -> float:
    try:
        return float(exc.response.headers.get("retry-after", default))
    except (TypeError, ValueError):
        return default


class AnthropicProvider:
    """AIProvider backed by the Anthropic SDK."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        timeout: float = 30.0,
        client: Any | None = None,
    ) -> None:
        self.model = model or DEFAULT_ANTHROPIC_MODEL
        # Retries are owned by the job queue, not the SDK.
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _create(self, **kwargs: Any) -> Any:
        try:
            return self.client.messages.create(**kwargs)
        except anthropic.APIConnectionError as e:
            # Includes APITimeoutError
            raise NetworkError(f"anthropic connection failed: {type(e).__name__}", service="ai") from e
        except anthropic.RateLimitError as e:
            raise RateLimitError("anthropic rate limited", retry_after=_retry_after(e)) from e
        except anthropic.APIStatusError as e:
            if e.status_code == 529:
                raise RateLimitError("anthropic overloaded", retry_after=_retry_after(e, 30.0)) from e
            raise UpstreamServiceError(f"anthropic HTTP {e.status_code}", service="ai") from e
        except anthropic.APIError as e:
            raise UpstreamServiceError(f"anthropic error: {type(e).__name__}", service="ai") from e

    def generate(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AIResult:
        messages = to_chat_messages(history)
        # The Messages API requires the first turn to come from the user.
        while messages and messages[0]["role"] != "user":
            messages.pop(0)
        if not messages:
            raise UpstreamServiceError("no user message to reply to", service="ai")

        response = self._create(
            model=self.model,
            system=system_prompt,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )

        text = "".join(
            getattr(block, "text", "") for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        input_tokens = int(getattr(response.usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(response.usage, "output_tokens", 0) or 0)

        logger.info(
            "ai reply generated",
            extra={
                "extra_fields": safe_log_context(
                    provider="anthropic",
                    model=self.model,
                    history_len=len(messages),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    reply_len=len(text),
                )
            },
        )

        return AIResult(
            text=text,
            tokens_used=input_tokens + output_tokens,
            model=self.model,
            cost=calculate_cost(self.model, input_tokens, output_tokens),
        )

    def analyze_sentiment(self, text: str) -> str | None:
        try:
            response = self._create(
                model=self.model,
                system=SENTIMENT_PROMPT,
                messages=[{"role": "user", "content": text}],
                max_tokens=10,
                temperature=0.3,
            )
        except PipelineError as e:
            logger.warning(
                "sentiment analysis unavailable",
                extra={"extra_fields": safe_log_context(provider="anthropic", error_code=e.code)},
            )
            return None
        answer = "".join(getattr(block, "text", "") for block in response.content)
        return normalize_sentiment(answer)
