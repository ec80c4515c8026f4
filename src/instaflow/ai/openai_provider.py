"""OpenAI Chat Completions provider over plain HTTP (requests).

Security: NEVER log prompts, history, or reply text.
"""

from __future__ import annotations

from typing import Any, Sequence

import requests

from instaflow.domain.errors import NetworkError, PipelineError, RateLimitError, UpstreamServiceError
from instaflow.domain.models import ChatMessage
from instaflow.domain.sentiment import normalize_sentiment
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

from .base import SENTIMENT_PROMPT, AIResult, to_chat_messages
from .pricing import DEFAULT_OPENAI_MODEL, calculate_total_cost

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIProvider:
    """AIProvider backed by the OpenAI REST API."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        timeout: float = 30.0,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        self.model = model or DEFAULT_OPENAI_MODEL
        self._api_key = api_key
        self._timeout = timeout
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._http = session or requests.Session()

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self._http.post(self._url, json=body, headers=headers, timeout=self._timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise NetworkError(f"openai request failed: {type(e).__name__}", service="ai") from e

        if response.status_code == 429:
            try:
                retry_after = float(response.headers.get("Retry-After", 60))
            except ValueError:
                retry_after = 60.0
            raise RateLimitError("openai rate limited", retry_after=retry_after)
        if response.status_code >= 400:
            raise UpstreamServiceError(f"openai HTTP {response.status_code}", service="ai")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamServiceError("openai returned invalid JSON", service="ai") from e

    def generate(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AIResult:
        messages = [{"role": "system", "content": system_prompt}, *to_chat_messages(history)]
        data = self._post(
            {
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )

        choices = data.get("choices") or []
        text = ""
        if choices:
            text = ((choices[0].get("message") or {}).get("content") or "").strip()
        tokens_used = int((data.get("usage") or {}).get("total_tokens") or 0)
        model = data.get("model") or self.model

        logger.info(
            "ai reply generated",
            extra={
                "extra_fields": safe_log_context(
                    provider="openai",
                    model=model,
                    history_len=len(messages) - 1,
                    tokens_used=tokens_used,
                    reply_len=len(text),
                )
            },
        )

        return AIResult(
            text=text,
            tokens_used=tokens_used,
            model=self.model,
            cost=calculate_total_cost(self.model, tokens_used),
        )

    def analyze_sentiment(self, text: str) -> str | None:
        try:
            data = self._post(
                {
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SENTIMENT_PROMPT},
                        {"role": "user", "content": text},
                    ],
                    "temperature": 0.3,
                    "max_tokens": 10,
                }
            )
        except PipelineError as e:
            logger.warning(
                "sentiment analysis unavailable",
                extra={"extra_fields": safe_log_context(provider="openai", error_code=e.code)},
            )
            return None
        choices = data.get("choices") or []
        if not choices:
            return None
        return normalize_sentiment((choices[0].get("message") or {}).get("content"))
