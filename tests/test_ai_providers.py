"""Tests for AI providers, pricing and provider selection."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest
import requests

from instaflow.ai.anthropic_provider import AnthropicProvider
from instaflow.ai.base import to_chat_messages
from instaflow.ai.factory import provider_from_env
from instaflow.ai.openai_provider import OpenAIProvider
from instaflow.ai.pricing import calculate_cost, calculate_total_cost
from instaflow.domain.errors import NetworkError, RateLimitError, UpstreamServiceError
from instaflow.domain.models import ChatMessage

T = datetime(2025, 6, 1, tzinfo=timezone.utc)
_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _turn(role, content):
    return ChatMessage(role=role, content=content, sent_at=T)


def _status_error(cls, status, headers=None):
    response = httpx.Response(status, headers=headers or {}, request=_REQUEST)
    return cls("error", response=response, body=None)


def _anthropic_reply(text, input_tokens=100, output_tokens=20):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def test_history_merges_same_role_turns():
    history = [_turn("user", "hi"), _turn("user", "there"), _turn("assistant", ""), _turn("assistant", "hello")]

    assert to_chat_messages(history) == [
        {"role": "user", "content": "hi\nthere"},
        {"role": "assistant", "content": "hello"},
    ]


class TestPricing:
    def test_known_model(self):
        assert calculate_cost("claude-sonnet-4-5", 1000, 1000) == 0.018

    def test_unknown_claude_uses_default_claude_price(self):
        assert calculate_cost("claude-next", 1000, 0) == 0.003

    def test_total_only_split_evenly(self):
        assert calculate_total_cost("gpt-4", 2000) == 0.09


class TestAnthropicProvider:
    def test_generate(self):
        client = MagicMock()
        client.messages.create.return_value = _anthropic_reply("  Hello!  ")
        provider = AnthropicProvider(api_key="k", client=client)

        result = provider.generate(
            "be nice", [_turn("assistant", "welcome"), _turn("user", "hi")], max_tokens=150, temperature=0.7
        )

        assert result.text == "Hello!"
        assert result.tokens_used == 120
        assert result.model == "claude-sonnet-4-5"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "be nice"
        # Leading assistant turn dropped
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert kwargs["max_tokens"] == 150

    def test_no_user_turn(self):
        provider = AnthropicProvider(api_key="k", client=MagicMock())

        with pytest.raises(UpstreamServiceError):
            provider.generate("s", [_turn("assistant", "hello")], max_tokens=10, temperature=0)

    def test_rate_limit_carries_retry_after(self):
        client = MagicMock()
        client.messages.create.side_effect = _status_error(anthropic.RateLimitError, 429, {"retry-after": "12"})
        provider = AnthropicProvider(api_key="k", client=client)

        with pytest.raises(RateLimitError) as exc:
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

        assert exc.value.retry_after == 12.0

    def test_overloaded_is_rate_limit(self):
        client = MagicMock()
        client.messages.create.side_effect = _status_error(anthropic.APIStatusError, 529)
        provider = AnthropicProvider(api_key="k", client=client)

        with pytest.raises(RateLimitError) as exc:
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

        assert exc.value.retry_after == 30.0

    def test_server_error(self):
        client = MagicMock()
        client.messages.create.side_effect = _status_error(anthropic.InternalServerError, 500)
        provider = AnthropicProvider(api_key="k", client=client)

        with pytest.raises(UpstreamServiceError) as exc:
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

        assert exc.value.service == "ai"

    def test_connection_error(self):
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(request=_REQUEST)
        provider = AnthropicProvider(api_key="k", client=client)

        with pytest.raises(NetworkError):
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

    def test_sentiment(self):
        client = MagicMock()
        client.messages.create.return_value = _anthropic_reply("Positive.")

        assert AnthropicProvider(api_key="k", client=client).analyze_sentiment("love it") == "positive"

    def test_sentiment_unavailable(self):
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(request=_REQUEST)

        assert AnthropicProvider(api_key="k", client=client).analyze_sentiment("love it") is None


class TestOpenAIProvider:
    @staticmethod
    def _provider(status=200, body=None, headers=None, exc=None):
        session = MagicMock()
        if exc is not None:
            session.post.side_effect = exc
        else:
            response = MagicMock(status_code=status, headers=headers or {})
            response.json.return_value = body or {}
            session.post.return_value = response
        return OpenAIProvider(api_key="sk-test", session=session), session

    def test_generate(self):
        body = {"choices": [{"message": {"content": " Hi! "}}], "usage": {"total_tokens": 50}}
        provider, session = self._provider(body=body)

        result = provider.generate("be nice", [_turn("user", "hello")], max_tokens=100, temperature=0.5)

        assert result.text == "Hi!"
        assert result.tokens_used == 50
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.openai.com/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["messages"][0] == {"role": "system", "content": "be nice"}

    def test_rate_limited(self):
        provider, _ = self._provider(status=429, headers={"Retry-After": "7"})

        with pytest.raises(RateLimitError) as exc:
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

        assert exc.value.retry_after == 7.0

    def test_http_error(self):
        provider, _ = self._provider(status=503)

        with pytest.raises(UpstreamServiceError):
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

    def test_timeout(self):
        provider, _ = self._provider(exc=requests.Timeout("slow"))

        with pytest.raises(NetworkError):
            provider.generate("s", [_turn("user", "hi")], max_tokens=10, temperature=0)

    def test_sentiment_unrecognised(self):
        provider, _ = self._provider(body={"choices": [{"message": {"content": "meh"}}]})

        assert provider.analyze_sentiment("whatever") is None


class TestProviderFromEnv:
    def test_requires_api_key(self):
        with pytest.raises(RuntimeError, match="AI_API_KEY"):
            provider_from_env()

    def test_default_is_anthropic(self, monkeypatch):
        monkeypatch.setenv("AI_API_KEY", "k")

        assert isinstance(provider_from_env(), AnthropicProvider)

    def test_openai_with_model(self, monkeypatch):
        monkeypatch.setenv("AI_API_KEY", "k")
        monkeypatch.setenv("AI_PROVIDER", "OpenAI")
        monkeypatch.setenv("AI_MODEL", "gpt-4")

        provider = provider_from_env()

        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "gpt-4"

    def test_unknown_provider(self, monkeypatch):
        monkeypatch.setenv("AI_API_KEY", "k")
        monkeypatch.setenv("AI_PROVIDER", "mystery")

        with pytest.raises(RuntimeError, match="Unknown AI_PROVIDER"):
            provider_from_env()
