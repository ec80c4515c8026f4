"""Tests for the Redis rule cache and send throttle (Redis mocked)."""

import json
from unittest.mock import MagicMock

import pytest
import redis

from instaflow.domain.errors import RateLimitError
from instaflow.infra import cache as cache_module
from instaflow.infra.cache import RedisRuleCache, get_redis_client, rule_cache_key
from instaflow.infra.rate_limit import RedisSendThrottle, throttle_from_env

ROWS = [{"id": "r1", "trigger_type": "first_message"}]


class TestRedisRuleCache:
    def test_get_hit(self):
        client = MagicMock()
        client.get.return_value = json.dumps(ROWS)

        assert RedisRuleCache(client).get("acct") == ROWS
        client.get.assert_called_once_with("automations:acct")

    def test_get_miss(self):
        client = MagicMock()
        client.get.return_value = None

        assert RedisRuleCache(client).get("acct") is None

    def test_corrupt_entry_is_a_miss(self):
        client = MagicMock()
        client.get.return_value = "{not json"

        assert RedisRuleCache(client).get("acct") is None

    def test_set_uses_ttl(self):
        client = MagicMock()

        RedisRuleCache(client, ttl_seconds=120).set("acct", ROWS)

        client.setex.assert_called_once_with(rule_cache_key("acct"), 120, json.dumps(ROWS))

    def test_redis_errors_degrade(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.setex.side_effect = redis.ConnectionError("down")
        client.delete.side_effect = redis.ConnectionError("down")
        cache = RedisRuleCache(client)

        assert cache.get("acct") is None
        cache.set("acct", ROWS)
        cache.invalidate("acct")


class TestGetRedisClient:
    def test_unset_url_returns_none(self):
        assert get_redis_client() is None

    def test_client_reused_for_same_url(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        monkeypatch.setattr(cache_module, "_client", None)
        monkeypatch.setattr(cache_module, "_client_url", None)

        first = get_redis_client()

        assert first is get_redis_client()


class TestRedisSendThrottle:
    def _client(self, count):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [count, True]
        return client

    def test_under_budget_allows(self):
        client = self._client(3)

        RedisSendThrottle(client, 5, clock=lambda: 120.0).acquire("acct")

        client.pipeline.return_value.incr.assert_called_once_with("instaflow:send:acct:2")

    def test_over_budget_raises_with_window_remaining(self):
        throttle = RedisSendThrottle(self._client(6), 5, clock=lambda: 125.0)

        with pytest.raises(RateLimitError) as exc_info:
            throttle.acquire("acct")
        assert exc_info.value.retry_after == 55

    def test_redis_error_allows_send(self):
        client = MagicMock()
        client.pipeline.return_value.execute.side_effect = redis.TimeoutError()

        RedisSendThrottle(client, 1).acquire("acct")


class TestThrottleFromEnv:
    def test_disabled_without_limit(self):
        assert throttle_from_env() is None

    def test_disabled_without_redis(self, monkeypatch):
        monkeypatch.setenv("SEND_RATE_LIMIT_PER_MINUTE", "20")

        assert throttle_from_env() is None

    def test_enabled_with_limit_and_redis(self, monkeypatch):
        monkeypatch.setenv("SEND_RATE_LIMIT_PER_MINUTE", "20")
        monkeypatch.setattr("instaflow.infra.rate_limit.get_redis_client", lambda: MagicMock())

        assert isinstance(throttle_from_env(), RedisSendThrottle)
