"""Redis-backed rule cache.

Redis is optional: with REDIS_URL unset the matcher reads rules from the
database every time. Redis errors degrade to a cache miss.
"""

from __future__ import annotations

import json
import os
from typing import Any

import redis

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

RULE_CACHE_TTL_SECONDS = 300

_client: redis.Redis | None = None
_client_url: str | None = None


def get_redis_client() -> redis.Redis | None:
    """Shared Redis client from REDIS_URL, or None when unset."""
    global _client, _client_url
    url = os.environ.get("REDIS_URL", "").strip()
    if not url:
        return None
    if _client is None or _client_url != url:
        timeout = float(os.environ.get("REDIS_SOCKET_TIMEOUT_SECONDS", "0.5"))
        _client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        _client_url = url
    return _client


def rule_cache_key(account_id: str) -> str:
    return f"automations:{account_id}"


class RedisRuleCache:
    """Active rule rows per account, stored as JSON with a TTL."""

    def __init__(self, client: Any, ttl_seconds: int = RULE_CACHE_TTL_SECONDS) -> None:
        self._client = client
        self._ttl = ttl_seconds

    def get(self, account_id: str) -> list[dict[str, Any]] | None:
        try:
            raw = self._client.get(rule_cache_key(account_id))
        except redis.RedisError as e:
            self._warn("rule cache read failed", account_id, e)
            return None
        if raw is None:
            return None
        try:
            rows = json.loads(raw)
        except ValueError:
            return None
        return rows if isinstance(rows, list) else None

    def set(self, account_id: str, rows: list[dict[str, Any]]) -> None:
        try:
            self._client.setex(rule_cache_key(account_id), self._ttl, json.dumps(rows))
        except redis.RedisError as e:
            self._warn("rule cache write failed", account_id, e)

    def invalidate(self, account_id: str) -> None:
        try:
            self._client.delete(rule_cache_key(account_id))
        except redis.RedisError as e:
            self._warn("rule cache invalidate failed", account_id, e)

    def _warn(self, message: str, account_id: str, error: Exception) -> None:
        logger.warning(
            message,
            extra={
                "extra_fields": safe_log_context(
                    account_hash=hash_identifier(account_id),
                    error_type=type(error).__name__,
                )
            },
        )
