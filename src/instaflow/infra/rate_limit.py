"""Per-account outbound send throttle (fixed one-minute window in Redis).

Enabled when both REDIS_URL and SEND_RATE_LIMIT_PER_MINUTE are set. If Redis
is unavailable the send is allowed.
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable

import redis

from instaflow.domain.errors import RateLimitError
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

from .cache import get_redis_client

logger = get_logger(__name__)

WINDOW_SECONDS = 60


class RedisSendThrottle:
    def __init__(
        self,
        client: Any,
        limit_per_minute: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._limit = limit_per_minute
        self._clock = clock

    def acquire(self, account_id: str) -> None:
        """Count one send for the account.

        Raises:
            RateLimitError: If the account exceeded its budget for this
                minute; retry_after is the time left in the window.
        """
        now = self._clock()
        window = int(now // WINDOW_SECONDS)
        key = f"instaflow:send:{account_id}:{window}"
        try:
            pipe = self._client.pipeline()
            pipe.incr(key)
            pipe.expire(key, WINDOW_SECONDS)
            results = pipe.execute()
        except redis.RedisError as e:
            logger.warning(
                "send throttle check failed, allowing send",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return

        count = results[0] if results else 0
        if count > self._limit:
            retry_after = max(1.0, WINDOW_SECONDS - (now % WINDOW_SECONDS))
            logger.warning(
                "send throttled",
                extra={
                    "extra_fields": safe_log_context(
                        account_hash=hash_identifier(account_id),
                        count=count,
                        limit=self._limit,
                    )
                },
            )
            raise RateLimitError("account send budget exceeded", retry_after=retry_after)


def throttle_from_env() -> RedisSendThrottle | None:
    raw = os.environ.get("SEND_RATE_LIMIT_PER_MINUTE", "").strip()
    if not raw:
        return None
    limit = int(raw)
    client = get_redis_client()
    if limit <= 0 or client is None:
        return None
    return RedisSendThrottle(client, limit)
