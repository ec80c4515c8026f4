"""Outbound Instagram messaging via the Graph API.

Security: NEVER log recipient_id, text, or access tokens. Only hashes and lengths.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol

import requests

from instaflow.domain.errors import (
    NetworkError,
    PlatformRejectedError,
    RateLimitError,
    UpstreamServiceError,
)
from instaflow.domain.models import AccountConfig
from instaflow.domain.retry import RetryPolicy
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

DEFAULT_GRAPH_API_VERSION = "v18.0"
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_RETRY_AFTER = 60.0
# Longest in-process wait per send; must stay well inside the job lease
DEFAULT_SEND_WAIT_BUDGET = 10.0

# Graph API error codes that mean "slow down" regardless of HTTP status
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613})


@dataclass(frozen=True)
class SendResult:
    message_id: str
    attempts: int


class SendThrottle(Protocol):
    def acquire(self, account_id: str) -> None:
        """Raise RateLimitError if the account is over its send budget."""
        ...


def _get_config() -> dict[str, Any]:
    """Sender config from environment.

    Optional:
    - INSTAGRAM_GRAPH_API_VERSION: Graph API version (default: v18.0)
    - INSTAGRAM_HTTP_TIMEOUT: request timeout seconds (default: 10)
    """
    return {
        "api_version": os.environ.get("INSTAGRAM_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION),
        "timeout": float(os.environ.get("INSTAGRAM_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
    }


def _retry_after(response: requests.Response) -> float:
    try:
        return float(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


def classify_response(response: requests.Response) -> str:
    """Return the message id of a 2xx response or raise the classified error.

    Raises:
        RateLimitError: HTTP 429 or a Graph rate-limit error code.
        UpstreamServiceError: HTTP 5xx or an unreadable 2xx body.
        PlatformRejectedError: Any other 4xx (permanent).
    """
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    error_code = error.get("code") if isinstance(error, dict) else None

    if status == 429 or error_code in RATE_LIMIT_ERROR_CODES:
        raise RateLimitError(
            f"instagram rate limited (HTTP {status})", retry_after=_retry_after(response)
        )
    if status >= 500:
        raise UpstreamServiceError(f"instagram HTTP {status}", service="instagram")
    if status >= 400:
        raise PlatformRejectedError(
            f"instagram rejected message (HTTP {status})",
            status_code=status,
            error_code=error_code,
        )

    message_id = body.get("message_id") if isinstance(body, dict) else None
    if not message_id:
        raise UpstreamServiceError("instagram response without message_id", service="instagram")
    return str(message_id)


class InstagramSender:
    """Sends text replies on behalf of a connected account.

    Args:
        credentials: Resolves account_id -> AccountConfig (page id + token).
        throttle: Optional per-account send budget, checked before sending.
        policy: Retry policy for transient failures (default 3 attempts, base 1s).
            A policy without a `wait_budget` gets DEFAULT_SEND_WAIT_BUDGET, so a
            rate limit with a long retry-after is raised to the worker instead
            of being slept through.
        http: requests-compatible session (tests inject a fake).
    """

    def __init__(
        self,
        credentials: Callable[[str], AccountConfig | None],
        *,
        throttle: SendThrottle | None = None,
        policy: RetryPolicy | None = None,
        http: Any | None = None,
    ) -> None:
        config = _get_config()
        self._credentials = credentials
        self._throttle = throttle
        policy = policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        if policy.wait_budget is None:
            policy = replace(policy, wait_budget=DEFAULT_SEND_WAIT_BUDGET)
        self._policy = policy
        self._http = http or requests.Session()
        self._api_version = config["api_version"]
        self._timeout = config["timeout"]

    @property
    def max_send_seconds(self) -> float:
        """Longest one send() can take: every attempt timing out plus all waits."""
        return max(1, self._policy.max_attempts) * self._timeout + (self._policy.wait_budget or 0.0)

    def _post_once(self, url: str, body: dict[str, Any], token: str) -> str:
        try:
            response = self._http.post(
                url,
                json=body,
                params={"access_token": token},
                timeout=self._timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise NetworkError(
                f"instagram request failed: {type(e).__name__}", service="instagram"
            ) from e
        return classify_response(response)

    def send(self, account_id: str, recipient_id: str, text: str) -> SendResult:
        """Send one text message.

        Raises:
            PlatformRejectedError: Permanent rejection or missing credentials.
            RateLimitError / UpstreamServiceError / NetworkError: Last error
                after retries were exhausted.
        """
        account = self._credentials(account_id)
        if account is None or not account.page_id or not account.access_token:
            raise PlatformRejectedError("no instagram credentials configured for account")

        if self._throttle is not None:
            self._throttle.acquire(account_id)

        url = f"https://graph.facebook.com/{self._api_version}/{account.page_id}/messages"
        body = {"recipient": {"id": recipient_id}, "message": {"text": text}}

        log_ctx = safe_log_context(
            account_hash=hash_identifier(account_id),
            recipient_hash=hash_identifier(recipient_id),
            text_len=len(text),
        )
        logger.info("sending instagram message", extra={"extra_fields": log_ctx})

        token = account.access_token
        outcome = self._policy.run(lambda: self._post_once(url, body, token), operation="instagram_send")

        if not outcome.ok:
            logger.error(
                "instagram send failed",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        **safe_log_context(
                            attempts=outcome.attempts,
                            error_type=type(outcome.error).__name__,
                            retryable=outcome.retryable,
                        ),
                    }
                },
            )
            outcome.unwrap()

        logger.info(
            "instagram message sent",
            extra={"extra_fields": {**log_ctx, **safe_log_context(attempts=outcome.attempts)}},
        )
        return SendResult(message_id=outcome.value, attempts=outcome.attempts)  # type: ignore[arg-type]
