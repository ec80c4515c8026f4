"""Response generation: turn a matched rule into a ResponsePlan.

Only `ai_reply` (and the sentiment lookup of `save_lead`) talks to the
network here. Webhook calls are planned here and executed separately by
`execute_webhook_call` so the caller owns retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

import requests

from instaflow.ai.base import AIProvider
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

from .errors import (
    NetworkError,
    PipelineError,
    PlatformRejectedError,
    RateLimitError,
    UpstreamServiceError,
)
from .models import Conversation, InboundEvent
from .prompts import build_system_prompt
from .retry import RetryPolicy
from .rules import (
    AIReplyAction,
    AutomationRule,
    PredefinedMessageAction,
    SaveLeadAction,
    TagUserAction,
    WebhookAction,
)
from .sentiment import keyword_sentiment
from .settings import PipelineSettings
from .templates import render_template, truncate

logger = get_logger(__name__)

WEBHOOK_TIMEOUT = 10


@dataclass(frozen=True)
class OutboundText:
    """Reply to send to the sender. `text` is NEVER logged."""

    text: str
    ai_model: str | None = None
    ai_tokens_used: int | None = None
    ai_cost: float | None = None
    used_fallback: bool = False


@dataclass(frozen=True)
class LeadMutation:
    sender_id: str
    tags: list[str]
    lead_score: int | None
    funnel_stage: str
    custom_fields: dict[str, Any]
    sentiment: str | None


@dataclass(frozen=True)
class TagMutation:
    sender_id: str
    tags: list[str]


@dataclass(frozen=True)
class WebhookCall:
    url: str
    method: str
    headers: dict[str, str]
    body: dict[str, Any]
    retry_attempts: int = 3


ResponsePlan = Union[OutboundText, LeadMutation, TagMutation, WebhookCall]


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    attempts: int


def _generate_ai_reply(
    action: AIReplyAction,
    conversation: Conversation,
    *,
    ai_provider: AIProvider | None,
    settings: PipelineSettings,
) -> OutboundText:
    if ai_provider is None:
        raise UpstreamServiceError("ai provider not configured", service="ai")

    result = ai_provider.generate(
        build_system_prompt(action),
        conversation.recent(settings.history_turns),
        action.max_tokens,
        action.temperature,
    )
    text = result.text.strip()
    if not text:
        raise UpstreamServiceError("ai provider returned empty reply", service="ai")
    if action.max_length:
        text = truncate(text, action.max_length)

    return OutboundText(
        text=text,
        ai_model=result.model,
        ai_tokens_used=result.tokens_used,
        ai_cost=result.cost,
    )


def _sentiment(text: str | None, ai_provider: AIProvider | None) -> str | None:
    if not text:
        return None
    if ai_provider is not None:
        try:
            label = ai_provider.analyze_sentiment(text)
        except PipelineError:
            label = None
        if label:
            return label
    return keyword_sentiment(text)


def generate_response(
    rule: AutomationRule,
    conversation: Conversation,
    event: InboundEvent,
    *,
    ai_provider: AIProvider | None,
    settings: PipelineSettings,
) -> ResponsePlan:
    """Build the plan for the rule's action.

    Raises:
        RateLimitError / UpstreamServiceError: AI failure with no fallback
            message configured.
    """
    action = rule.action

    if isinstance(action, AIReplyAction):
        try:
            return _generate_ai_reply(
                action, conversation, ai_provider=ai_provider, settings=settings
            )
        except (RateLimitError, UpstreamServiceError) as e:
            fallback = action.fallback_message or settings.fallback_message
            if not fallback:
                raise
            logger.warning(
                "ai reply failed, sending fallback message",
                extra={
                    "extra_fields": safe_log_context(
                        rule_id=rule.id,
                        error_code=e.code,
                    )
                },
            )
            return OutboundText(text=fallback, used_fallback=True)

    if isinstance(action, PredefinedMessageAction):
        variables = {"username": event.sender_handle or "", "sender_id": event.sender_id}
        variables.update(action.variables)
        return OutboundText(text=render_template(action.message, variables))

    if isinstance(action, SaveLeadAction):
        return LeadMutation(
            sender_id=event.sender_id,
            tags=list(action.tags),
            lead_score=action.lead_score,
            funnel_stage=action.funnel_stage,
            custom_fields=dict(action.custom_fields),
            sentiment=_sentiment(event.text, ai_provider),
        )

    if isinstance(action, TagUserAction):
        return TagMutation(sender_id=event.sender_id, tags=list(action.tags))

    if isinstance(action, WebhookAction):
        return WebhookCall(
            url=action.url,
            method=action.method,
            headers=dict(action.headers),
            body={
                "event_id": event.event_id,
                "account_id": event.account_id,
                "sender_id": event.sender_id,
                "sender_handle": event.sender_handle,
                "text": event.text,
                "rule_id": rule.id,
                "received_at": event.received_at.isoformat(),
            },
            retry_attempts=action.retry_attempts,
        )

    raise PipelineError(f"unsupported action type: {rule.action_type}")


def _call_once(call: WebhookCall, http: Any) -> int:
    headers = {"Content-Type": "application/json", **call.headers}
    try:
        if call.method == "GET":
            params = {k: v for k, v in call.body.items() if v is not None}
            response = http.get(call.url, params=params, headers=headers, timeout=WEBHOOK_TIMEOUT)
        else:
            response = http.post(call.url, json=call.body, headers=headers, timeout=WEBHOOK_TIMEOUT)
    except (requests.ConnectionError, requests.Timeout) as e:
        raise NetworkError(f"webhook request failed: {type(e).__name__}", service="webhook") from e

    status = response.status_code
    if status == 429:
        try:
            retry_after = float(response.headers.get("Retry-After", 60))
        except ValueError:
            retry_after = 60.0
        raise RateLimitError("webhook target rate limited", retry_after=retry_after)
    if status >= 500:
        raise UpstreamServiceError(f"webhook HTTP {status}", service="webhook")
    if status >= 400:
        raise PlatformRejectedError(f"webhook HTTP {status}", status_code=status)
    return status


def execute_webhook_call(
    call: WebhookCall,
    *,
    http: Any | None = None,
    policy: RetryPolicy | None = None,
) -> WebhookResult:
    """Deliver a WebhookCall with retries (retry_attempts + 1 total calls).

    Raises:
        The last classified error when all attempts fail.
    """
    client = http or requests
    retry = policy or RetryPolicy(max_attempts=call.retry_attempts + 1)
    outcome = retry.run(lambda: _call_once(call, client), operation="webhook_call")

    logger.info(
        "webhook call finished",
        extra={
            "extra_fields": safe_log_context(
                url_hash=hash_identifier(call.url),
                method=call.method,
                ok=outcome.ok,
                attempts=outcome.attempts,
            )
        },
    )
    return WebhookResult(status_code=outcome.unwrap(), attempts=outcome.attempts)
