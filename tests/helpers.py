"""Shared test helper functions (not fixtures) for instaflow tests."""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from instaflow.domain.models import InboundEvent

ACCOUNT_ID = "17841400000000001"
SENDER_ID = "5550001"
APP_SECRET = "test-app-secret"
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
T0_MS = int(T0.timestamp() * 1000)


def make_event(
    event_id: str = "mid.1",
    *,
    text: str | None = "hello",
    sender_id: str = SENDER_ID,
    account_id: str = ACCOUNT_ID,
    offset_s: float = 0,
    **kwargs: Any,
) -> InboundEvent:
    return InboundEvent(
        event_id=event_id,
        account_id=account_id,
        sender_id=sender_id,
        received_at=T0 + timedelta(seconds=offset_s),
        text=text,
        **kwargs,
    )


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def dm_envelope(*messages: dict[str, Any], account_id: str = ACCOUNT_ID) -> dict[str, Any]:
    """Envelope with one entry whose messaging list holds `messages`."""
    return {
        "object": "instagram",
        "entry": [{"id": account_id, "time": T0_MS, "messaging": list(messages)}],
    }


def dm(mid: str, text: str = "hello", *, sender_id: str = SENDER_ID, offset_ms: int = 0,
       username: str | None = "ana.shop") -> dict[str, Any]:
    sender: dict[str, Any] = {"id": sender_id}
    if username:
        sender["username"] = username
    return {
        "sender": sender,
        "recipient": {"id": ACCOUNT_ID},
        "timestamp": T0_MS + offset_ms,
        "message": {"mid": mid, "text": text},
    }


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode()


def rule_row(rule_id: str, trigger_type: str, conditions: dict, action_type: str,
             action_config: dict, *, priority: int = 100, account_id: str = ACCOUNT_ID,
             is_active: bool = True) -> dict[str, Any]:
    return {
        "id": rule_id,
        "account_id": account_id,
        "name": rule_id,
        "is_active": is_active,
        "priority": priority,
        "trigger_type": trigger_type,
        "conditions": conditions,
        "action_type": action_type,
        "action_config": action_config,
    }
