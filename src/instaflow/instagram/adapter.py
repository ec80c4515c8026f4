"""Instagram webhook envelope normalisation.

Turns a platform envelope into `InboundEvent`s. Handles direct messages,
story replies, reactions (`messaging`) and comments (`changes`). Echoes of
our own outbound messages, read receipts and unreactions are skipped.

Envelope shape:
{
  "object": "instagram",
  "entry": [{
    "id": "<ig business account id>",
    "time": 1700000000000,
    "messaging": [{
      "sender": {"id": "...", "username": "..."},
      "recipient": {"id": "..."},
      "timestamp": 1700000000000,
      "message": {"mid": "...", "text": "...", "attachments": [...],
                  "is_echo": false, "reply_to": {"mid": "..." | "story": {...}}}
    }],
    "changes": [{"field": "comments", "value": {...}}]
  }]
}

Security: sender handles and text are returned in memory only. NEVER log them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from instaflow.domain.errors import ValidationError
from instaflow.domain.models import AttachmentRef, InboundEvent
from instaflow.infra.time import from_epoch_millis, utc_now
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

INSTAGRAM_OBJECT = "instagram"


def _timestamp(value: Any) -> datetime:
    """Platform timestamps are epoch millis (messaging) or seconds (changes)."""
    if isinstance(value, (int, float)) and value > 0:
        return from_epoch_millis(value if value > 1e11 else value * 1000)
    return utc_now()


def _attachments(message: dict[str, Any]) -> tuple[AttachmentRef, ...]:
    refs = []
    for item in message.get("attachments") or []:
        if not isinstance(item, dict):
            continue
        url = (item.get("payload") or {}).get("url")
        if url:
            refs.append(AttachmentRef(type=str(item.get("type", "unknown")), url=url))
    return tuple(refs)


def _from_messaging(account_id: str, item: dict[str, Any]) -> InboundEvent | None:
    sender = item.get("sender") or {}
    sender_id = sender.get("id")
    if not sender_id:
        raise ValidationError("messaging item without sender id")
    sender_id = str(sender_id)
    # Messages sent by the account itself arrive with sender == account
    if sender_id == account_id:
        return None

    received_at = _timestamp(item.get("timestamp"))
    handle = sender.get("username")

    message = item.get("message")
    if isinstance(message, dict):
        if message.get("is_echo"):
            return None
        mid = message.get("mid")
        if not mid:
            raise ValidationError("message without mid")

        reply_to = message.get("reply_to") or {}
        story = reply_to.get("story") if isinstance(reply_to, dict) else None
        if story:
            return InboundEvent(
                event_id=str(mid),
                account_id=account_id,
                sender_id=sender_id,
                received_at=received_at,
                event_type="story_reply",
                sender_handle=handle,
                text=message.get("text"),
                attachments=_attachments(message),
                reply_to_id=str(story.get("id")) if story.get("id") else None,
            )

        return InboundEvent(
            event_id=str(mid),
            account_id=account_id,
            sender_id=sender_id,
            received_at=received_at,
            event_type="message",
            sender_handle=handle,
            text=message.get("text"),
            attachments=_attachments(message),
            reply_to_id=reply_to.get("mid") if isinstance(reply_to, dict) else None,
        )

    reaction = item.get("reaction")
    if isinstance(reaction, dict):
        if reaction.get("action", "react") != "react":
            return None
        mid = reaction.get("mid")
        if not mid:
            raise ValidationError("reaction without mid")
        emoji = reaction.get("emoji") or reaction.get("reaction")
        # A reaction has no id of its own: key it on target message + sender + time
        event_id = f"reaction:{mid}:{sender_id}:{item.get('timestamp', '')}"
        return InboundEvent(
            event_id=event_id,
            account_id=account_id,
            sender_id=sender_id,
            received_at=received_at,
            event_type="reaction",
            sender_handle=handle,
            reply_to_id=str(mid),
            reaction=emoji,
        )

    # read receipts, postbacks, etc.
    return None


def _from_change(account_id: str, change: dict[str, Any], entry_time: Any) -> InboundEvent | None:
    if change.get("field") != "comments":
        return None
    value = change.get("value") or {}
    comment_id = value.get("id")
    author = value.get("from") or {}
    if not comment_id or not author.get("id"):
        raise ValidationError("comment without id or author")
    if str(author["id"]) == account_id:
        return None
    media = value.get("media") or {}
    return InboundEvent(
        event_id=str(comment_id),
        account_id=account_id,
        sender_id=str(author["id"]),
        received_at=_timestamp(entry_time),
        event_type="comment",
        sender_handle=author.get("username"),
        text=value.get("text"),
        reply_to_id=str(media["id"]) if media.get("id") else None,
    )


def normalize_envelope(payload: dict[str, Any]) -> list[InboundEvent]:
    """Extract all inbound events from an envelope.

    Malformed individual items are logged and skipped; the rest of the
    envelope is still processed.

    Raises:
        ValidationError: If the envelope itself has the wrong shape.
    """
    if not isinstance(payload, dict):
        raise ValidationError("envelope must be a JSON object")
    if payload.get("object") != INSTAGRAM_OBJECT:
        return []
    entries = payload.get("entry")
    if not isinstance(entries, list):
        raise ValidationError("envelope without entry list")

    events: list[InboundEvent] = []
    skipped = 0
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("id"):
            skipped += 1
            continue
        account_id = str(entry["id"])

        for item in entry.get("messaging") or []:
            try:
                event = _from_messaging(account_id, item)
            except (ValidationError, AttributeError, TypeError):
                skipped += 1
                continue
            if event is not None:
                events.append(event)

        for change in entry.get("changes") or []:
            try:
                event = _from_change(account_id, change, entry.get("time"))
            except (ValidationError, AttributeError, TypeError):
                skipped += 1
                continue
            if event is not None:
                events.append(event)

    if skipped:
        logger.warning(
            "malformed webhook items skipped",
            extra={"extra_fields": safe_log_context(skipped=skipped, accepted=len(events))},
        )
    return events
