"""Pipeline data model.

Events, conversation snapshots, and activity records travel between stages
(and through queue payloads), so they are plain frozen dataclasses with
explicit dict conversion. Rule configuration lives in `domain.rules`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

EventType = Literal["message", "reaction", "story_reply", "comment"]

ActivityStatus = Literal["success", "failed", "pending", "skipped"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed", "skipped"})

MessageRole = Literal["user", "assistant"]


@dataclass(frozen=True)
class AttachmentRef:
    """Media attached to an inbound message (platform CDN reference)."""

    type: str
    url: str


@dataclass(frozen=True)
class InboundEvent:
    """One message-received notification from the platform.

    PII: `sender_handle` and `text` are stored but NEVER logged.
    """

    event_id: str
    account_id: str
    sender_id: str
    received_at: datetime
    event_type: EventType = "message"
    sender_handle: str | None = None
    text: str | None = None
    attachments: tuple[AttachmentRef, ...] = ()
    reply_to_id: str | None = None
    reaction: str | None = None

    @property
    def partition_key(self) -> str:
        """Queue partition: all jobs for one (account, sender) pair."""
        return f"{self.account_id}:{self.sender_id}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "event_id": self.event_id,
            "account_id": self.account_id,
            "sender_id": self.sender_id,
            "received_at": self.received_at.isoformat(),
            "event_type": self.event_type,
            "sender_handle": self.sender_handle,
            "text": self.text,
            "attachments": [{"type": a.type, "url": a.url} for a in self.attachments],
            "reply_to_id": self.reply_to_id,
            "reaction": self.reaction,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InboundEvent":
        """Create from dict."""
        received_at = data["received_at"]
        if isinstance(received_at, str):
            received_at = datetime.fromisoformat(received_at)
        return cls(
            event_id=data["event_id"],
            account_id=data["account_id"],
            sender_id=data["sender_id"],
            received_at=received_at,
            event_type=data.get("event_type", "message"),
            sender_handle=data.get("sender_handle"),
            text=data.get("text"),
            attachments=tuple(
                AttachmentRef(type=a["type"], url=a["url"])
                for a in data.get("attachments") or []
            ),
            reply_to_id=data.get("reply_to_id"),
            reaction=data.get("reaction"),
        )


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation, used as AI context."""

    role: MessageRole
    content: str
    sent_at: datetime


@dataclass(frozen=True)
class Conversation:
    """Snapshot of a conversation taken under its row lock.

    Attributes:
        messages: History ordered by `sent_at` (true timestamp order).
        is_first_message: True if the message just appended claimed
            first-message status. Only the first user message appended to a
            conversation ever does, whatever its timestamp.
    """

    id: str
    account_id: str
    sender_id: str
    messages: tuple[ChatMessage, ...] = ()
    first_message_at: datetime | None = None
    last_message_at: datetime | None = None
    is_first_message: bool = False

    def recent(self, turns: int) -> tuple[ChatMessage, ...]:
        """Return the last `turns` messages (whole history if turns <= 0)."""
        if turns <= 0:
            return self.messages
        return self.messages[-turns:]

    def up_to(self, sent_at: datetime) -> "Conversation":
        """Same snapshot without messages sent after `sent_at`."""
        return replace(self, messages=tuple(m for m in self.messages if m.sent_at <= sent_at))


@dataclass
class ActivityLog:
    """One record per pipeline attempt for an inbound event."""

    id: int
    account_id: str
    event_id: str
    incoming_message: str
    status: ActivityStatus = "pending"
    automation_id: str | None = None
    conversation_id: str | None = None
    outgoing_response: str | None = None
    error_message: str | None = None
    processing_time_ms: int = 0
    ai_model: str | None = None
    ai_tokens_used: int | None = None
    ai_cost: float | None = None
    platform_message_id: str | None = None
    send_attempts: int = 0
    sentiment: str | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class AccountConfig:
    """Credentials for sending on behalf of a connected business account.

    `access_token` is NEVER logged.
    """

    account_id: str
    page_id: str | None = None
    access_token: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
