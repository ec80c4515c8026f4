"""Activity recorder - one ActivityLog row per inbound event.

The recorder observes the pipeline; it never breaks it. Storage errors are
logged with the stack trace and swallowed, and each method reports whether
the write happened. Terminal statuses (success / failed / skipped) are
written at most once: the store ignores updates to a terminal row.
"""

from __future__ import annotations

from typing import Any

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context

from .models import ActivityLog, InboundEvent
from .store import Store

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000


class ActivityRecorder:
    def __init__(self, store: Store) -> None:
        self._store = store

    def begin(self, event: InboundEvent) -> ActivityLog | None:
        """Create (or fetch) the activity row for an event.

        Idempotent on (account_id, event_id). The returned row's
        `is_terminal` tells the caller the event was already handled.

        Returns:
            ActivityLog, or None if storage failed.
        """
        try:
            with self._store.session() as session:
                return session.begin_activity(
                    event.account_id,
                    event.event_id,
                    incoming_message=event.text or "",
                )
        except Exception:
            logger.exception(
                "activity begin failed",
                extra={
                    "extra_fields": safe_log_context(
                        account_hash=hash_identifier(event.account_id),
                        event_hash=hash_identifier(event.event_id),
                    )
                },
            )
            return None

    def get(self, account_id: str, event_id: str) -> ActivityLog | None:
        try:
            with self._store.session() as session:
                return session.get_activity(account_id, event_id)
        except Exception:
            logger.exception(
                "activity lookup failed",
                extra={"extra_fields": safe_log_context(event_hash=hash_identifier(event_id))},
            )
            return None

    def _update(self, activity_id: int | None, status: str, fields: dict[str, Any]) -> bool:
        if activity_id is None:
            return False
        clean = {k: v for k, v in fields.items() if v is not None}
        try:
            with self._store.session() as session:
                session.update_activity(activity_id, status=status, **clean)
        except Exception:
            logger.exception(
                "activity update failed",
                extra={"extra_fields": safe_log_context(activity_id=activity_id, status=status)},
            )
            return False
        logger.info(
            "activity recorded",
            extra={"extra_fields": safe_log_context(activity_id=activity_id, status=status)},
        )
        return True

    def mark_pending(
        self,
        activity_id: int | None,
        *,
        automation_id: str | None = None,
        conversation_id: str | None = None,
        outgoing_response: str | None = None,
        ai_model: str | None = None,
        ai_tokens_used: int | None = None,
        ai_cost: float | None = None,
        processing_time_ms: int | None = None,
    ) -> bool:
        return self._update(
            activity_id,
            "pending",
            {
                "automation_id": automation_id,
                "conversation_id": conversation_id,
                "outgoing_response": outgoing_response,
                "ai_model": ai_model,
                "ai_tokens_used": ai_tokens_used,
                "ai_cost": ai_cost,
                "processing_time_ms": processing_time_ms,
            },
        )

    def skip(
        self,
        activity_id: int | None,
        *,
        conversation_id: str | None = None,
        error_message: str | None = None,
        processing_time_ms: int | None = None,
    ) -> bool:
        return self._update(
            activity_id,
            "skipped",
            {
                "conversation_id": conversation_id,
                "error_message": error_message[:MAX_ERROR_LENGTH] if error_message else None,
                "processing_time_ms": processing_time_ms,
            },
        )

    def succeed(
        self,
        activity_id: int | None,
        *,
        automation_id: str | None = None,
        conversation_id: str | None = None,
        outgoing_response: str | None = None,
        platform_message_id: str | None = None,
        send_attempts: int | None = None,
        sentiment: str | None = None,
        processing_time_ms: int | None = None,
    ) -> bool:
        return self._update(
            activity_id,
            "success",
            {
                "automation_id": automation_id,
                "conversation_id": conversation_id,
                "outgoing_response": outgoing_response,
                "platform_message_id": platform_message_id,
                "send_attempts": send_attempts,
                "sentiment": sentiment,
                "processing_time_ms": processing_time_ms,
            },
        )

    def fail(
        self,
        activity_id: int | None,
        error_message: str,
        *,
        automation_id: str | None = None,
        send_attempts: int | None = None,
        processing_time_ms: int | None = None,
    ) -> bool:
        return self._update(
            activity_id,
            "failed",
            {
                "error_message": (error_message or "unknown error")[:MAX_ERROR_LENGTH],
                "automation_id": automation_id,
                "send_attempts": send_attempts,
                "processing_time_ms": processing_time_ms,
            },
        )

    def fail_event(self, account_id: str, event_id: str, error_message: str) -> bool:
        """Mark an event's activity failed when only its ids are known."""
        activity = self.get(account_id, event_id)
        if activity is None:
            return False
        return self.fail(activity.id, error_message)
