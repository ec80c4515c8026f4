"""Activity log repository - one row per (account_id, event_id)."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.errors import InternalError
from instaflow.domain.models import TERMINAL_STATUSES, ActivityLog

# Columns that update_activity may write
UPDATABLE_COLUMNS = frozenset({
    "status",
    "automation_id",
    "conversation_id",
    "outgoing_response",
    "error_message",
    "processing_time_ms",
    "ai_model",
    "ai_tokens_used",
    "ai_cost",
    "platform_message_id",
    "send_attempts",
    "sentiment",
})

_COLUMNS = """
    id, account_id, event_id, incoming_message, status, automation_id,
    conversation_id, outgoing_response, error_message, processing_time_ms,
    ai_model, ai_tokens_used, ai_cost, platform_message_id, send_attempts,
    sentiment, created_at
"""


def _row_to_activity(row: tuple[Any, ...]) -> ActivityLog:
    return ActivityLog(
        id=row[0],
        account_id=row[1],
        event_id=row[2],
        incoming_message=row[3] or "",
        status=row[4],
        automation_id=str(row[5]) if row[5] else None,
        conversation_id=str(row[6]) if row[6] else None,
        outgoing_response=row[7],
        error_message=row[8],
        processing_time_ms=row[9] or 0,
        ai_model=row[10],
        ai_tokens_used=row[11],
        ai_cost=float(row[12]) if row[12] is not None else None,
        platform_message_id=row[13],
        send_attempts=row[14] or 0,
        sentiment=row[15],
        created_at=row[16],
    )


def begin_activity(
    cur: PgCursor,
    account_id: str,
    event_id: str,
    incoming_message: str,
) -> ActivityLog:
    """Create the activity row for an event, or return the existing one."""
    cur.execute(
        """
        INSERT INTO activity_logs (account_id, event_id, incoming_message, status)
        VALUES (%s, %s, %s, 'pending')
        ON CONFLICT (account_id, event_id) DO NOTHING
        """,
        (account_id, event_id, incoming_message),
    )
    activity = get_activity(cur, account_id, event_id)
    if activity is None:
        raise InternalError("activity row missing after insert")
    return activity


def get_activity(cur: PgCursor, account_id: str, event_id: str) -> ActivityLog | None:
    cur.execute(
        f"SELECT {_COLUMNS} FROM activity_logs WHERE account_id = %s AND event_id = %s",
        (account_id, event_id),
    )
    row = cur.fetchone()
    return _row_to_activity(row) if row else None


def update_activity(cur: PgCursor, activity_id: int, **fields: Any) -> bool:
    """Update an activity row unless it already reached a terminal status.

    Args:
        cur: Database cursor (within transaction).
        activity_id: Activity row id.
        **fields: Columns to set (subset of UPDATABLE_COLUMNS).

    Returns:
        True if the row was updated.

    Raises:
        ValueError: On an unknown column name.
    """
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown activity columns: {sorted(unknown)}")
    if not fields:
        return False

    assignments = ", ".join(f"{name} = %s" for name in fields)
    cur.execute(
        f"""
        UPDATE activity_logs
        SET {assignments}, updated_at = now()
        WHERE id = %s AND status NOT IN %s
        """,
        (*fields.values(), activity_id, tuple(sorted(TERMINAL_STATUSES))),
    )
    return cur.rowcount > 0
