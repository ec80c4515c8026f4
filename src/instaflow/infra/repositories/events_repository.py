"""Inbound events repository - dedupe store and event payloads.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.models import AttachmentRef, InboundEvent

_EVENT_COLUMNS = """
    event_id, account_id, sender_id, received_at, event_type,
    sender_handle, text, attachments, reply_to_id, reaction
"""


def insert_event(cur: PgCursor, event: InboundEvent) -> bool:
    """Insert an inbound event unless (account_id, event_id) already exists.

    Args:
        cur: Database cursor (within transaction).
        event: Normalized event.

    Returns:
        True if inserted, False for a duplicate.
    """
    cur.execute(
        """
        INSERT INTO inbound_events (
            event_id, account_id, sender_id, received_at, event_type,
            sender_handle, text, attachments, reply_to_id, reaction
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
        ON CONFLICT (account_id, event_id) DO NOTHING
        """,
        (
            event.event_id,
            event.account_id,
            event.sender_id,
            event.received_at,
            event.event_type,
            event.sender_handle,
            event.text,
            json.dumps([{"type": a.type, "url": a.url} for a in event.attachments]),
            event.reply_to_id,
            event.reaction,
        ),
    )
    return cur.rowcount > 0


def _row_to_event(row: tuple[Any, ...]) -> InboundEvent:
    attachments = row[7] or []
    if isinstance(attachments, str):
        attachments = json.loads(attachments)
    return InboundEvent(
        event_id=row[0],
        account_id=row[1],
        sender_id=row[2],
        received_at=row[3],
        event_type=row[4],
        sender_handle=row[5],
        text=row[6],
        attachments=tuple(AttachmentRef(type=a["type"], url=a["url"]) for a in attachments),
        reply_to_id=row[8],
        reaction=row[9],
    )


def get_event(cur: PgCursor, account_id: str, event_id: str) -> InboundEvent | None:
    """Load one event by its dedupe key."""
    cur.execute(
        f"SELECT {_EVENT_COLUMNS} FROM inbound_events WHERE account_id = %s AND event_id = %s",
        (account_id, event_id),
    )
    row = cur.fetchone()
    return _row_to_event(row) if row else None


def purge_expired_dedupe(cur: PgCursor, retention_hours: int) -> int:
    """Archive events older than the retention window.

    Rows are kept (the dedupe key must survive) but message content and
    handles are cleared.

    Returns:
        Number of rows archived.
    """
    cur.execute(
        """
        UPDATE inbound_events
        SET text = NULL,
            sender_handle = NULL,
            attachments = '[]'::jsonb,
            archived_at = now()
        WHERE archived_at IS NULL
          AND created_at < now() - make_interval(hours => %s)
        """,
        (retention_hours,),
    )
    return cur.rowcount
