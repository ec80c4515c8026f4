"""Conversations repository - per (account, sender) history.

All appends run under the conversation row lock (SELECT ... FOR UPDATE), and
history is always read in sent_at order, so concurrent workers cannot
interleave or reorder a conversation.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.models import ChatMessage, Conversation
from instaflow.infra.db import for_update


def lock_conversation(cur: PgCursor, account_id: str, sender_id: str) -> str:
    """Create the conversation if missing and lock its row.

    Returns:
        Conversation id (UUID as string).
    """
    cur.execute(
        """
        INSERT INTO conversations (account_id, sender_id)
        VALUES (%s, %s)
        ON CONFLICT (account_id, sender_id) DO NOTHING
        """,
        (account_id, sender_id),
    )
    row = for_update(
        cur,
        "SELECT id FROM conversations WHERE account_id = %s AND sender_id = %s",
        (account_id, sender_id),
    )
    return str(row[0])


def append_message(
    cur: PgCursor,
    account_id: str,
    sender_id: str,
    role: str,
    content: str,
    sent_at: datetime,
    *,
    event_id: str,
) -> Conversation:
    """Append one message and return the ordered history.

    Idempotent on (conversation, event_id): a retried append adds nothing.

    Args:
        cur: Database cursor (within transaction).
        account_id: Business account id.
        sender_id: Platform user id.
        role: "user" or "assistant".
        content: Message text. NEVER logged.
        sent_at: Platform timestamp of the message.
        event_id: Source event id (or "reply:<event_id>" for our replies).

    Returns:
        Conversation snapshot. `is_first_message` is True only for the user
        event that claimed first-message status (the first one appended).
    """
    conversation_id = lock_conversation(cur, account_id, sender_id)

    cur.execute(
        """
        INSERT INTO conversation_messages (conversation_id, event_id, role, content, sent_at)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (conversation_id, event_id) DO NOTHING
        """,
        (conversation_id, event_id, role, content, sent_at),
    )

    # Claimed once under the row lock; a later, earlier-timestamped message
    # does not take it over.
    claim = event_id if role == "user" else None
    cur.execute(
        """
        UPDATE conversations
        SET first_message_at = LEAST(COALESCE(first_message_at, %s), %s),
            last_message_at = GREATEST(COALESCE(last_message_at, %s), %s),
            first_message_event_id = COALESCE(first_message_event_id, %s),
            updated_at = now()
        WHERE id = %s
        RETURNING first_message_at, last_message_at, first_message_event_id
        """,
        (sent_at, sent_at, sent_at, sent_at, claim, conversation_id),
    )
    first_at, last_at, first_event_id = cur.fetchone()

    cur.execute(
        """
        SELECT role, content, sent_at, event_id
        FROM conversation_messages
        WHERE conversation_id = %s
        ORDER BY sent_at, id
        """,
        (conversation_id,),
    )
    rows = cur.fetchall()

    return Conversation(
        id=conversation_id,
        account_id=account_id,
        sender_id=sender_id,
        messages=tuple(ChatMessage(role=r[0], content=r[1], sent_at=r[2]) for r in rows),
        first_message_at=first_at,
        last_message_at=last_at,
        is_first_message=role == "user" and first_event_id == event_id,
    )
