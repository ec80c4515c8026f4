"""Record which event claimed first-message status for a conversation.

Revision ID: 002_first_message_claim
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "002_first_message_claim"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("ALTER TABLE conversations ADD COLUMN first_message_event_id TEXT")
    # Existing conversations: the earliest user message already fired its rules
    conn.exec_driver_sql(
        """
        UPDATE conversations c
        SET first_message_event_id = (
            SELECT m.event_id FROM conversation_messages m
            WHERE m.conversation_id = c.id AND m.role = 'user'
            ORDER BY m.sent_at, m.id
            LIMIT 1
        )
        """
    )


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("ALTER TABLE conversations DROP COLUMN IF EXISTS first_message_event_id")
