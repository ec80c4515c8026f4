"""Initial schema (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


_TABLES = (
    """
    CREATE EXTENSION IF NOT EXISTS pgcrypto
    """,
    """
    CREATE TABLE instagram_accounts (
        id                TEXT PRIMARY KEY,
        page_id           TEXT,
        username          TEXT,
        access_token_enc  TEXT,
        settings          JSONB NOT NULL DEFAULT '{}'::jsonb,
        is_active         BOOLEAN NOT NULL DEFAULT true,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE inbound_events (
        id             BIGSERIAL PRIMARY KEY,
        account_id     TEXT NOT NULL,
        event_id       TEXT NOT NULL,
        sender_id      TEXT NOT NULL,
        received_at    TIMESTAMPTZ NOT NULL,
        event_type     TEXT NOT NULL
                       CHECK (event_type IN ('message', 'story_reply', 'reaction', 'comment')),
        sender_handle  TEXT,
        text           TEXT,
        attachments    JSONB NOT NULL DEFAULT '[]'::jsonb,
        reply_to_id    TEXT,
        reaction       TEXT,
        archived_at    TIMESTAMPTZ,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, event_id)
    )
    """,
    """
    CREATE INDEX idx_inbound_events_retention
        ON inbound_events(created_at) WHERE archived_at IS NULL
    """,
    """
    CREATE TABLE automation_rules (
        id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        account_id     TEXT NOT NULL,
        name           TEXT NOT NULL,
        is_active      BOOLEAN NOT NULL DEFAULT true,
        priority       INT NOT NULL DEFAULT 100 CHECK (priority >= 1),
        trigger_type   TEXT NOT NULL,
        conditions     JSONB NOT NULL DEFAULT '{}'::jsonb,
        action_type    TEXT NOT NULL,
        action_config  JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX idx_automation_rules_active
        ON automation_rules(account_id, priority) WHERE is_active
    """,
    """
    CREATE TABLE conversations (
        id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        account_id        TEXT NOT NULL,
        sender_id         TEXT NOT NULL,
        first_message_at  TIMESTAMPTZ,
        last_message_at   TIMESTAMPTZ,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, sender_id)
    )
    """,
    """
    CREATE TABLE conversation_messages (
        id               BIGSERIAL PRIMARY KEY,
        conversation_id  UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        event_id         TEXT NOT NULL,
        role             TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
        content          TEXT NOT NULL,
        sent_at          TIMESTAMPTZ NOT NULL,
        created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (conversation_id, event_id)
    )
    """,
    """
    CREATE INDEX idx_conversation_messages_order
        ON conversation_messages(conversation_id, sent_at, id)
    """,
    """
    CREATE TABLE activity_logs (
        id                   BIGSERIAL PRIMARY KEY,
        account_id           TEXT NOT NULL,
        event_id             TEXT NOT NULL,
        incoming_message     TEXT NOT NULL DEFAULT '',
        status               TEXT NOT NULL
                             CHECK (status IN ('pending', 'success', 'failed', 'skipped')),
        automation_id        UUID REFERENCES automation_rules(id) ON DELETE SET NULL,
        conversation_id      UUID REFERENCES conversations(id) ON DELETE SET NULL,
        outgoing_response    TEXT,
        error_message        TEXT,
        processing_time_ms   INT NOT NULL DEFAULT 0,
        ai_model             TEXT,
        ai_tokens_used       INT,
        ai_cost              NUMERIC(12, 6),
        platform_message_id  TEXT,
        send_attempts        INT NOT NULL DEFAULT 0,
        sentiment            TEXT,
        created_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at           TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, event_id)
    )
    """,
    """
    CREATE INDEX idx_activity_logs_status
        ON activity_logs(account_id, status, created_at)
    """,
    """
    CREATE TABLE leads (
        id             BIGSERIAL PRIMARY KEY,
        account_id     TEXT NOT NULL,
        sender_id      TEXT NOT NULL,
        tags           TEXT[] NOT NULL DEFAULT '{}',
        lead_score     INT,
        funnel_stage   TEXT NOT NULL DEFAULT 'new',
        custom_fields  JSONB NOT NULL DEFAULT '{}'::jsonb,
        sentiment      TEXT,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, sender_id)
    )
    """,
    """
    CREATE TABLE user_tags (
        id          BIGSERIAL PRIMARY KEY,
        account_id  TEXT NOT NULL,
        sender_id   TEXT NOT NULL,
        tag         TEXT NOT NULL,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (account_id, sender_id, tag)
    )
    """,
    """
    CREATE TABLE jobs (
        id             BIGSERIAL PRIMARY KEY,
        kind           TEXT NOT NULL,
        payload        JSONB NOT NULL,
        priority       INT NOT NULL DEFAULT 2,
        status         TEXT NOT NULL DEFAULT 'queued'
                       CHECK (status IN ('queued', 'running', 'done', 'dead')),
        attempts       INT NOT NULL DEFAULT 0,
        max_attempts   INT NOT NULL DEFAULT 5,
        dedupe_key     TEXT NOT NULL UNIQUE,
        partition_key  TEXT,
        last_error     TEXT,
        visible_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX idx_jobs_ready
        ON jobs(kind, priority, created_at) WHERE status IN ('queued', 'running')
    """,
    """
    CREATE INDEX idx_jobs_partition
        ON jobs(partition_key, id) WHERE status IN ('queued', 'running')
    """,
)

_DROP_ORDER = (
    "jobs",
    "user_tags",
    "leads",
    "activity_logs",
    "conversation_messages",
    "conversations",
    "automation_rules",
    "inbound_events",
    "instagram_accounts",
)


def upgrade() -> None:
    conn = op.get_bind()
    for statement in _TABLES:
        conn.exec_driver_sql(statement)


def downgrade() -> None:
    conn = op.get_bind()
    for table in _DROP_ORDER:
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
