"""Leads and user tags repository."""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def upsert_lead(
    cur: PgCursor,
    account_id: str,
    sender_id: str,
    *,
    tags: list[str],
    lead_score: int | None,
    funnel_stage: str,
    custom_fields: dict[str, Any],
    sentiment: str | None,
) -> None:
    """Create or update the lead for a sender.

    Tags are merged (deduplicated), custom fields are merged (new keys win),
    score and sentiment are replaced only when provided.
    """
    cur.execute(
        """
        INSERT INTO leads (account_id, sender_id, tags, lead_score, funnel_stage, custom_fields, sentiment)
        VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s)
        ON CONFLICT (account_id, sender_id) DO UPDATE SET
            tags = ARRAY(SELECT DISTINCT unnest(leads.tags || EXCLUDED.tags)),
            lead_score = COALESCE(EXCLUDED.lead_score, leads.lead_score),
            funnel_stage = EXCLUDED.funnel_stage,
            custom_fields = leads.custom_fields || EXCLUDED.custom_fields,
            sentiment = COALESCE(EXCLUDED.sentiment, leads.sentiment),
            updated_at = now()
        """,
        (
            account_id,
            sender_id,
            list(tags),
            lead_score,
            funnel_stage,
            json.dumps(custom_fields),
            sentiment,
        ),
    )
    if tags:
        add_tags(cur, account_id, sender_id, tags)


def add_tags(cur: PgCursor, account_id: str, sender_id: str, tags: list[str]) -> None:
    """Attach tags to a sender (existing tags are kept)."""
    for tag in dict.fromkeys(t.strip() for t in tags if t and t.strip()):
        cur.execute(
            """
            INSERT INTO user_tags (account_id, sender_id, tag)
            VALUES (%s, %s, %s)
            ON CONFLICT (account_id, sender_id, tag) DO NOTHING
            """,
            (account_id, sender_id, tag),
        )
