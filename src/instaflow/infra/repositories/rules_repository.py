"""Automation rules repository (read-only: rules are edited by the dashboard)."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def list_active_rules(cur: PgCursor, account_id: str) -> list[dict[str, Any]]:
    """List an account's active rules as raw rows, lowest priority first.

    Args:
        cur: Database cursor.
        account_id: Business account id.

    Returns:
        Row dicts with trigger_type/conditions and action_type/action_config.
    """
    cur.execute(
        """
        SELECT id, account_id, name, is_active, priority,
               trigger_type, conditions, action_type, action_config
        FROM automation_rules
        WHERE account_id = %s AND is_active
        ORDER BY priority, id
        """,
        (account_id,),
    )
    return [
        {
            "id": str(row[0]),
            "account_id": row[1],
            "name": row[2],
            "is_active": row[3],
            "priority": row[4],
            "trigger_type": row[5],
            "conditions": row[6] or {},
            "action_type": row[7],
            "action_config": row[8] or {},
        }
        for row in cur.fetchall()
    ]
