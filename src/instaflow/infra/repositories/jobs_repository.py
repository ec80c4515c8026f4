"""Jobs repository - durable queue rows.

Uses raw SQL with psycopg2 (no ORM). Claiming uses FOR UPDATE SKIP LOCKED so
concurrent workers never take the same job, plus a per-partition advisory
lock so two workers never run jobs of the same (account, sender) at once.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.store import Job

_COLUMNS = """
    id, kind, payload, priority, attempts, max_attempts, status,
    dedupe_key, partition_key, last_error, visible_at, created_at
"""

# A partition is blocked while another of its jobs is leased, or while an
# older job of the same partition is still waiting.
_PARTITION_FREE = """
    NOT EXISTS (
        SELECT 1 FROM jobs o
        WHERE o.partition_key = j.partition_key
          AND o.id <> j.id
          AND (
                (o.status = 'running' AND o.visible_at > now())
             OR (o.status = 'queued' AND o.id < j.id)
          )
    )
"""


def _row_to_job(row: tuple[Any, ...]) -> Job:
    payload = row[2]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Job(
        id=row[0],
        kind=row[1],
        payload=payload,
        priority=row[3],
        attempts=row[4],
        max_attempts=row[5],
        status=row[6],
        dedupe_key=row[7],
        partition_key=row[8],
        last_error=row[9],
        visible_at=row[10],
        created_at=row[11],
    )


def insert_job(
    cur: PgCursor,
    kind: str,
    payload: dict[str, Any],
    *,
    priority: int,
    dedupe_key: str,
    partition_key: str | None = None,
    delay_seconds: float = 0,
    max_attempts: int = 5,
) -> int | None:
    """Insert a job unless its dedupe_key exists.

    Returns:
        New job id, or None for a duplicate enqueue.
    """
    cur.execute(
        """
        INSERT INTO jobs (kind, payload, priority, dedupe_key, partition_key, max_attempts, visible_at)
        VALUES (%s, %s::jsonb, %s, %s, %s, %s, now() + make_interval(secs => %s))
        ON CONFLICT (dedupe_key) DO NOTHING
        RETURNING id
        """,
        (kind, json.dumps(payload), priority, dedupe_key, partition_key, max_attempts, delay_seconds),
    )
    row = cur.fetchone()
    return row[0] if row else None


def claim_next_job(cur: PgCursor, kind: str, visibility_timeout: float) -> Job | None:
    """Lease the next ready job of `kind`.

    Ready: queued (or running with an expired lease) and visible_at <= now(),
    and its partition is free. Claiming sets status='running', attempts += 1
    and visible_at = now() + visibility_timeout.

    Returns:
        The claimed Job (attempts already incremented), or None.
    """
    cur.execute(
        f"""
        SELECT j.id, j.partition_key
        FROM jobs j
        WHERE j.kind = %s
          AND j.status IN ('queued', 'running')
          AND j.visible_at <= now()
          AND (j.partition_key IS NULL OR {_PARTITION_FREE})
        ORDER BY j.priority, j.created_at, j.id
        LIMIT 1
        FOR UPDATE OF j SKIP LOCKED
        """,
        (kind,),
    )
    candidate = cur.fetchone()
    if candidate is None:
        return None
    job_id, partition_key = candidate

    if partition_key is not None:
        cur.execute("SELECT pg_try_advisory_xact_lock(hashtext(%s))", (partition_key,))
        if not cur.fetchone()[0]:
            return None
        # Re-check now that no other claimer can touch this partition
        cur.execute(
            f"SELECT 1 FROM jobs j WHERE j.id = %s AND {_PARTITION_FREE}",
            (job_id,),
        )
        if cur.fetchone() is None:
            return None

    cur.execute(
        f"""
        UPDATE jobs
        SET status = 'running',
            attempts = attempts + 1,
            visible_at = now() + make_interval(secs => %s),
            updated_at = now()
        WHERE id = %s
        RETURNING {_COLUMNS}
        """,
        (visibility_timeout, job_id),
    )
    return _row_to_job(cur.fetchone())


# ack, nack and dead-letter only land while the caller still holds the lease:
# a re-claim bumps `attempts`, so a worker whose lease was taken over no longer
# matches.
_LEASE_HELD = "id = %s AND status = 'running' AND attempts = %s"


def mark_done(cur: PgCursor, job_id: int, attempts: int) -> bool:
    cur.execute(
        f"UPDATE jobs SET status = 'done', updated_at = now() WHERE {_LEASE_HELD}",
        (job_id, attempts),
    )
    return cur.rowcount == 1


def requeue(
    cur: PgCursor,
    job_id: int,
    attempts: int,
    retry_delay: float,
    error: str | None = None,
) -> bool:
    cur.execute(
        f"""
        UPDATE jobs
        SET status = 'queued',
            visible_at = now() + make_interval(secs => %s),
            last_error = COALESCE(%s, last_error),
            updated_at = now()
        WHERE {_LEASE_HELD}
        """,
        (retry_delay, error, job_id, attempts),
    )
    return cur.rowcount == 1


def mark_dead(cur: PgCursor, job_id: int, attempts: int, error: str) -> bool:
    cur.execute(
        f"""
        UPDATE jobs
        SET status = 'dead', last_error = %s, updated_at = now()
        WHERE {_LEASE_HELD}
        """,
        (error, job_id, attempts),
    )
    return cur.rowcount == 1

