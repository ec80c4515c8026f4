"""Durable job queue on the Postgres `jobs` table."""

from __future__ import annotations

import os
from typing import Any

from instaflow.domain.store import Job
from instaflow.infra.db import txn
from instaflow.infra.repositories import jobs_repository

DEFAULT_VISIBILITY_TIMEOUT = 60.0


class PostgresJobQueue:
    """JobQueue backed by the `jobs` table.

    Each operation runs in its own short transaction. A claimed job is
    leased for `visibility_timeout` seconds; if the worker dies, the job
    becomes claimable again when the lease expires. ack, nack and
    dead_letter return False when the lease was lost to another claim.
    """

    def __init__(self, visibility_timeout: float | None = None) -> None:
        if visibility_timeout is None:
            visibility_timeout = float(
                os.environ.get("JOB_VISIBILITY_TIMEOUT_SECONDS", DEFAULT_VISIBILITY_TIMEOUT)
            )
        self.visibility_timeout = visibility_timeout

    def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        priority: int,
        dedupe_key: str,
        partition_key: str | None = None,
        delay_seconds: float = 0,
        max_attempts: int = 5,
    ) -> int | None:
        with txn() as cur:
            return jobs_repository.insert_job(
                cur,
                kind,
                payload,
                priority=priority,
                dedupe_key=dedupe_key,
                partition_key=partition_key,
                delay_seconds=delay_seconds,
                max_attempts=max_attempts,
            )

    def dequeue(self, kind: str) -> Job | None:
        with txn() as cur:
            return jobs_repository.claim_next_job(cur, kind, self.visibility_timeout)

    def ack(self, job: Job) -> bool:
        with txn() as cur:
            return jobs_repository.mark_done(cur, job.id, job.attempts)

    def nack(self, job: Job, retry_delay: float, error: str | None = None) -> bool:
        with txn() as cur:
            return jobs_repository.requeue(cur, job.id, job.attempts, retry_delay, error)

    def dead_letter(self, job: Job, error: str) -> bool:
        with txn() as cur:
            return jobs_repository.mark_dead(cur, job.id, job.attempts, error)
