"""Idempotent event intake.

Storing the event and enqueuing its processing job happen in one
transaction: either both exist or neither does. A redelivered event hits the
(account_id, event_id) unique key and produces nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from instaflow.instagram.adapter import normalize_envelope
from instaflow.observability.correlation import get_correlation_id
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context
from instaflow.tasks.client import TasksClient, nudge_worker
from instaflow.tasks.contracts import (
    JOB_PRIORITIES,
    MESSAGE_PROCESSING,
    WEBHOOK_INTAKE,
    EventJobV1,
    intake_dedupe_key,
    process_dedupe_key,
)

from .models import InboundEvent
from .store import Store

logger = get_logger(__name__)


@dataclass(frozen=True)
class IntakeResult:
    accepted: bool
    job_id: int | None = None


@dataclass(frozen=True)
class EnvelopeResult:
    accepted: int
    duplicates: int

    @property
    def total(self) -> int:
        return self.accepted + self.duplicates


def ingest(
    event: InboundEvent,
    *,
    store: Store,
    tasks_client: TasksClient | None = None,
    max_attempts: int = 5,
) -> IntakeResult:
    """Record an inbound event and enqueue its processing job.

    Args:
        event: Normalized inbound event.
        store: Storage backend.
        tasks_client: Optional client used to nudge the worker after commit.
        max_attempts: Queue deliveries before the processing job is dead.

    Returns:
        IntakeResult(accepted=False) for a duplicate, else accepted with job id.

    Raises:
        Storage errors propagate: the caller must not acknowledge delivery.
    """
    log_ctx = safe_log_context(
        correlationId=get_correlation_id() or "",
        account_hash=hash_identifier(event.account_id),
        event_hash=hash_identifier(event.event_id),
        event_type=event.event_type,
    )

    with store.session() as session:
        if not session.insert_event(event):
            logger.info("duplicate event ignored", extra={"extra_fields": log_ctx})
            return IntakeResult(accepted=False)

        job_id = session.enqueue_job(
            MESSAGE_PROCESSING,
            EventJobV1(
                account_id=event.account_id,
                event_id=event.event_id,
                correlation_id=get_correlation_id(),
            ).to_dict(),
            priority=JOB_PRIORITIES[MESSAGE_PROCESSING],
            dedupe_key=process_dedupe_key(event.account_id, event.event_id),
            partition_key=event.partition_key,
            max_attempts=max_attempts,
        )

    logger.info("event accepted", extra={"extra_fields": log_ctx})
    nudge_worker(tasks_client, MESSAGE_PROCESSING, f"{event.account_id}:{event.event_id}")
    return IntakeResult(accepted=True, job_id=job_id)


def ingest_envelope(
    payload: dict[str, Any],
    *,
    store: Store,
    tasks_client: TasksClient | None = None,
    max_attempts: int = 5,
) -> EnvelopeResult:
    """Normalize a webhook envelope and ingest every event in it.

    Raises:
        ValidationError: If the envelope itself is malformed.
    """
    accepted = duplicates = 0
    for event in normalize_envelope(payload):
        result = ingest(event, store=store, tasks_client=tasks_client, max_attempts=max_attempts)
        if result.accepted:
            accepted += 1
        else:
            duplicates += 1
    return EnvelopeResult(accepted=accepted, duplicates=duplicates)


def defer_envelope(
    raw_body: bytes,
    payload: dict[str, Any],
    *,
    store: Store,
    tasks_client: TasksClient | None = None,
) -> int | None:
    """Store a verified envelope as one webhook-intake job (deferred mode).

    Redelivery of the exact same body is deduplicated on its sha256.

    Returns:
        Job id, or None if this body was already stored.
    """
    dedupe_key = intake_dedupe_key(raw_body)
    with store.session() as session:
        job_id = session.enqueue_job(
            WEBHOOK_INTAKE,
            {"version": "v1", "envelope": payload, "correlation_id": get_correlation_id()},
            priority=JOB_PRIORITIES[WEBHOOK_INTAKE],
            dedupe_key=dedupe_key,
        )
    if job_id is not None:
        nudge_worker(tasks_client, WEBHOOK_INTAKE, dedupe_key.split(":", 1)[1][:32])
    return job_id
