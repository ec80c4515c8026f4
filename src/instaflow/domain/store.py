"""Storage and queue interfaces the pipeline core depends on.

Production wiring uses `instaflow.infra.store.PostgresStore` and
`instaflow.tasks.queue.PostgresJobQueue`; tests use in-memory fakes.

A `Session` is one transaction. Everything done through a session (including
`enqueue_job`) commits or rolls back together, which is how intake makes the
event insert and the processing job atomic.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

from .models import AccountConfig, ActivityLog, Conversation, InboundEvent

JobKind = Literal["webhook-intake", "message-processing", "send-message"]

JobStatus = Literal["queued", "running", "done", "dead"]


@dataclass
class Job:
    """A durable unit of work.

    `payload` is never mutated after enqueue; retry state lives in
    `attempts` / `last_error`.
    """

    id: int
    kind: str
    payload: dict[str, Any]
    priority: int
    attempts: int = 0
    max_attempts: int = 5
    status: str = "queued"
    dedupe_key: str | None = None
    partition_key: str | None = None
    last_error: str | None = None
    visible_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class Session(Protocol):
    """Operations available inside one transaction."""

    # events
    def insert_event(self, event: InboundEvent) -> bool:
        """Insert event; False if (account_id, event_id) already exists."""
        ...

    def get_event(self, account_id: str, event_id: str) -> InboundEvent | None: ...

    # conversations
    def append_message(
        self,
        account_id: str,
        sender_id: str,
        role: str,
        content: str,
        sent_at: datetime,
        *,
        event_id: str,
    ) -> Conversation:
        """Lock the conversation, append one message, return ordered history.

        Idempotent on event_id: a repeated append returns the same snapshot.
        The first user event appended claims `is_first_message`; no later
        append can claim it again.
        """
        ...

    # rules
    def list_active_rules(self, account_id: str) -> list[dict[str, Any]]: ...

    # activity
    def begin_activity(
        self,
        account_id: str,
        event_id: str,
        incoming_message: str,
    ) -> ActivityLog:
        """Create or return the activity row for an event (idempotent)."""
        ...

    def get_activity(self, account_id: str, event_id: str) -> ActivityLog | None: ...

    def update_activity(self, activity_id: int, **fields: Any) -> bool:
        """Apply fields; a row already in a terminal status is left unchanged."""
        ...

    # lead / tag mutations
    def upsert_lead(
        self,
        account_id: str,
        sender_id: str,
        *,
        tags: list[str],
        lead_score: int | None,
        funnel_stage: str,
        custom_fields: dict[str, Any],
        sentiment: str | None,
    ) -> None: ...

    def add_tags(self, account_id: str, sender_id: str, tags: list[str]) -> None: ...

    # accounts
    def get_account(self, account_id: str) -> AccountConfig | None: ...

    # jobs
    def enqueue_job(
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
        """Insert a job; None if the dedupe_key already exists."""
        ...


class Store(Protocol):
    def session(self) -> AbstractContextManager[Session]: ...


class JobQueue(Protocol):
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
    ) -> int | None: ...

    def dequeue(self, kind: str) -> Job | None: ...

    # The next three return False when `job` is no longer leased by the caller
    # (the lease expired and another worker claimed it); nothing is changed.
    def ack(self, job: Job) -> bool: ...

    def nack(self, job: Job, retry_delay: float, error: str | None = None) -> bool: ...

    def dead_letter(self, job: Job, error: str) -> bool: ...
