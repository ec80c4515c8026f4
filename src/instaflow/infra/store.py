"""PostgreSQL implementation of the Store / Session interfaces.

Each `session()` is one `txn()`: commit on success, rollback on error.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from psycopg2.extensions import cursor as PgCursor

from instaflow.domain.models import AccountConfig, ActivityLog, Conversation, InboundEvent

from .account_settings import load_account, resolve_account
from .db import txn
from .repositories import (
    activity_repository,
    conversations_repository,
    events_repository,
    jobs_repository,
    leads_repository,
    rules_repository,
)


class PostgresSession:
    def __init__(self, cur: PgCursor) -> None:
        self.cur = cur

    def insert_event(self, event: InboundEvent) -> bool:
        return events_repository.insert_event(self.cur, event)

    def get_event(self, account_id: str, event_id: str) -> InboundEvent | None:
        return events_repository.get_event(self.cur, account_id, event_id)

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
        return conversations_repository.append_message(
            self.cur, account_id, sender_id, role, content, sent_at, event_id=event_id
        )

    def list_active_rules(self, account_id: str) -> list[dict[str, Any]]:
        return rules_repository.list_active_rules(self.cur, account_id)

    def begin_activity(self, account_id: str, event_id: str, incoming_message: str) -> ActivityLog:
        return activity_repository.begin_activity(self.cur, account_id, event_id, incoming_message)

    def get_activity(self, account_id: str, event_id: str) -> ActivityLog | None:
        return activity_repository.get_activity(self.cur, account_id, event_id)

    def update_activity(self, activity_id: int, **fields: Any) -> bool:
        return activity_repository.update_activity(self.cur, activity_id, **fields)

    def upsert_lead(self, account_id: str, sender_id: str, **fields: Any) -> None:
        leads_repository.upsert_lead(self.cur, account_id, sender_id, **fields)

    def add_tags(self, account_id: str, sender_id: str, tags: list[str]) -> None:
        leads_repository.add_tags(self.cur, account_id, sender_id, tags)

    def get_account(self, account_id: str) -> AccountConfig | None:
        return resolve_account(account_id, load_account(self.cur, account_id))

    def enqueue_job(self, kind: str, payload: dict[str, Any], **options: Any) -> int | None:
        return jobs_repository.insert_job(self.cur, kind, payload, **options)


class PostgresStore:
    @contextmanager
    def session(self) -> Iterator[PostgresSession]:
        with txn() as cur:
            yield PostgresSession(cur)

    def get_account(self, account_id: str) -> AccountConfig | None:
        """Credentials lookup used by the sender."""
        with self.session() as session:
            return session.get_account(account_id)

    def purge_expired_dedupe(self, retention_hours: int) -> int:
        with txn() as cur:
            return events_repository.purge_expired_dedupe(cur, retention_hours)
