"""Tasks client - nudges the worker to drain the job queue.

The `jobs` table is the source of truth; a nudge only tells a worker that
work is ready. Backends selectable via TASKS_BACKEND env var:
- inline (default): records the nudge, sends nothing (dev/tests; the
  polling worker picks jobs up)
- http: POSTs to the worker drain endpoint
- cloud_tasks: creates a Google Cloud Task targeting the drain endpoint
"""

import os
from datetime import datetime

from instaflow.observability.correlation import get_correlation_id
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

from .contracts import drain_path

logger = get_logger(__name__)

BACKENDS = ("inline", "http", "cloud_tasks")


class TasksClient:
    """Sends worker nudges, at most once per task_id per process."""

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        self._seen: set[str] = set()
        self._recorded: list[dict] = []

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Send a nudge for `url_path` through the configured backend.

        Args:
            task_id: Nudge identity; a repeated id is a no-op.
            url_path: Drain endpoint, e.g. "/tasks/jobs/send-message/drain".
            payload: Body for the drain request (identifiers only).
            correlation_id: Forwarded as X-Correlation-Id.
            schedule_time: Earliest delivery time, if delayed.

        Returns:
            False for a repeated task_id or when the backend refused the
            nudge, True otherwise.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if self._backend not in BACKENDS:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")
        if task_id in self._seen:
            return False
        self._seen.add(task_id)

        if self._backend == "http":
            from instaflow.tasks.http_backend import enqueue_http

            return enqueue_http(task_id, url_path, payload, correlation_id, schedule_time)
        if self._backend == "cloud_tasks":
            from instaflow.tasks.cloud_tasks_backend import enqueue_cloud_task

            return enqueue_cloud_task(task_id, url_path, payload, correlation_id, schedule_time)

        self._recorded.append(
            {
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            }
        )
        return True

    def seen(self, task_id: str) -> bool:
        return task_id in self._seen

    def get_scheduled_tasks(self) -> list[dict]:
        """Nudges recorded by the inline backend."""
        return list(self._recorded)


def nudge_worker(
    tasks_client: TasksClient | None,
    kind: str,
    task_key: str,
    schedule_time: datetime | None = None,
) -> bool:
    """Tell the worker that a `kind` job is ready. Best effort.

    The job is already committed, so a failed nudge only delays it until the
    next poll; failures are logged, never raised.
    """
    if tasks_client is None:
        return False
    correlation_id = get_correlation_id()
    try:
        return tasks_client.enqueue_http(
            task_id=f"{kind}:{task_key}",
            url_path=drain_path(kind),
            payload={"kind": kind},
            correlation_id=correlation_id,
            schedule_time=schedule_time,
        )
    except Exception:
        logger.warning(
            "worker nudge failed",
            exc_info=True,
            extra={"extra_fields": safe_log_context(correlationId=correlation_id or "", kind=kind)},
        )
        return False
