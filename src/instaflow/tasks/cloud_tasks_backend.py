"""Cloud Tasks backend: one Cloud Task per worker nudge.

The task targets the worker drain endpoint and carries an OIDC token minted
for TASKS_OIDC_SERVICE_ACCOUNT, which `api.task_auth` verifies. The task
name is derived from the nudge task_id, so Cloud Tasks itself rejects
duplicate nudges (ALREADY_EXISTS is treated as success).
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime

from google.api_core import exceptions as gcp_exceptions
from google.cloud import tasks_v2
from google.protobuf import duration_pb2, timestamp_pb2

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

_TASK_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")
# Cloud Tasks limit for task ids
_MAX_TASK_ID_LENGTH = 500

_client: tasks_v2.CloudTasksClient | None = None


@dataclass(frozen=True)
class CloudTasksConfig:
    project: str
    location: str
    queue: str
    worker_url: str
    service_account: str
    audience: str
    dispatch_deadline_s: int

    @classmethod
    def from_env(cls) -> "CloudTasksConfig":
        """Read config from environment.

        Raises:
            RuntimeError: If the project, WORKER_BASE_URL or
                TASKS_OIDC_SERVICE_ACCOUNT is missing.
        """
        project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
        worker_url = os.environ.get("WORKER_BASE_URL", "")
        service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT", "")
        if not project:
            raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
        if not worker_url:
            raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
        if not service_account:
            raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")
        return cls(
            project=project,
            location=os.environ.get("GCP_LOCATION", "us-central1"),
            queue=os.environ.get("GCP_TASKS_QUEUE", "instaflow-jobs"),
            worker_url=worker_url.rstrip("/"),
            service_account=service_account,
            audience=os.environ.get("TASKS_OIDC_AUDIENCE") or worker_url,
            dispatch_deadline_s=int(os.environ.get("TASKS_DISPATCH_DEADLINE_SECONDS", "300")),
        )


def _get_client() -> tasks_v2.CloudTasksClient:
    global _client
    if _client is None:
        _client = tasks_v2.CloudTasksClient()
    return _client


def task_name_for(parent: str, task_id: str) -> str:
    """Cloud Tasks names allow only letters, digits, hyphens and underscores."""
    safe_id = _TASK_NAME_UNSAFE.sub("-", task_id)[:_MAX_TASK_ID_LENGTH]
    return f"{parent}/tasks/{safe_id}"


def build_task(
    config: CloudTasksConfig,
    parent: str,
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> dict:
    """Build the create_task request body for a drain nudge."""
    headers = {"Content-Type": "application/json", "X-Task-Id": task_id}
    if correlation_id:
        headers["X-Correlation-Id"] = correlation_id

    task: dict = {
        "name": task_name_for(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{config.worker_url}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": config.service_account,
                "audience": config.audience,
            },
        },
        "dispatch_deadline": duration_pb2.Duration(seconds=config.dispatch_deadline_s),
    }
    if schedule_time is not None:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp
    return task


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Create a Cloud Task for the worker drain endpoint.

    Returns:
        True if the task was created or already existed.

    Raises:
        RuntimeError: If required env vars are not set.
        google.api_core.exceptions.GoogleAPIError: Any other create failure.
    """
    config = CloudTasksConfig.from_env()
    client = _get_client()
    parent = client.queue_path(config.project, config.location, config.queue)
    task = build_task(config, parent, task_id, url_path, payload, correlation_id, schedule_time)
    log_ctx = safe_log_context(task_id=task_id, url_path=url_path, correlationId=correlation_id or "")

    try:
        response = client.create_task(parent=parent, task=task)
    except gcp_exceptions.AlreadyExists:
        logger.info("cloud task already exists (dedupe)", extra={"extra_fields": log_ctx})
        return True
    except gcp_exceptions.GoogleAPIError as e:
        logger.error(
            "failed to enqueue cloud task",
            extra={"extra_fields": {**log_ctx, **safe_log_context(error_type=type(e).__name__)}},
        )
        raise

    logger.info(
        "cloud task enqueued",
        extra={"extra_fields": {**log_ctx, **safe_log_context(task_name=response.name)}},
    )
    return True
