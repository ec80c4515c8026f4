"""HTTP backend: POSTs worker nudges straight to the drain endpoint.

Used where api and worker run as separate containers on one network
(docker compose, staging). Authentication mirrors what `api.task_auth`
accepts:
- TASKS_OIDC_AUDIENCE == "instaflow-tasks-local": X-Internal-Task-Secret
- otherwise: Google-signed OIDC ID token for WORKER_BASE_URL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Must match task_auth.LOCAL_DEV_AUDIENCE
_LOCAL_DEV_AUDIENCE = "instaflow-tasks-local"

_session: requests.Session | None = None


@dataclass(frozen=True)
class HttpTasksConfig:
    worker_base_url: str
    internal_task_secret: str
    timeout: float
    audience: str

    @property
    def local_dev(self) -> bool:
        return self.audience == _LOCAL_DEV_AUDIENCE

    @classmethod
    def from_env(cls) -> "HttpTasksConfig":
        return cls(
            worker_base_url=os.environ.get("WORKER_BASE_URL", "http://worker:8000").rstrip("/"),
            internal_task_secret=os.environ.get("INTERNAL_TASK_SECRET", ""),
            timeout=float(os.environ.get("TASKS_HTTP_TIMEOUT", "10")),
            audience=os.environ.get("TASKS_OIDC_AUDIENCE", ""),
        )


def _get_session() -> requests.Session:
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


def _fetch_oidc_token(audience: str) -> str | None:
    """ID token from the metadata server or application default credentials."""
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except (google_auth_exceptions.GoogleAuthError, requests.RequestException) as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return None


def auth_headers(config: HttpTasksConfig) -> dict[str, str] | None:
    """Headers that authenticate a nudge, or None if no credential is available."""
    if config.local_dev:
        if not config.internal_task_secret:
            return {}
        return {"X-Internal-Task-Secret": config.internal_task_secret}
    token = _fetch_oidc_token(config.worker_base_url)
    if not token:
        return None
    return {"Authorization": f"Bearer {token}"}


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """POST a nudge to the worker.

    A scheduled nudge is not sent at all: the job's visible_at already
    delays it and the polling worker picks it up when due.

    Returns:
        True if the worker answered 2xx (or nothing needed sending).
    """
    log_ctx = safe_log_context(task_id=task_id, url_path=url_path)
    if schedule_time is not None:
        logger.info("scheduled nudge left to the polling worker", extra={"extra_fields": log_ctx})
        return True

    config = HttpTasksConfig.from_env()
    auth = auth_headers(config)
    if auth is None:
        logger.error("nudge aborted: OIDC token unavailable", extra={"extra_fields": log_ctx})
        return False

    headers = {
        "Content-Type": "application/json",
        "X-Correlation-Id": correlation_id or "",
        "X-Task-Id": task_id,
        **auth,
    }
    try:
        response = _get_session().post(
            f"{config.worker_base_url}{url_path}",
            json=payload,
            headers=headers,
            timeout=config.timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "nudge failed",
            extra={"extra_fields": {**log_ctx, **safe_log_context(error_type=type(e).__name__)}},
        )
        return False

    logger.info("nudge sent", extra={"extra_fields": log_ctx})
    return True
