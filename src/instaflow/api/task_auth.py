"""Authentication for queue drain requests.

Drain endpoints are called by Cloud Tasks (OIDC bearer token) or, in local
dev, by the http tasks backend with X-Internal-Task-Secret.
"""

from __future__ import annotations

import base64
import hmac
import json
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Audience value that turns on the X-Internal-Task-Secret fallback
LOCAL_DEV_AUDIENCE = "instaflow-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def _unverified_audience(token: str) -> str | None:
    """Read `aud` from a JWT without verifying it. Diagnostics only."""
    try:
        segment = token.split(".")[1]
        segment += "=" * (-len(segment) % 4)
        value = json.loads(base64.urlsafe_b64decode(segment)).get("aud")
    except (IndexError, ValueError):
        return None
    return str(value) if value is not None else None


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):] or None


def verify_task_oidc(token: str) -> bool:
    """Verify a Cloud Tasks OIDC token against TASKS_OIDC_AUDIENCE.

    When TASKS_OIDC_SERVICE_ACCOUNT is set, the token's email must match it.
    Fails closed when the audience is not configured.
    """
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={
                "extra_fields": safe_log_context(
                    error=str(e),
                    expected_audience=audience,
                    received_audience=_unverified_audience(token),
                )
            },
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(reason="service_account_mismatch")},
        )
        return False
    return True


def _internal_secret_ok(request: Request) -> bool:
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    provided = request.headers.get(INTERNAL_SECRET_HEADER, "")
    return bool(expected) and hmac.compare_digest(expected, provided)


def verify_task_auth(request: Request) -> bool:
    """Authenticate a drain request.

    The internal secret is only honoured when TASKS_OIDC_AUDIENCE is the
    local dev audience; everywhere else an OIDC token is required.
    """
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE and _internal_secret_ok(request):
        return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
