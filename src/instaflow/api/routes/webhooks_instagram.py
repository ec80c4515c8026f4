"""Instagram webhook routes.

Security:
- Signature is verified over the raw body before JSON parsing (fail closed)
- Message text and sender ids go to the database only; job payloads carry ids
- Logs contain NO message text, handles or raw ids

Delivery contract: 200 once the events (or the raw envelope, in deferred
mode) are durably stored; 5xx when that write fails so the platform
redelivers. Redeliveries are absorbed by the (account_id, event_id) dedupe.
"""

import os
from typing import Any

from fastapi import APIRouter, Header, Query, Request, Response

from instaflow.domain.errors import ValidationError
from instaflow.domain.intake import defer_envelope, ingest_envelope
from instaflow.domain.settings import PipelineSettings
from instaflow.domain.store import Store
from instaflow.instagram.signature import SignatureVerificationError, verify_signature
from instaflow.observability.correlation import get_correlation_id
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context
from instaflow.tasks.client import TasksClient

router = APIRouter(prefix="/webhook", tags=["webhooks"])

logger = get_logger(__name__)

# Same instances across requests
_tasks_client = TasksClient()
_store: Store | None = None


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    return _tasks_client


def _get_store() -> Store:
    """Get storage backend (allows test injection)."""
    global _store
    if _store is None:
        from instaflow.infra.store import PostgresStore

        _store = PostgresStore()
    return _store


def _get_settings() -> PipelineSettings:
    return PipelineSettings.from_env()


@router.get("")
async def instagram_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Subscription handshake: echo hub.challenge if the verify token matches."""
    expected_token = os.environ.get("INSTAGRAM_VERIFY_TOKEN", "")

    if expected_token and hub_mode == "subscribe" and hub_verify_token == expected_token:
        logger.info(
            "webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=hub_challenge or "")

    logger.warning(
        "webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                token_configured=bool(expected_token),
            )
        },
    )
    return Response(status_code=403, content="verification failed")


@router.post("")
async def instagram_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive an Instagram messaging webhook.

    Returns:
        403 on signature failure (including unset INSTAGRAM_APP_SECRET).
        400 for malformed JSON or a malformed envelope.
        200 for ignored objects, duplicates and accepted events.
        500 when the durable write fails.
    """
    correlation_id = get_correlation_id()
    body_bytes = await request.body()

    # 1. Signature over the raw bytes
    try:
        verify_signature(body_bytes, x_hub_signature_256, os.environ.get("INSTAGRAM_APP_SECRET", ""))
    except SignatureVerificationError as e:
        logger.warning(
            "webhook signature verification failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return Response(status_code=403, content="invalid signature")

    # 2. Parse JSON
    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    if not isinstance(payload, dict):
        return Response(status_code=400, content="invalid envelope")

    # 3. Only instagram messaging objects are handled
    obj_type = payload.get("object")
    if obj_type != "instagram":
        logger.debug(
            "non-instagram webhook ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    object_type=obj_type or "missing",
                )
            },
        )
        return Response(status_code=200, content="ignored")

    settings = _get_settings()
    store = _get_store()
    tasks_client = _get_tasks_client()

    # 4. Durable intake
    try:
        if settings.intake_mode == "deferred":
            job_id = defer_envelope(body_bytes, payload, store=store, tasks_client=tasks_client)
            logger.info(
                "webhook envelope deferred",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        duplicate=job_id is None,
                        entries=payload.get("entry"),
                    )
                },
            )
            return Response(status_code=200, content="ok")

        result = ingest_envelope(
            payload,
            store=store,
            tasks_client=tasks_client,
            max_attempts=settings.process_job_max_attempts,
        )
    except ValidationError as e:
        logger.warning(
            "malformed webhook envelope",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=e.message)},
        )
        return Response(status_code=400, content="invalid envelope")
    except Exception:
        # Nothing was acknowledged; the platform will redeliver
        logger.exception(
            "webhook intake failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="intake failed")

    logger.info(
        "webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                accepted=result.accepted,
                duplicates=result.duplicates,
            )
        },
    )
    if result.total and not result.accepted:
        return Response(status_code=200, content="duplicate")
    return Response(status_code=200, content="ok")
