"""Worker route that drains the job queue when nudged by the tasks client."""

from fastapi import APIRouter, HTTPException, Query, Request

from instaflow.api.task_auth import verify_task_auth
from instaflow.observability.correlation import get_correlation_id
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context
from instaflow.tasks.contracts import JOB_KINDS
from instaflow.worker import Worker, build_worker

router = APIRouter(prefix="/tasks/jobs", tags=["tasks"])

logger = get_logger(__name__)

MAX_DRAIN_LIMIT = 100

_worker: Worker | None = None


def _get_worker() -> Worker:
    """Get the shared worker (allows test injection)."""
    global _worker
    if _worker is None:
        _worker = build_worker()
    return _worker


@router.post("/{kind}/drain")
def drain_jobs(
    kind: str,
    request: Request,
    limit: int = Query(10, ge=1, le=MAX_DRAIN_LIMIT),
) -> dict:
    """Run up to `limit` ready jobs of `kind`.

    Job failures are handled by the worker (requeue / dead-letter), so this
    returns 200 whenever the drain itself ran. The request body is ignored:
    the jobs table is the source of truth.
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    if kind not in JOB_KINDS:
        raise HTTPException(status_code=404, detail="Unknown job kind")

    outcomes = _get_worker().drain(kind, limit=limit)

    counts = {"ack": 0, "nack": 0, "dead": 0, "stale": 0}
    for outcome in outcomes:
        counts[outcome.action] += 1

    logger.info(
        "drain finished",
        extra={"extra_fields": safe_log_context(correlationId=correlation_id, kind=kind, **counts)},
    )
    return {"ok": True, "kind": kind, "processed": len(outcomes), **counts}
