"""Job worker: dequeues jobs and maps handler outcomes to queue actions.

    success                      -> ack
    ValidationError              -> ack (handler already recorded `skipped`)
    RateLimitError               -> nack(retry_after), dead-letter when exhausted
    UpstreamServiceError         -> nack(backoff), dead-letter when exhausted
    PlatformRejectedError        -> dead-letter
    anything else                -> nack once, dead-letter on the second failure

Every dead-letter calls `on_dead_letter(job, error)` so the activity row is
closed as `failed`.

A worker whose lease expired and was re-claimed elsewhere can no longer ack,
nack or dead-letter the job; its outcome is `stale` and the new owner's
result stands.

Run as a polling process:

    python -m instaflow.worker --kind message-processing
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import dataclass
from typing import Callable

from instaflow.domain.errors import (
    PlatformRejectedError,
    RateLimitError,
    UpstreamServiceError,
    ValidationError,
    describe_error,
)
from instaflow.domain.matcher import NullRuleCache, RuleSource
from instaflow.domain.pipeline import Pipeline
from instaflow.domain.retry import RetryPolicy, backoff_delay
from instaflow.domain.settings import PipelineSettings
from instaflow.domain.store import Job, JobQueue
from instaflow.observability.correlation import correlation_scope
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context
from instaflow.tasks.contracts import JOB_KINDS

logger = get_logger(__name__)

Handler = Callable[[Job], None]
DeadLetterHook = Callable[[Job, BaseException], None]

# Unclassified errors get one more delivery before they are dead-lettered
INTERNAL_ERROR_DELIVERIES = 2
INTERNAL_RETRY_DELAY_SECONDS = 30.0


@dataclass(frozen=True)
class JobOutcome:
    """What the worker did with one job: ack | nack | dead | stale."""

    job_id: int
    kind: str
    action: str
    error: str | None = None


class Worker:
    """Runs handlers for dequeued jobs.

    Args:
        queue: Job queue.
        handlers: Map of job kind -> handler.
        on_dead_letter: Called after a job is dead-lettered. Must not raise.
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: dict[str, Handler],
        *,
        on_dead_letter: DeadLetterHook | None = None,
    ) -> None:
        self.queue = queue
        self.handlers = handlers
        self.on_dead_letter = on_dead_letter

    def run_once(self, kind: str) -> JobOutcome | None:
        """Claim and run one job of `kind`. Returns None if none was ready."""
        handler = self.handlers.get(kind)
        if handler is None:
            raise ValueError(f"No handler for job kind: {kind}")

        job = self.queue.dequeue(kind)
        if job is None:
            return None

        with correlation_scope(job.payload.get("correlation_id")) as cid:
            log_ctx = safe_log_context(
                correlationId=cid,
                job_id=job.id,
                kind=job.kind,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
            )

            # Lease expired more times than allowed (worker crashes mid-job)
            if job.attempts > job.max_attempts:
                error = UpstreamServiceError("job lease expired too many times", service="worker")
                return self._dead_letter(job, error, log_ctx)

            try:
                handler(job)
            except ValidationError as e:
                if not self.queue.ack(job):
                    return self._lease_lost(job, "ack", log_ctx)
                logger.info(
                    "job dropped: invalid input",
                    extra={"extra_fields": {**log_ctx, **safe_log_context(error_code=e.code)}},
                )
                return JobOutcome(job.id, job.kind, "ack", describe_error(e))
            except PlatformRejectedError as e:
                return self._dead_letter(job, e, log_ctx)
            except RateLimitError as e:
                if job.exhausted:
                    return self._dead_letter(job, e, log_ctx)
                return self._nack(job, e, e.retry_after, log_ctx)
            except UpstreamServiceError as e:
                if job.exhausted:
                    return self._dead_letter(job, e, log_ctx)
                return self._nack(job, e, backoff_delay(job.attempts), log_ctx)
            except Exception as e:
                logger.exception("job handler crashed", extra={"extra_fields": log_ctx})
                if job.attempts >= INTERNAL_ERROR_DELIVERIES or job.exhausted:
                    return self._dead_letter(job, e, log_ctx)
                return self._nack(job, e, INTERNAL_RETRY_DELAY_SECONDS, log_ctx)

            if not self.queue.ack(job):
                return self._lease_lost(job, "ack", log_ctx)
            logger.info("job done", extra={"extra_fields": log_ctx})
            return JobOutcome(job.id, job.kind, "ack")

    def drain(self, kind: str, limit: int = 10) -> list[JobOutcome]:
        """Run up to `limit` jobs of `kind`; stops early when the queue is empty."""
        outcomes: list[JobOutcome] = []
        for _ in range(max(0, limit)):
            outcome = self.run_once(kind)
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    def _nack(self, job: Job, error: BaseException, delay: float, log_ctx: dict) -> JobOutcome:
        description = describe_error(error)
        if not self.queue.nack(job, delay, description):
            return self._lease_lost(job, "nack", log_ctx)
        logger.warning(
            "job requeued",
            extra={
                "extra_fields": {
                    **log_ctx,
                    **safe_log_context(
                        error_code=getattr(error, "code", type(error).__name__),
                        retry_delay_s=round(delay, 3),
                    ),
                }
            },
        )
        return JobOutcome(job.id, job.kind, "nack", description)

    def _dead_letter(self, job: Job, error: BaseException, log_ctx: dict) -> JobOutcome:
        description = describe_error(error)
        if not self.queue.dead_letter(job, description):
            return self._lease_lost(job, "dead", log_ctx)
        logger.error(
            "job dead-lettered",
            extra={
                "extra_fields": {
                    **log_ctx,
                    **safe_log_context(error_code=getattr(error, "code", type(error).__name__)),
                }
            },
        )
        if self.on_dead_letter is not None:
            try:
                self.on_dead_letter(job, error)
            except Exception:
                logger.exception("dead-letter hook failed", extra={"extra_fields": log_ctx})
        return JobOutcome(job.id, job.kind, "dead", description)

    def _lease_lost(self, job: Job, action: str, log_ctx: dict) -> JobOutcome:
        logger.warning(
            "job lease lost, result discarded",
            extra={"extra_fields": {**log_ctx, **safe_log_context(discarded_action=action)}},
        )
        return JobOutcome(job.id, job.kind, "stale")


def build_pipeline(settings: PipelineSettings | None = None) -> Pipeline:
    """Wire the pipeline against Postgres, Redis and the configured AI provider."""
    from instaflow.ai.factory import provider_from_env
    from instaflow.infra.cache import RedisRuleCache, get_redis_client
    from instaflow.infra.rate_limit import throttle_from_env
    from instaflow.infra.store import PostgresStore
    from instaflow.instagram.sender import InstagramSender
    from instaflow.tasks.client import TasksClient

    settings = settings or PipelineSettings.from_env()
    store = PostgresStore()

    redis_client = get_redis_client()
    cache = RedisRuleCache(redis_client) if redis_client is not None else NullRuleCache()

    try:
        ai_provider = provider_from_env()
    except RuntimeError as e:
        logger.warning(
            "AI provider not configured, ai_reply rules will fail",
            extra={"extra_fields": safe_log_context(reason=str(e))},
        )
        ai_provider = None

    sender = InstagramSender(
        store.get_account,
        throttle=throttle_from_env(),
        policy=RetryPolicy(
            max_attempts=settings.send_max_attempts,
            base_delay=settings.send_base_delay,
            wait_budget=settings.send_wait_budget,
        ),
    )
    if sender.max_send_seconds >= settings.job_visibility_timeout:
        logger.warning(
            "send can outlast the job lease, lower SEND_MAX_ATTEMPTS or INSTAGRAM_HTTP_TIMEOUT",
            extra={
                "extra_fields": safe_log_context(
                    max_send_s=sender.max_send_seconds,
                    visibility_timeout_s=settings.job_visibility_timeout,
                )
            },
        )

    return Pipeline(
        store,
        rules_source=RuleSource(store, cache),
        sender=sender,
        ai_provider=ai_provider,
        settings=settings,
        tasks_client=TasksClient(),
    )


def build_worker(pipeline: Pipeline | None = None) -> Worker:
    from instaflow.tasks.queue import PostgresJobQueue

    pipeline = pipeline or build_pipeline()
    return Worker(
        PostgresJobQueue(visibility_timeout=pipeline.settings.job_visibility_timeout),
        pipeline.handlers(),
        on_dead_letter=pipeline.on_dead_letter,
    )


def _poll(worker: Worker, kinds: list[str], interval: float, once: bool) -> None:
    while True:
        ran = 0
        for kind in kinds:
            ran += len(worker.drain(kind, limit=50))
        if once:
            return
        if ran == 0:
            time.sleep(interval)


def _purge(settings: PipelineSettings) -> int:
    from instaflow.infra.store import PostgresStore

    archived = PostgresStore().purge_expired_dedupe(settings.dedupe_retention_hours)
    logger.info(
        "dedupe records archived",
        extra={
            "extra_fields": safe_log_context(
                archived=archived, retention_hours=settings.dedupe_retention_hours
            )
        },
    )
    return archived


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="instaflow.worker")
    parser.add_argument(
        "--kind",
        action="append",
        choices=JOB_KINDS,
        help="Job kind to process (repeatable; default: all kinds)",
    )
    parser.add_argument("--once", action="store_true", help="Drain once and exit")
    parser.add_argument(
        "--purge-dedupe",
        action="store_true",
        help="Archive inbound events older than DEDUPE_RETENTION_HOURS and exit",
    )
    args = parser.parse_args(argv)

    settings = PipelineSettings.from_env()
    if args.purge_dedupe:
        _purge(settings)
        return 0

    kinds = args.kind or list(JOB_KINDS)
    interval = float(os.environ.get("WORKER_POLL_INTERVAL", "1.0"))
    worker = build_worker(build_pipeline(settings))

    logger.info(
        "worker started",
        extra={"extra_fields": safe_log_context(kinds=",".join(kinds), poll_interval_s=interval)},
    )
    try:
        _poll(worker, kinds, interval, args.once)
    except KeyboardInterrupt:
        logger.info("worker stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
