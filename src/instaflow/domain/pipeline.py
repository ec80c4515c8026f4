"""Job handlers for the message-routing pipeline.

    webhook-intake      -> ingest_envelope
    message-processing  -> begin activity -> append to conversation -> match
                           -> generate response -> enqueue send / mutate / call
    send-message        -> send reply -> record message id -> append reply

Handlers raise; the worker turns errors into ack / nack / dead-letter and
calls `on_dead_letter` so the activity row ends up `failed`.

Security: message text, handles and sender ids are NEVER logged.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from instaflow.ai.base import AIProvider
from instaflow.infra.time import utc_now
from instaflow.instagram.sender import InstagramSender
from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import hash_identifier, safe_log_context
from instaflow.tasks.client import TasksClient, nudge_worker
from instaflow.tasks.contracts import (
    JOB_PRIORITIES,
    MESSAGE_PROCESSING,
    SEND_MESSAGE,
    WEBHOOK_INTAKE,
    EventJobV1,
    send_dedupe_key,
)

from .activity import ActivityRecorder
from .errors import InternalError, ValidationError, describe_error
from .intake import ingest_envelope
from .matcher import MatchInput, RuleSource, match
from .responses import (
    LeadMutation,
    OutboundText,
    TagMutation,
    WebhookCall,
    execute_webhook_call,
    generate_response,
)
from .settings import PipelineSettings
from .store import Job, Store

logger = get_logger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _event_ref(payload: dict[str, Any]) -> EventJobV1:
    try:
        return EventJobV1.from_dict(payload)
    except ValueError as e:
        raise ValidationError(f"bad job payload: {e}") from e


class Pipeline:
    """Wires the pipeline stages to their collaborators.

    Args:
        store: Storage backend (events, conversations, rules, activity, jobs).
        rules_source: Cache-first rule loader.
        sender: Outbound platform sender.
        ai_provider: AI provider, or None when AI replies are not configured.
        settings: Pipeline settings.
        tasks_client: Optional client used to nudge the worker.
        webhook_http: requests-compatible client for webhook actions (tests).
    """

    def __init__(
        self,
        store: Store,
        *,
        rules_source: RuleSource,
        sender: InstagramSender,
        ai_provider: AIProvider | None = None,
        settings: PipelineSettings | None = None,
        tasks_client: TasksClient | None = None,
        webhook_http: Any | None = None,
    ) -> None:
        self.store = store
        self.rules_source = rules_source
        self.sender = sender
        self.ai_provider = ai_provider
        self.settings = settings or PipelineSettings()
        self.tasks_client = tasks_client
        self.webhook_http = webhook_http
        self.recorder = ActivityRecorder(store)

    def handlers(self) -> dict[str, Callable[[Job], None]]:
        return {
            WEBHOOK_INTAKE: self.handle_intake,
            MESSAGE_PROCESSING: self.process_message,
            SEND_MESSAGE: self.send_message,
        }

    # ------------------------------------------------------------------
    # webhook-intake
    # ------------------------------------------------------------------

    def handle_intake(self, job: Job) -> None:
        envelope = job.payload.get("envelope")
        if not isinstance(envelope, dict):
            raise ValidationError("intake job without envelope")
        result = ingest_envelope(
            envelope,
            store=self.store,
            tasks_client=self.tasks_client,
            max_attempts=self.settings.process_job_max_attempts,
        )
        logger.info(
            "deferred envelope ingested",
            extra={
                "extra_fields": safe_log_context(
                    job_id=job.id, accepted=result.accepted, duplicates=result.duplicates
                )
            },
        )

    # ------------------------------------------------------------------
    # message-processing
    # ------------------------------------------------------------------

    def process_message(self, job: Job) -> None:
        started = time.monotonic()
        ref = _event_ref(job.payload)
        log_ctx = safe_log_context(
            job_id=job.id,
            account_hash=hash_identifier(ref.account_id),
            event_hash=hash_identifier(ref.event_id),
        )

        with self.store.session() as session:
            event = session.get_event(ref.account_id, ref.event_id)
        if event is None:
            raise ValidationError("event not found")

        activity = self.recorder.begin(event)
        if activity is None:
            raise InternalError("could not record activity")
        if activity.is_terminal:
            logger.info(
                "event already handled, skipping",
                extra={"extra_fields": {**log_ctx, **safe_log_context(status=activity.status)}},
            )
            return
        activity_id = activity.id

        try:
            with self.store.session() as session:
                conversation = session.append_message(
                    event.account_id,
                    event.sender_id,
                    "user",
                    event.text or "",
                    event.received_at,
                    event_id=event.event_id,
                )

            rule = match(
                event.account_id,
                MatchInput(
                    text=event.text,
                    event_type=event.event_type,
                    is_first_message=conversation.is_first_message,
                    reaction=event.reaction,
                ),
                rules_source=self.rules_source,
            )
        except ValidationError as e:
            self.recorder.skip(activity_id, error_message=describe_error(e), processing_time_ms=_elapsed_ms(started))
            raise

        if rule is None:
            self.recorder.skip(
                activity_id,
                conversation_id=conversation.id,
                processing_time_ms=_elapsed_ms(started),
            )
            logger.info("no rule matched", extra={"extra_fields": log_ctx})
            return

        plan = generate_response(
            rule,
            # Messages that arrived out of order but were sent later are not context
            conversation.up_to(event.received_at),
            event,
            ai_provider=self.ai_provider,
            settings=self.settings,
        )

        if isinstance(plan, OutboundText):
            self.recorder.mark_pending(
                activity_id,
                automation_id=rule.id,
                conversation_id=conversation.id,
                outgoing_response=plan.text,
                ai_model=plan.ai_model,
                ai_tokens_used=plan.ai_tokens_used,
                ai_cost=plan.ai_cost,
                processing_time_ms=_elapsed_ms(started),
            )
            with self.store.session() as session:
                session.enqueue_job(
                    SEND_MESSAGE,
                    EventJobV1(
                        account_id=event.account_id,
                        event_id=event.event_id,
                        correlation_id=ref.correlation_id,
                    ).to_dict(),
                    priority=JOB_PRIORITIES[SEND_MESSAGE],
                    dedupe_key=send_dedupe_key(event.account_id, event.event_id),
                    partition_key=event.partition_key,
                    max_attempts=self.settings.send_job_max_attempts,
                )
            nudge_worker(self.tasks_client, SEND_MESSAGE, f"{event.account_id}:{event.event_id}")
            logger.info(
                "reply planned",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        **safe_log_context(
                            rule_id=rule.id,
                            reply_len=len(plan.text),
                            used_fallback=plan.used_fallback,
                        ),
                    }
                },
            )
            return

        if isinstance(plan, LeadMutation):
            with self.store.session() as session:
                session.upsert_lead(
                    event.account_id,
                    plan.sender_id,
                    tags=plan.tags,
                    lead_score=plan.lead_score,
                    funnel_stage=plan.funnel_stage,
                    custom_fields=plan.custom_fields,
                    sentiment=plan.sentiment,
                )
            self.recorder.succeed(
                activity_id,
                automation_id=rule.id,
                conversation_id=conversation.id,
                sentiment=plan.sentiment,
                processing_time_ms=_elapsed_ms(started),
            )
        elif isinstance(plan, TagMutation):
            with self.store.session() as session:
                session.add_tags(event.account_id, plan.sender_id, plan.tags)
            self.recorder.succeed(
                activity_id,
                automation_id=rule.id,
                conversation_id=conversation.id,
                processing_time_ms=_elapsed_ms(started),
            )
        elif isinstance(plan, WebhookCall):
            result = execute_webhook_call(plan, http=self.webhook_http)
            self.recorder.succeed(
                activity_id,
                automation_id=rule.id,
                conversation_id=conversation.id,
                send_attempts=result.attempts,
                processing_time_ms=_elapsed_ms(started),
            )

        logger.info(
            "action applied",
            extra={"extra_fields": {**log_ctx, **safe_log_context(rule_id=rule.id, action_type=rule.action_type)}},
        )

    # ------------------------------------------------------------------
    # send-message
    # ------------------------------------------------------------------

    def send_message(self, job: Job) -> None:
        started = time.monotonic()
        ref = _event_ref(job.payload)
        log_ctx = safe_log_context(
            job_id=job.id,
            account_hash=hash_identifier(ref.account_id),
            event_hash=hash_identifier(ref.event_id),
        )

        with self.store.session() as session:
            activity = session.get_activity(ref.account_id, ref.event_id)
            event = session.get_event(ref.account_id, ref.event_id)

        if activity is None or event is None:
            raise ValidationError("send job without activity or event")

        # Delivery guard: a redelivered job must not send twice
        if activity.status == "success" and activity.platform_message_id:
            logger.info("reply already sent, skipping", extra={"extra_fields": log_ctx})
            return
        if activity.is_terminal:
            logger.info(
                "activity closed, not sending",
                extra={"extra_fields": {**log_ctx, **safe_log_context(status=activity.status)}},
            )
            return
        if not activity.outgoing_response:
            self.recorder.skip(activity.id, error_message="no outgoing response recorded")
            raise ValidationError("no outgoing response recorded")

        result = self.sender.send(event.account_id, event.sender_id, activity.outgoing_response)

        self.recorder.succeed(
            activity.id,
            platform_message_id=result.message_id,
            send_attempts=result.attempts,
            processing_time_ms=activity.processing_time_ms + _elapsed_ms(started),
        )
        with self.store.session() as session:
            session.append_message(
                event.account_id,
                event.sender_id,
                "assistant",
                activity.outgoing_response,
                utc_now(),
                event_id=f"reply:{event.event_id}",
            )

    # ------------------------------------------------------------------
    # dead letters
    # ------------------------------------------------------------------

    def on_dead_letter(self, job: Job, error: BaseException) -> None:
        """Mark the job's activity failed. Never raises."""
        if job.kind not in (MESSAGE_PROCESSING, SEND_MESSAGE):
            logger.error(
                "intake job dead-lettered",
                extra={"extra_fields": safe_log_context(job_id=job.id, error_code=getattr(error, "code", type(error).__name__))},
            )
            return
        try:
            ref = EventJobV1.from_dict(job.payload)
        except ValueError:
            return
        self.recorder.fail_event(ref.account_id, ref.event_id, describe_error(error))
