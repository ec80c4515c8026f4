"""Pipeline tunables read from environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

MIN_DEDUPE_RETENTION_HOURS = 24
DEFAULT_VISIBILITY_TIMEOUT = 60.0


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class PipelineSettings:
    """Settings shared by the intake, processing and send stages.

    Attributes:
        history_turns: Conversation messages passed to the AI provider.
        fallback_message: Reply sent when AI generation fails (None = fail).
        send_max_attempts: In-process send attempts per job run.
        send_base_delay: First backoff delay between send attempts (seconds).
        send_wait_budget: Total in-process wait allowed per send job run
            (seconds). Kept below half of `job_visibility_timeout`.
        send_job_max_attempts: Queue deliveries before a send job is dead.
        process_job_max_attempts: Queue deliveries before a processing job is dead.
        intake_mode: "inline" ingests in the webhook request, "deferred" stores
            the raw envelope as a webhook-intake job.
        dedupe_retention_hours: Age after which dedupe rows may be archived.
        job_visibility_timeout: Lease length of a claimed job (seconds).
    """

    history_turns: int = 10
    fallback_message: str | None = None
    send_max_attempts: int = 3
    send_base_delay: float = 1.0
    send_wait_budget: float = 10.0
    send_job_max_attempts: int = 5
    process_job_max_attempts: int = 5
    intake_mode: str = "inline"
    dedupe_retention_hours: int = 72
    job_visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        intake_mode = os.environ.get("INTAKE_MODE", "inline").strip().lower()
        if intake_mode not in ("inline", "deferred"):
            raise RuntimeError(f"Unknown INTAKE_MODE: {intake_mode}")
        visibility = _float_env("JOB_VISIBILITY_TIMEOUT_SECONDS", DEFAULT_VISIBILITY_TIMEOUT)
        return cls(
            history_turns=_int_env("AI_HISTORY_TURNS", 10),
            fallback_message=os.environ.get("AI_FALLBACK_MESSAGE") or None,
            send_max_attempts=max(1, _int_env("SEND_MAX_ATTEMPTS", 3)),
            send_base_delay=_float_env("SEND_BASE_DELAY_SECONDS", 1.0),
            send_wait_budget=min(_float_env("SEND_WAIT_BUDGET_SECONDS", 10.0), visibility / 2),
            send_job_max_attempts=max(1, _int_env("SEND_JOB_MAX_ATTEMPTS", 5)),
            process_job_max_attempts=max(1, _int_env("PROCESS_JOB_MAX_ATTEMPTS", 5)),
            intake_mode=intake_mode,
            dedupe_retention_hours=max(
                MIN_DEDUPE_RETENTION_HOURS, _int_env("DEDUPE_RETENTION_HOURS", 72)
            ),
            job_visibility_timeout=visibility,
        )
