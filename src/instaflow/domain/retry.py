"""Bounded retry with exponential backoff.

`RetryPolicy.run` never raises for errors it was asked to handle; it returns
a tagged `RetryOutcome` so callers decide what exhaustion means for them.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Literal, TypeVar

from instaflow.observability.logging import get_logger
from instaflow.observability.redaction import safe_log_context

from .errors import InternalError, PipelineError, RateLimitError

logger = get_logger(__name__)

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, PipelineError) and exc.retryable


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation.

    Attributes:
        kind: "success" or "exhausted".
        attempts: Number of calls made (>= 1).
        value: Return value when kind == "success".
        error: Last error when kind == "exhausted".
        retryable: False when the last error was not retryable (stopped early).
    """

    kind: Literal["success", "exhausted"]
    attempts: int
    value: T | None = None
    error: BaseException | None = None
    retryable: bool = True

    @property
    def ok(self) -> bool:
        return self.kind == "success"

    def unwrap(self) -> T:
        """Return value, or re-raise the last error."""
        if self.kind == "success":
            return self.value  # type: ignore[return-value]
        if self.error is None:
            raise InternalError(f"retry ended as {self.kind} without an error")
        raise self.error


@dataclass
class RetryPolicy:
    """Retry policy: attempt n waits base_delay * 2**(n-1) (+ jitter), capped.

    The wait before the next attempt is never shorter than a
    `RateLimitError.retry_after`. With `wait_budget` set, the policy gives up
    (kind "exhausted", still retryable) instead of sleeping past the budget,
    so a long retry-after is left to the caller.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1
    wait_budget: float | None = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    retry_on: Callable[[BaseException], bool] = field(default=_is_retryable, repr=False)

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay += delay * random.uniform(0, self.jitter)
        delay = min(delay, self.max_delay)
        if isinstance(error, RateLimitError):
            delay = max(delay, error.retry_after)
        return delay

    def run(self, fn: Callable[[], T], *, operation: str = "operation") -> RetryOutcome[T]:
        attempts = max(1, self.max_attempts)
        last_error: BaseException | None = None
        waited = 0.0

        for attempt in range(1, attempts + 1):
            try:
                value = fn()
                return RetryOutcome(kind="success", attempts=attempt, value=value)
            except Exception as exc:
                last_error = exc
                if not self.retry_on(exc):
                    return RetryOutcome(
                        kind="exhausted", attempts=attempt, error=exc, retryable=False
                    )
                if attempt >= attempts:
                    break
                delay = self.delay_for(attempt, exc)
                if self.wait_budget is not None and waited + delay > self.wait_budget:
                    logger.info(
                        "retry wait exceeds budget, giving up",
                        extra={
                            "extra_fields": safe_log_context(
                                operation=operation,
                                attempt=attempt,
                                delay_s=round(delay, 3),
                                wait_budget_s=self.wait_budget,
                            )
                        },
                    )
                    return RetryOutcome(kind="exhausted", attempts=attempt, error=exc)
                logger.warning(
                    "retrying after failure",
                    extra={
                        "extra_fields": safe_log_context(
                            operation=operation,
                            attempt=attempt,
                            delay_s=round(delay, 3),
                            error_type=type(exc).__name__,
                        )
                    },
                )
                self.sleep(delay)
                waited += delay

        return RetryOutcome(kind="exhausted", attempts=attempts, error=last_error)


def backoff_delay(attempt: int, base: float = 5.0, cap: float = 300.0) -> float:
    """Queue-level backoff for nacked jobs (no jitter: visible_at is coarse)."""
    return min(cap, base * (2 ** max(0, attempt - 1)))


def retry_after_of(exc: BaseException, default: float = 60.0) -> float:
    return exc.retry_after if isinstance(exc, RateLimitError) else default
