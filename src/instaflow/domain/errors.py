"""Pipeline error taxonomy.

The worker maps these to queue outcomes (ack / nack / dead-letter), so each
stage raises the most specific kind it can. Anything else reaching the worker
is treated as an internal error.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(PipelineError):
    """Malformed event payload or rule config. Never retried."""

    code = "VALIDATION_ERROR"


class AuthenticationError(PipelineError):
    """Signature or verify-token failure at intake."""

    code = "AUTHENTICATION_ERROR"


class RateLimitError(PipelineError):
    """Remote service asked us to slow down.

    Attributes:
        retry_after: Seconds to wait before the next attempt (minimum).
    """

    code = "RATE_LIMIT_ERROR"
    retryable = True

    def __init__(self, message: str = "", retry_after: float = 60.0) -> None:
        super().__init__(message or f"rate limited, retry after {retry_after:g}s")
        self.retry_after = max(0.0, float(retry_after))


class UpstreamServiceError(PipelineError):
    """AI provider or messaging platform unreachable or erroring."""

    code = "UPSTREAM_SERVICE_ERROR"
    retryable = True

    def __init__(self, message: str = "", service: str = "unknown") -> None:
        super().__init__(message)
        self.service = service


class NetworkError(UpstreamServiceError):
    """Connection failure or timeout talking to a remote service."""

    code = "NETWORK_ERROR"


class PlatformRejectedError(PipelineError):
    """Messaging platform permanently rejected the request. Never requeued."""

    code = "PLATFORM_REJECTED"

    def __init__(
        self,
        message: str = "",
        status_code: int | None = None,
        error_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class InternalError(PipelineError):
    """Unexpected shape or bug. Nacked once, then dead-lettered."""

    code = "INTERNAL_ERROR"


def describe_error(exc: BaseException) -> str:
    """Return a PII-free error description for storage in error columns."""
    if isinstance(exc, RateLimitError):
        return f"{exc.code}: retry after {exc.retry_after:g}s"
    if isinstance(exc, PlatformRejectedError):
        parts = [exc.code]
        if exc.status_code is not None:
            parts.append(f"HTTP {exc.status_code}")
        if exc.error_code is not None:
            parts.append(f"code {exc.error_code}")
        return " ".join(parts)
    if isinstance(exc, UpstreamServiceError):
        return f"{exc.code} ({exc.service}): {exc.message}"
    if isinstance(exc, PipelineError):
        return f"{exc.code}: {exc.message}"
    return type(exc).__name__
